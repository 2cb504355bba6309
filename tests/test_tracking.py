"""
Tests for the rank tracking service (end-to-end over fakes and SQLite).

Tests:
- Full scan flows: rank extraction, failure placeholders, analysis enrichment
- Persistence failures return the computed snapshot unsaved
- Cache reuse and the daily rate limit
- Inbound analysis and manual re-trigger
- Scheduled queue processing
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from citewatch.analyzer.client import ClaudeClient
from citewatch.analyzer.enricher import AnalysisEnricher, AnalysisError, EnrichmentState
from citewatch.collector.executor import ScanExecutor, ScanSourceError
from citewatch.collector.sources import SourceBundle, Surface
from citewatch.database.repository import StoreError
from citewatch.models import AIModeStatus, Keyword
from citewatch.persistence.cache import SnapshotCache
from citewatch.services.tracking import (
    RankTrackingService,
    RateLimitExceeded,
    build_tracking_service,
)
from citewatch.utils.config import Settings

from tests.fakes import (
    DOMAIN,
    FakeEngine,
    FakeFetcher,
    failed_bundle,
    surface_ok,
    uncited_bundle,
)

PROSE_REPLY = (
    "Here's my take on how the answer treats the site. "
    '{"sentiment":"Positive","gap":"size guides","strategy":"Add a size guide to every drop post."} '
    "Hope this helps!"
)


@pytest.fixture
def error_log():
    return MagicMock()


@pytest.fixture
def make_service(store, keyword_repo, error_log):
    """Build a service over a FakeFetcher and the in-memory store."""
    def factory(fetcher, engine=None, daily_limit=100, window=3, enrich_on_text=False):
        enricher = AnalysisEnricher(engine, store, enrich_on_text=enrich_on_text) if engine else None
        return RankTrackingService(
            executor=ScanExecutor(fetcher),
            store=store,
            cache=SnapshotCache(store),
            enricher=enricher,
            keywords=keyword_repo,
            window=window,
            daily_limit=daily_limit,
            error_log=error_log,
        )
    return factory


# ============================================================================
# End-to-End Scenarios
# ============================================================================

class TestScanScenarios:
    """Full pipeline behavior."""

    @pytest.mark.asyncio
    async def test_organic_only_hit(self, make_service, store):
        """Organic fifth, AI Overview without the domain, AI Mode empty."""
        bundle = SourceBundle(
            organic=surface_ok(Surface.ORGANIC, [
                "https://a.com/", "https://b.com/", "https://c.com/", "https://d.com/",
                "https://hypefresh.co/crm",
            ]),
            ai_overview=surface_ok(Surface.AI_OVERVIEW, ["https://a.com/", "https://b.com/"]),
            ai_mode=surface_ok(Surface.AI_MODE, []),
        )
        service = make_service(FakeFetcher(bundle))
        keyword = Keyword(id="kw-crm", term="best crm software")

        result = await service.scan_keyword(keyword, DOMAIN)

        snapshot = result.snapshot
        assert result.saved
        assert snapshot.organic_rank == 5
        assert snapshot.ai_overview_cited is False
        assert snapshot.ai_overview_position is None
        assert snapshot.ai_mode_status is AIModeStatus.NOT_FOUND
        assert store.get(snapshot.id) == snapshot

    @pytest.mark.asyncio
    async def test_total_failure_becomes_placeholder_in_batch(self, make_service, cited_bundle, store):
        """All sources time out for one keyword; the batch carries on."""
        fetcher = FakeFetcher(cited_bundle, per_keyword={"dead keyword": failed_bundle()})
        service = make_service(fetcher)
        keywords = [Keyword(id="kw-dead", term="dead keyword"), Keyword(id="kw-ok", term="sneaker news")]

        batch = await service.scan_batch(keywords, DOMAIN, window=1)

        placeholder = batch.get("kw-dead")
        assert placeholder.is_failed
        assert placeholder.organic_rank is None
        assert placeholder.ai_overview_position is None
        assert placeholder.ai_mode_position is None
        assert placeholder.scan_duration_ms == 0
        assert batch.get("kw-ok").organic_rank == 3
        assert batch.completed == 2
        # Placeholders are never persisted
        assert store.latest_for_keyword("kw-dead") is None

    @pytest.mark.asyncio
    async def test_single_scan_total_failure_raises(self, make_service):
        service = make_service(FakeFetcher(failed_bundle()))
        with pytest.raises(ScanSourceError):
            await service.scan_keyword(Keyword(id="kw", term="x"), DOMAIN)

    @pytest.mark.asyncio
    async def test_cited_snapshot_gets_analysis(self, make_service, cited_bundle, store, keyword):
        """Prose-wrapped JSON reply is parsed and persisted."""
        service = make_service(FakeFetcher(cited_bundle), engine=FakeEngine(content=PROSE_REPLY))

        result = await service.scan_keyword(keyword, DOMAIN)
        assert result.enrichment is not None
        outcome = await service.enricher.wait(result.snapshot.id)

        assert outcome.state is EnrichmentState.SUCCEEDED
        stored = store.get(result.snapshot.id)
        assert stored.sentiment_label == "Positive"
        assert stored.sentiment_score == 1.0
        assert stored.content_gap == "size guides"
        assert stored.strategy_suggestion == "Add a size guide to every drop post."
        assert stored.organic_rank == result.snapshot.organic_rank
        assert stored.ai_overview_snippet == result.snapshot.ai_overview_snippet

    @pytest.mark.asyncio
    async def test_web_search_sources_are_stored(self, make_service, cited_bundle, store, keyword):
        """URLs Claude consulted through the web search tool land in analysis_sources."""
        search_block = MagicMock(type="web_search_tool_result", content=[
            MagicMock(url="https://hypefresh.co/size-guide"),
            MagicMock(url="https://complex.com/fit"),
        ])
        text_block = MagicMock(type="text", text=PROSE_REPLY)
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(return_value=MagicMock(
            content=[search_block, text_block],
            usage=MagicMock(input_tokens=10, output_tokens=10),
            stop_reason="end_turn",
        ))
        claude = ClaudeClient(api_key="", async_client=sdk, web_search=True)
        service = make_service(FakeFetcher(cited_bundle), engine=claude)

        result = await service.scan_keyword(keyword, DOMAIN)
        await service.enricher.wait(result.snapshot.id)

        stored = store.get(result.snapshot.id)
        assert stored.analysis_sources == ["https://hypefresh.co/size-guide", "https://complex.com/fit"]
        assert sdk.messages.create.call_args.kwargs["tools"][0]["name"] == "web_search"

    @pytest.mark.asyncio
    async def test_uncited_snapshot_not_analyzed(self, make_service, keyword):
        engine = FakeEngine(content=PROSE_REPLY)
        service = make_service(FakeFetcher(uncited_bundle()), engine=engine)

        result = await service.scan_keyword(keyword, DOMAIN)
        await service.enricher.drain()

        assert result.enrichment.state is EnrichmentState.SKIPPED
        assert engine.prompts == []

    @pytest.mark.asyncio
    async def test_enrich_flag_off(self, make_service, cited_bundle, keyword):
        service = make_service(FakeFetcher(cited_bundle), engine=FakeEngine(content=PROSE_REPLY))
        result = await service.scan_keyword(keyword, DOMAIN, enrich=False)
        assert result.enrichment is None
        assert result.to_dict()["analysis"] is None

    @pytest.mark.asyncio
    async def test_marks_keyword_scanned(self, make_service, keyword_repo, cited_bundle):
        project = keyword_repo.get_or_create_project(DOMAIN)
        keyword = keyword_repo.add_keyword(project.id, "sneaker news")
        service = make_service(FakeFetcher(cited_bundle))

        await service.scan_keyword(keyword, DOMAIN)

        due = keyword_repo.keywords_due_for_scan(10, scanned_before=datetime(2000, 1, 1))
        assert due == []

    @pytest.mark.asyncio
    async def test_window_bounds_concurrency(self, make_service, cited_bundle):
        fetcher = FakeFetcher(cited_bundle, delay=0.01)
        service = make_service(fetcher, window=2)
        keywords = [Keyword(id=f"kw-{i}", term=f"term {i}") for i in range(5)]

        batch = await service.scan_batch(keywords, DOMAIN)

        assert fetcher.max_in_flight == 2
        assert len(batch.snapshots()) == 5


# ============================================================================
# Persistence Failures
# ============================================================================

class TestPersistenceFailure:
    """A store outage must not lose the computed snapshot."""

    @pytest.mark.asyncio
    async def test_returns_unsaved_snapshot(self, cited_bundle, keyword, error_log):
        store = MagicMock()
        store.insert.side_effect = StoreError("OperationalError: database is locked")
        engine = FakeEngine(content=PROSE_REPLY)
        service = RankTrackingService(
            executor=ScanExecutor(FakeFetcher(cited_bundle)),
            store=store,
            enricher=AnalysisEnricher(engine, store),
            error_log=error_log,
        )

        result = await service.scan_keyword(keyword, DOMAIN)

        assert result.saved is False
        assert result.snapshot.id is None
        assert result.snapshot.organic_rank == 3
        assert result.enrichment is None
        assert engine.prompts == []
        context = error_log.call_args.args[0]
        assert context == "scan.persist"

    @pytest.mark.asyncio
    async def test_storage_available(self, make_service, cited_bundle):
        service = make_service(FakeFetcher(cited_bundle))
        assert service.storage_available() is True

        service.store = MagicMock()
        service.store.count_since.side_effect = StoreError("down")
        assert service.storage_available() is False


# ============================================================================
# Cache & Rate Limit
# ============================================================================

class TestCacheAndRateLimit:
    """Tests for cache reuse and the daily budget."""

    @pytest.mark.asyncio
    async def test_cached_snapshot_reused(self, make_service, cited_bundle, keyword):
        fetcher = FakeFetcher(cited_bundle)
        service = make_service(fetcher)

        first = await service.scan_keyword(keyword, DOMAIN, use_cache=True)
        second = await service.scan_keyword(keyword, DOMAIN, use_cache=True)

        assert first.cached is False
        assert second.cached is True
        assert second.snapshot.id == first.snapshot.id
        assert fetcher.calls == ["sneaker news"]

    @pytest.mark.asyncio
    async def test_cache_not_used_by_default(self, make_service, cited_bundle, keyword):
        fetcher = FakeFetcher(cited_bundle)
        service = make_service(fetcher)
        await service.scan_keyword(keyword, DOMAIN)
        await service.scan_keyword(keyword, DOMAIN)
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit(self, make_service, cited_bundle, keyword):
        service = make_service(FakeFetcher(cited_bundle), daily_limit=1)
        assert service.within_rate_limit()

        await service.scan_keyword(keyword, DOMAIN)

        assert not service.within_rate_limit()
        with pytest.raises(RateLimitExceeded):
            service.check_rate_limit()


# ============================================================================
# Analysis Requests
# ============================================================================

class TestAnalysisRequests:
    """Tests for inbound analysis and re-trigger."""

    @pytest.mark.asyncio
    async def test_analyze_snapshot(self, uncited_bundle_saved):
        service, snapshot = uncited_bundle_saved
        outcome = await service.analyze_snapshot(snapshot.id, "Hypefresh is great.", "sneaker news")

        assert outcome.succeeded
        assert service.store.get(snapshot.id).sentiment_label == "Positive"

    @pytest.mark.asyncio
    async def test_analyze_validation(self, uncited_bundle_saved):
        service, snapshot = uncited_bundle_saved
        with pytest.raises(ValueError):
            await service.analyze_snapshot(snapshot.id, "  ", "sneaker news")
        with pytest.raises(ValueError):
            await service.analyze_snapshot("", "text", "sneaker news")
        with pytest.raises(LookupError):
            await service.analyze_snapshot("missing", "text", "sneaker news")

    @pytest.mark.asyncio
    async def test_analyze_without_engine(self, make_service):
        service = make_service(FakeFetcher(uncited_bundle()))
        with pytest.raises(AnalysisError):
            await service.analyze_snapshot("any", "text", "sneaker news")
        with pytest.raises(AnalysisError):
            service.retrigger_analysis("any", "sneaker news")

    @pytest.mark.asyncio
    async def test_failed_analysis_is_logged(self, make_service, keyword, error_log):
        service = make_service(FakeFetcher(uncited_bundle()), engine=FakeEngine(content="no json"))
        snapshot = (await service.scan_keyword(keyword, DOMAIN)).snapshot

        outcome = await service.analyze_snapshot(snapshot.id, "text", "sneaker news")

        assert outcome.state is EnrichmentState.FAILED
        assert error_log.call_args.args[0] == "analysis"

    @pytest.mark.asyncio
    async def test_retrigger(self, uncited_bundle_saved):
        service, snapshot = uncited_bundle_saved
        task = service.retrigger_analysis(snapshot.id, "sneaker news")
        outcome = await task.wait()
        assert outcome.succeeded

        with pytest.raises(LookupError):
            service.retrigger_analysis("missing", "sneaker news")


@pytest_asyncio.fixture
async def uncited_bundle_saved(make_service, keyword):
    service = make_service(FakeFetcher(uncited_bundle()), engine=FakeEngine(content=PROSE_REPLY))
    result = await service.scan_keyword(keyword, DOMAIN)
    return service, result.snapshot


# ============================================================================
# Scheduled Queue
# ============================================================================

class TestQueue:
    """Tests for cron-driven queueing and processing."""

    @pytest.mark.asyncio
    async def test_enqueue_and_process(self, make_service, keyword_repo, cited_bundle):
        project = keyword_repo.get_or_create_project(DOMAIN)
        good = keyword_repo.add_keyword(project.id, "sneaker news")
        bad = keyword_repo.add_keyword(project.id, "dead keyword")
        fetcher = FakeFetcher(cited_bundle, per_keyword={"dead keyword": failed_bundle()})
        service = make_service(fetcher)

        assert service.enqueue_due(limit=10, min_age_hours=24) == 2
        assert service.enqueue_due(limit=10, min_age_hours=24) == 0

        summary = await service.process_queue(limit=10)

        assert summary == {"processed": 2, "succeeded": 1, "failed": 1}
        assert keyword_repo.pending_queue(10) == []
        assert service.store.latest_for_keyword(good.id) is not None
        assert service.store.latest_for_keyword(bad.id) is None

    @pytest.mark.asyncio
    async def test_empty_queue(self, make_service, cited_bundle):
        service = make_service(FakeFetcher(cited_bundle))
        assert await service.process_queue() == {"processed": 0, "succeeded": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_rate_limited_queue(self, make_service, keyword_repo, cited_bundle, keyword):
        project = keyword_repo.get_or_create_project(DOMAIN)
        keyword_repo.add_keyword(project.id, "sneaker news")
        service = make_service(FakeFetcher(cited_bundle), daily_limit=1)
        await service.scan_keyword(keyword, DOMAIN)
        service.enqueue_due()

        with pytest.raises(RateLimitExceeded):
            await service.process_queue()

    def test_queue_requires_keyword_repository(self, store, cited_bundle):
        service = RankTrackingService(executor=ScanExecutor(FakeFetcher(cited_bundle)), store=store)
        with pytest.raises(RuntimeError):
            service.enqueue_due()


# ============================================================================
# Wiring
# ============================================================================

class TestBuildService:
    """Tests for the settings-driven factory."""

    @pytest.mark.asyncio
    async def test_build_without_analysis_key(self):
        settings = Settings(
            _env_file=None,
            SERPAPI_KEY="test-key",
            ANTHROPIC_API_KEY=None,
            DATABASE_URL="sqlite://",
            SCAN_CONCURRENCY=2,
        )
        service = build_tracking_service(settings)

        assert service.enricher is None
        assert service.scheduler.window == 2
        assert service.storage_available()
        await service.close()

    @pytest.mark.asyncio
    async def test_build_with_analysis_key(self):
        settings = Settings(
            _env_file=None,
            SERPAPI_KEY="test-key",
            ANTHROPIC_API_KEY="sk-ant-test",
            DATABASE_URL="sqlite://",
            ENRICH_ON_TEXT=True,
        )
        service = build_tracking_service(settings)

        assert service.enricher is not None
        assert service.enricher.enrich_on_text is True
        assert service.enricher.engine.web_search is True
        await service.close()

    @pytest.mark.asyncio
    async def test_build_with_web_search_off(self):
        settings = Settings(
            _env_file=None,
            SERPAPI_KEY="test-key",
            ANTHROPIC_API_KEY="sk-ant-test",
            DATABASE_URL="sqlite://",
            ANALYSIS_WEB_SEARCH=False,
        )
        service = build_tracking_service(settings)

        assert service.enricher.engine.web_search is False
        await service.close()

    @pytest.mark.asyncio
    async def test_close_runs_closers(self, make_service, cited_bundle):
        service = make_service(FakeFetcher(cited_bundle))
        closer = AsyncMock()
        service.add_closer(closer)
        await service.close()
        closer.assert_awaited_once()
