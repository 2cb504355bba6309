"""
Rank Tracking Service

Wires the pipeline together for the API, cron trigger and CLI:

    BatchScheduler -> ScanExecutor -> SnapshotStore -> AnalysisEnricher

Scan flow for one keyword:
1. Optional cache check (fresh snapshot for keyword/domain within the TTL)
2. Scan all three surfaces
3. Persist; on failure the computed snapshot is still returned, unsaved
4. Mark the keyword scanned
5. Schedule enrichment (fire-and-forget, observable by snapshot id)
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

from citewatch.analyzer.client import ClaudeClient
from citewatch.analyzer.enricher import (
    AnalysisEnricher,
    AnalysisError,
    EnrichmentOutcome,
    EnrichmentTask,
)
from citewatch.collector.client import SerpApiClient
from citewatch.collector.executor import ScanExecutor
from citewatch.collector.scheduler import BatchScheduler, ProgressCallback, ScanBatch
from citewatch.collector.sources import SourceFetcher
from citewatch.database.repository import (
    KeywordRepository,
    SnapshotStore,
    StoreError,
    record_error,
)
from citewatch.database.session import create_db_engine, init_db, make_session_factory
from citewatch.models import Keyword, Snapshot
from citewatch.persistence.cache import SnapshotCache
from citewatch.utils.config import Settings, get_settings
from citewatch.utils.domain_match import MatchPolicy

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Daily snapshot budget used up."""


@dataclass
class ScanResult:
    """Outcome of scanning one keyword through the service."""
    snapshot: Snapshot
    saved: bool
    cached: bool = False
    enrichment: Optional[EnrichmentTask] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot": self.snapshot.to_dict(),
            "saved": self.saved,
            "cached": self.cached,
            "analysis": self.enrichment.state.value if self.enrichment else None,
        }


class RankTrackingService:
    """
    Entry point for scanning and analysis.

    Usage:
        service = build_tracking_service()
        result = await service.scan_keyword(keyword, "hypefresh.co")
        batch = await service.scan_batch(keywords, "hypefresh.co", on_progress=print)
    """

    def __init__(
        self,
        executor: ScanExecutor,
        store: SnapshotStore,
        cache: Optional[SnapshotCache] = None,
        enricher: Optional[AnalysisEnricher] = None,
        keywords: Optional[KeywordRepository] = None,
        window: int = 3,
        window_pause: float = 0.0,
        daily_limit: int = 100,
        error_log: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            executor: Produces snapshots
            store: Persists snapshots
            cache: Optional TTL cache over the store
            enricher: Optional analysis enricher (disabled when None)
            keywords: Keyword repository (needed for cron/queue operations)
            window: Default batch concurrency window
            window_pause: Pause between windows in seconds
            daily_limit: Maximum snapshots per rolling 24 hours
            error_log: Callable(context, error, metadata) for durable error records
        """
        self.executor = executor
        self.store = store
        self.cache = cache
        self.enricher = enricher
        self.keywords = keywords
        self.daily_limit = daily_limit
        self.error_log = error_log
        self.scheduler = BatchScheduler(self._scan_snapshot, window=window, pause=window_pause)

        self._closers: List[Callable] = []

    # =========================================================================
    # SCANNING
    # =========================================================================

    async def scan_keyword(
        self,
        keyword: Keyword,
        domain: str,
        use_cache: bool = False,
        enrich: bool = True,
    ) -> ScanResult:
        """
        Scan, persist and schedule enrichment for one keyword.

        Raises:
            ScanValidationError: Missing keyword or domain
            ScanSourceError: All three surfaces failed
        """
        if use_cache and self.cache is not None:
            cached = self.cache.get(keyword.id, domain)
            if cached is not None:
                logger.info(f"Using cached snapshot {cached.id} for '{keyword.term}'")
                return ScanResult(snapshot=cached, saved=True, cached=True)

        snapshot = await self.executor.scan_one(keyword, domain)

        try:
            snapshot = self.store.insert(snapshot)
        except StoreError as e:
            logger.error(f"Failed to persist snapshot for '{keyword.term}': {e}")
            self._record_error("scan.persist", e, {"keyword_id": keyword.id, "domain": domain})
            return ScanResult(snapshot=snapshot, saved=False)

        if self.keywords is not None:
            try:
                self.keywords.mark_scanned(keyword.id, snapshot.created_at)
            except StoreError as e:
                logger.warning(f"Could not update last_scan_at for {keyword.id}: {e}")

        task = None
        if enrich and self.enricher is not None:
            task = self.enricher.schedule(snapshot, keyword.term)

        return ScanResult(snapshot=snapshot, saved=True, enrichment=task)

    async def _scan_snapshot(self, keyword: Keyword, domain: str) -> Snapshot:
        return (await self.scan_keyword(keyword, domain)).snapshot

    async def scan_batch(
        self,
        keywords: Sequence[Keyword],
        domain: str,
        window: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        batch: Optional[ScanBatch] = None,
        use_cache: bool = False,
        enrich: bool = True,
    ) -> ScanBatch:
        """Scan many keywords in bounded windows; every keyword gets a result."""

        async def scan(keyword: Keyword, target: str) -> Snapshot:
            result = await self.scan_keyword(keyword, target, use_cache=use_cache, enrich=enrich)
            return result.snapshot

        return await self.scheduler.run(
            keywords,
            domain,
            window=window,
            on_progress=on_progress,
            batch=batch,
            scan_fn=scan,
        )

    # =========================================================================
    # RATE LIMIT
    # =========================================================================

    def within_rate_limit(self) -> bool:
        """Fewer than daily_limit snapshots stored in the last 24 hours."""
        since = datetime.utcnow() - timedelta(days=1)
        return self.store.count_since(since) < self.daily_limit

    def storage_available(self) -> bool:
        try:
            self.store.count_since(datetime.utcnow())
        except StoreError as e:
            logger.error(f"Snapshot store unavailable: {e}")
            return False
        return True

    def check_rate_limit(self):
        if not self.within_rate_limit():
            raise RateLimitExceeded(f"Daily scan limit of {self.daily_limit} reached")

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    async def analyze_snapshot(
        self,
        snapshot_id: str,
        text: str,
        keyword: str,
        domain: Optional[str] = None,
    ) -> EnrichmentOutcome:
        """
        Inbound analysis request: analyze the supplied text now and patch
        the snapshot's analysis fields.

        Raises:
            ValueError: Missing snapshot id or text
            LookupError: Unknown snapshot
            AnalysisError: No analysis engine configured
        """
        if not snapshot_id or not (text or "").strip():
            raise ValueError("Missing required fields")
        if self.enricher is None:
            raise AnalysisError("Analysis engine is not configured")

        snapshot = self.store.get(snapshot_id)
        if snapshot is None:
            raise LookupError(f"Snapshot {snapshot_id} not found")
        if domain and domain != snapshot.domain:
            logger.warning(f"Analysis request domain {domain} differs from snapshot domain {snapshot.domain}")

        outcome = await self.enricher.enrich(snapshot, keyword or "", text=text, force=True)
        if not outcome.succeeded:
            self._record_error("analysis", outcome.error or "analysis failed", {"snapshot_id": snapshot_id})
        return outcome

    def retrigger_analysis(self, snapshot_id: str, keyword: str) -> EnrichmentTask:
        """
        Manual re-trigger for a stored snapshot's analysis.

        Raises:
            LookupError: Unknown snapshot
            AnalysisError: No analysis engine configured
        """
        if self.enricher is None:
            raise AnalysisError("Analysis engine is not configured")
        snapshot = self.store.get(snapshot_id)
        if snapshot is None:
            raise LookupError(f"Snapshot {snapshot_id} not found")
        return self.enricher.schedule(snapshot, keyword, force=True)

    # =========================================================================
    # SCHEDULED TRIGGER
    # =========================================================================

    def enqueue_due(self, limit: int = 10, min_age_hours: int = 24) -> int:
        """Queue active keywords not scanned within min_age_hours."""
        cutoff = datetime.utcnow() - timedelta(hours=min_age_hours)
        due = self._require_keywords().keywords_due_for_scan(limit, scanned_before=cutoff)
        if not due:
            return 0
        return self._require_keywords().enqueue_scans([k.id for k in due])

    async def process_queue(self, limit: int = 10) -> Dict[str, int]:
        """
        Scan pending queue items, grouped by project domain.

        Returns:
            Counts of processed, succeeded and failed items
        """
        repo = self._require_keywords()
        items = repo.pending_queue(limit)
        if not items:
            return {"processed": 0, "succeeded": 0, "failed": 0}

        self.check_rate_limit()

        by_domain: "OrderedDict[str, list]" = OrderedDict()
        for item in items:
            by_domain.setdefault(item.domain, []).append(item)

        succeeded = failed = 0
        for domain, group in by_domain.items():
            batch = await self.scan_batch([item.keyword for item in group], domain)
            for item in group:
                snapshot = batch.get(item.keyword.id)
                error = None if snapshot is not None and not snapshot.is_failed else "scan failed"
                repo.complete_queue_item(item.item_id, error=error)
                if error:
                    failed += 1
                else:
                    succeeded += 1

        logger.info(f"Processed {len(items)} queued scans: {succeeded} ok, {failed} failed")
        return {"processed": len(items), "succeeded": succeeded, "failed": failed}

    def _require_keywords(self) -> KeywordRepository:
        if self.keywords is None:
            raise RuntimeError("Keyword repository is not configured")
        return self.keywords

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    def _record_error(self, context: str, error: Any, metadata: Optional[Dict] = None):
        if self.error_log is not None:
            self.error_log(context, error, metadata)

    def add_closer(self, closer: Callable):
        self._closers.append(closer)

    async def close(self):
        """Wait for pending analyses, then release HTTP clients."""
        if self.enricher is not None:
            await self.enricher.drain()
        for closer in self._closers:
            await closer()


# =============================================================================
# FACTORY
# =============================================================================

def build_tracking_service(
    settings: Optional[Settings] = None,
    session_factory=None,
) -> RankTrackingService:
    """
    Build a fully wired service from settings.

    Args:
        settings: Application settings (defaults to get_settings())
        session_factory: SQLAlchemy session factory (defaults to one built
                         from DATABASE_URL, with tables created)
    """
    settings = settings or get_settings()

    if session_factory is None:
        engine = create_db_engine(settings.DATABASE_URL)
        init_db(engine)
        session_factory = make_session_factory(engine)

    serpapi = SerpApiClient(
        api_key=settings.SERPAPI_KEY,
        base_url=settings.SERPAPI_BASE_URL,
        timeout=settings.SOURCE_TIMEOUT,
    )
    fetcher = SourceFetcher(
        serpapi,
        timeout=settings.SOURCE_TIMEOUT,
        capture_screenshots=settings.CAPTURE_SCREENSHOTS,
        ai_mode_engine=settings.AI_MODE_ENGINE,
    )
    executor = ScanExecutor(fetcher, match_policy=MatchPolicy(settings.DOMAIN_MATCH_POLICY))

    store = SnapshotStore(session_factory)
    cache = SnapshotCache(store, ttl_hours=settings.CACHE_TTL_HOURS)

    enricher = None
    claude = None
    if settings.ANTHROPIC_API_KEY:
        claude = ClaudeClient(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.CLAUDE_MODEL,
            timeout=settings.ANALYSIS_TIMEOUT,
            web_search=settings.ANALYSIS_WEB_SEARCH,
        )
        enricher = AnalysisEnricher(
            claude,
            store,
            timeout=settings.ANALYSIS_TIMEOUT,
            enrich_on_text=settings.ENRICH_ON_TEXT,
        )
    else:
        logger.warning("ANTHROPIC_API_KEY not set - snapshot analysis disabled")

    service = RankTrackingService(
        executor=executor,
        store=store,
        cache=cache,
        enricher=enricher,
        keywords=KeywordRepository(session_factory),
        window=settings.SCAN_CONCURRENCY,
        window_pause=settings.SCAN_WINDOW_PAUSE,
        daily_limit=settings.DAILY_SCAN_LIMIT,
        error_log=partial(record_error, session_factory=session_factory),
    )
    service.add_closer(serpapi.close)
    if claude is not None:
        service.add_closer(claude.close)
    return service
