"""
Pytest Configuration and Shared Fixtures

Provides canned SerpApi payloads, source bundles and an in-memory database.
Test doubles live in tests/fakes.py.
"""

from typing import Any, Dict, List, Optional

import httpx
import pytest

from citewatch.collector.client import SerpApiClient
from citewatch.collector.sources import SourceBundle, Surface
from citewatch.database.repository import KeywordRepository, SnapshotStore
from citewatch.database.session import create_db_engine, init_db, make_session_factory
from citewatch.models import Keyword
from citewatch.persistence.cache import SnapshotCache

from tests.fakes import serpapi_handler, surface_ok


# ============================================================================
# SerpApi Payloads
# ============================================================================

@pytest.fixture
def organic_payload() -> Dict[str, Any]:
    """Organic results with the domain at position 3."""
    return {
        "search_metadata": {"status": "Success", "screenshot": "https://serpapi.com/shots/organic.png"},
        "organic_results": [
            {"position": 1, "link": "https://www.complex.com/sneakers", "title": "Complex Sneakers"},
            {"position": 2, "link": "https://nothypefresh.co.uk/news", "title": "Lookalike"},
            {"position": 3, "link": "https://www.hypefresh.co/sneaker-news", "title": "Hypefresh Sneaker News"},
            {"position": 4, "link": "https://hypebeast.com/footwear", "title": "Hypebeast"},
        ],
    }


@pytest.fixture
def ai_overview_payload() -> Dict[str, Any]:
    """AI Overview citing the domain second."""
    return {
        "search_metadata": {"status": "Success"},
        "ai_overview": {
            "text_blocks": [
                {"type": "paragraph", "snippet": "Sneaker news moves fast."},
                {"type": "list", "list": [{"snippet": "Hypefresh covers drops daily."}]},
            ],
            "references": [
                {"link": "https://sneakernews.com/", "title": "Sneaker News", "snippet": "Release dates"},
                {"link": "https://blog.hypefresh.co/drops", "title": "Hypefresh", "snippet": "Hypefresh covers drops daily."},
            ],
        },
        "organic_results": [],
    }


@pytest.fixture
def ai_mode_payload() -> Dict[str, Any]:
    """AI Mode answer whose references do not include the domain."""
    return {
        "search_metadata": {"status": "Success"},
        "text_blocks": [{"type": "paragraph", "snippet": "Popular sources include Complex and Hypebeast."}],
        "references": [
            {"link": "https://www.complex.com/", "title": "Complex", "snippet": "Complex"},
            {"link": "https://hypebeast.com/", "title": "Hypebeast", "snippet": "Hypebeast"},
        ],
    }


@pytest.fixture
def make_serpapi_client():
    """Factory for SerpApiClient backed by httpx.MockTransport."""
    def factory(routes: Dict[str, Any], calls: Optional[List[httpx.Request]] = None) -> SerpApiClient:
        return SerpApiClient(
            api_key="test-key",
            transport=httpx.MockTransport(serpapi_handler(routes, calls)),
        )
    return factory


@pytest.fixture
def cited_bundle() -> SourceBundle:
    """Organic #3, AI Overview #2, AI Mode not cited."""
    return SourceBundle(
        organic=surface_ok(Surface.ORGANIC, [
            "https://a.com/", "https://b.com/", "https://hypefresh.co/post",
        ]),
        ai_overview=surface_ok(Surface.AI_OVERVIEW, [
            "https://a.com/", "https://www.hypefresh.co/guide",
        ], text="AI overview text"),
        ai_mode=surface_ok(Surface.AI_MODE, ["https://c.com/"], text="AI mode text"),
    )


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def session_factory():
    """In-memory SQLite shared across sessions, fresh per test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> SnapshotStore:
    return SnapshotStore(session_factory)


@pytest.fixture
def keyword_repo(session_factory) -> KeywordRepository:
    return KeywordRepository(session_factory)


@pytest.fixture
def cache(store) -> SnapshotCache:
    return SnapshotCache(store, ttl_hours=24)


@pytest.fixture
def keyword() -> Keyword:
    return Keyword(id="kw-1", term="sneaker news", locale="United States")

