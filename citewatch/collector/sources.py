"""
Source Fetching

Issues the three independent queries for one keyword, concurrently:
- Organic web results (engine=google)
- AI Overview citations (engine=google, follow-up engine=google_ai_overview)
- AI Mode references (engine=google_ai_mode by default)

Each query has its own timeout. A failure in one surface produces a failure
marker for that surface only; the other two are unaffected.

Note: AI Overview sometimes arrives as a bare page_token that must be resolved
with a second request; that request shares the surface's timeout budget.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from citewatch.collector.client import SerpApiClient, SerpApiError, safe_get
from citewatch.collector.rank import ResultEntry

logger = logging.getLogger(__name__)


class Surface(enum.Enum):
    """The three search surfaces tracked per keyword."""
    ORGANIC = "organic"
    AI_OVERVIEW = "ai_overview"
    AI_MODE = "ai_mode"


# ============================================================================
# DATA MODELS
# ============================================================================

@dataclass
class SurfaceResult:
    """Normalized outcome of one surface query, or its failure marker."""
    surface: Surface
    entries: List[ResultEntry] = field(default_factory=list)
    text: Optional[str] = None
    screenshot_url: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, surface: Surface, error: str, duration_ms: int = 0) -> "SurfaceResult":
        return cls(surface=surface, error=error, duration_ms=duration_ms)


@dataclass
class SourceBundle:
    """All three surfaces for one keyword."""
    organic: SurfaceResult
    ai_overview: SurfaceResult
    ai_mode: SurfaceResult

    @property
    def all_failed(self) -> bool:
        return not (self.organic.ok or self.ai_overview.ok or self.ai_mode.ok)

    @property
    def errors(self) -> Dict[str, str]:
        return {
            r.surface.value: r.error
            for r in (self.organic, self.ai_overview, self.ai_mode)
            if r.error
        }


# ============================================================================
# NORMALIZATION
# ============================================================================

def _to_entries(items: Any) -> List[ResultEntry]:
    """
    Convert raw provider items to ResultEntry.

    Malformed items become url-less placeholders so every entry keeps its
    provider position.
    """
    if not isinstance(items, list):
        return []

    entries = []
    for item in items:
        if not isinstance(item, dict):
            entries.append(ResultEntry(url=None))
            continue
        url = item.get("link") or item.get("url")
        if not isinstance(url, str) or not url:
            url = None
        title = item.get("title") or item.get("source")
        snippet = item.get("snippet") or item.get("text")
        entries.append(ResultEntry(
            url=url,
            title=title if isinstance(title, str) else None,
            snippet=snippet if isinstance(snippet, str) else None,
        ))
    return entries


def _join_text_blocks(blocks: Any) -> Optional[str]:
    """Flatten AI answer text_blocks (paragraphs and nested lists) to plain text."""
    if not isinstance(blocks, list):
        return None

    parts = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        snippet = block.get("snippet")
        if isinstance(snippet, str) and snippet.strip():
            parts.append(snippet.strip())
        nested = _join_text_blocks(block.get("list"))
        if nested:
            parts.append(nested)
    return "\n".join(parts) if parts else None


def normalize_organic(payload: Optional[Dict[str, Any]]) -> List[ResultEntry]:
    """Organic results live under organic_results."""
    return _to_entries(safe_get(payload, "organic_results", default=[]))


def normalize_ai_overview(payload: Optional[Dict[str, Any]]) -> List[ResultEntry]:
    """
    AI Overview citations.

    Accepts either a full search response (with an "ai_overview" block) or the
    block itself. Citations are under "references", older responses use "sources".
    """
    block = payload.get("ai_overview", payload) if isinstance(payload, dict) else None
    if not isinstance(block, dict):
        return []
    return _to_entries(block.get("references") or block.get("sources") or [])


def normalize_ai_mode(payload: Optional[Dict[str, Any]]) -> List[ResultEntry]:
    """AI Mode references, falling back to answer_box.results, then organic_results."""
    if not isinstance(payload, dict):
        return []
    items = (
        payload.get("references")
        or safe_get(payload, "answer_box", "results")
        or payload.get("organic_results")
        or []
    )
    return _to_entries(items)


def extract_screenshot(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """Visual capture reference, if the provider returned one."""
    for key in ("screenshot", "screenshot_url", "prettify_html_file"):
        value = safe_get(payload, "search_metadata", key)
        if isinstance(value, str) and value:
            return value
    return None


# ============================================================================
# FETCHER
# ============================================================================

class SourceFetcher:
    """
    Fetches the three surfaces for a keyword.

    Usage:
        fetcher = SourceFetcher(client, timeout=7.0)
        bundle = await fetcher.fetch_all("best crm software", "United States")
    """

    def __init__(
        self,
        client: SerpApiClient,
        timeout: float = 7.0,
        capture_screenshots: bool = True,
        ai_mode_engine: str = "google_ai_mode",
    ):
        """
        Args:
            client: SerpApi client
            timeout: Budget per surface in seconds
            capture_screenshots: Keep screenshot references when available
            ai_mode_engine: SerpApi engine for the AI Mode surface
        """
        self.client = client
        self.timeout = timeout
        self.capture_screenshots = capture_screenshots
        self.ai_mode_engine = ai_mode_engine

    async def fetch_all(self, keyword: str, locale: str) -> SourceBundle:
        """
        Fetch organic, AI Overview and AI Mode results concurrently.

        Never raises for provider problems; each surface carries its own
        failure marker instead.
        """
        organic, ai_overview, ai_mode = await asyncio.gather(
            self._guarded(Surface.ORGANIC, self._fetch_organic(keyword, locale)),
            self._guarded(Surface.AI_OVERVIEW, self._fetch_ai_overview(keyword, locale)),
            self._guarded(Surface.AI_MODE, self._fetch_ai_mode(keyword, locale)),
        )

        bundle = SourceBundle(organic=organic, ai_overview=ai_overview, ai_mode=ai_mode)
        if bundle.errors:
            logger.warning(f"Source failures for '{keyword}': {bundle.errors}")
        return bundle

    async def _guarded(self, surface: Surface, coro) -> SurfaceResult:
        """Apply the surface timeout and convert failures to a marker."""
        loop = asyncio.get_running_loop()
        started = loop.time()

        def elapsed() -> int:
            return int((loop.time() - started) * 1000)

        try:
            result = await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            return SurfaceResult.failure(surface, f"timed out after {self.timeout}s", elapsed())
        except SerpApiError as e:
            return SurfaceResult.failure(surface, str(e), elapsed())
        except Exception as e:
            logger.error(f"Unexpected error fetching {surface.value}: {e}")
            return SurfaceResult.failure(surface, f"unexpected error: {e}", elapsed())

        result.duration_ms = elapsed()
        return result

    def _screenshot(self, payload: Dict[str, Any]) -> Optional[str]:
        return extract_screenshot(payload) if self.capture_screenshots else None

    async def _fetch_organic(self, keyword: str, locale: str) -> SurfaceResult:
        payload = await self.client.search({
            "engine": "google",
            "q": keyword,
            "location": locale,
            "num": 10,
        })
        return SurfaceResult(
            surface=Surface.ORGANIC,
            entries=normalize_organic(payload),
            screenshot_url=self._screenshot(payload),
        )

    async def _fetch_ai_overview(self, keyword: str, locale: str) -> SurfaceResult:
        payload = await self.client.search({
            "engine": "google",
            "q": keyword,
            "location": locale,
            "google_domain": "google.com",
            "num": 10,
        })
        block = payload.get("ai_overview")

        # Deferred AI Overview: resolve the page token with a second request
        if isinstance(block, dict) and block.get("page_token") and not (
            block.get("references") or block.get("sources")
        ):
            logger.debug(f"Resolving deferred AI Overview for '{keyword}'")
            follow_up = await self.client.search({
                "engine": "google_ai_overview",
                "page_token": block["page_token"],
            })
            block = follow_up.get("ai_overview", block)

        if not isinstance(block, dict):
            # No AI Overview for this query: a valid, empty answer
            return SurfaceResult(surface=Surface.AI_OVERVIEW, screenshot_url=self._screenshot(payload))

        return SurfaceResult(
            surface=Surface.AI_OVERVIEW,
            entries=normalize_ai_overview(block),
            text=_join_text_blocks(block.get("text_blocks")),
            screenshot_url=self._screenshot(payload),
        )

    async def _fetch_ai_mode(self, keyword: str, locale: str) -> SurfaceResult:
        payload = await self.client.search({
            "engine": self.ai_mode_engine,
            "q": keyword,
            "location": locale,
        })
        return SurfaceResult(
            surface=Surface.AI_MODE,
            entries=normalize_ai_mode(payload),
            text=_join_text_blocks(payload.get("text_blocks")),
            screenshot_url=self._screenshot(payload),
        )
