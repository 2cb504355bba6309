"""
Scan Executor

Scans one keyword: fetches the three surfaces, extracts the domain's rank
from each, derives the AI Mode status and assembles an immutable Snapshot.

Computes only - persistence is the caller's job.
"""

import logging
import time
from typing import Dict, Optional

from citewatch.collector.rank import RankMatch, find_rank, NO_MATCH
from citewatch.collector.sources import SourceBundle, SourceFetcher, SurfaceResult
from citewatch.models import AIModeStatus, Keyword, Snapshot
from citewatch.utils.domain_match import MatchPolicy

logger = logging.getLogger(__name__)

MAX_SNIPPET_CHARS = 2000


class ScanError(Exception):
    """Base class for scan failures."""


class ScanValidationError(ScanError):
    """Keyword or domain missing - raised before any network call."""


class ScanSourceError(ScanError):
    """Every surface failed; transient, the caller may substitute a placeholder."""
    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


def ai_mode_status(result: SurfaceResult, match: RankMatch) -> AIModeStatus:
    """
    Three-way AI Mode status.

    Cited: domain among the references. Not Cited: non-empty references
    without the domain. Not Found: empty/absent list or a failed fetch.
    """
    if match.cited:
        return AIModeStatus.CITED
    if result.ok and result.entries:
        return AIModeStatus.NOT_CITED
    return AIModeStatus.NOT_FOUND


class ScanExecutor:
    """
    Produces one Snapshot per keyword.

    Usage:
        executor = ScanExecutor(fetcher)
        snapshot = await executor.scan_one(keyword, "hypefresh.co")
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        match_policy: MatchPolicy = MatchPolicy.HOST_SUFFIX,
    ):
        self.fetcher = fetcher
        self.match_policy = match_policy

    async def scan_one(self, keyword: Keyword, domain: str) -> Snapshot:
        """
        Scan a single keyword across all three surfaces.

        Args:
            keyword: Keyword to scan (term and locale are used)
            domain: Tracked domain

        Returns:
            Snapshot without id; the store assigns one

        Raises:
            ScanValidationError: Missing keyword term or domain
            ScanSourceError: All three surfaces failed
        """
        if keyword is None or not (keyword.term or "").strip():
            raise ScanValidationError("Missing required field: keyword")
        if not (domain or "").strip():
            raise ScanValidationError("Missing required field: domain")

        term = keyword.term.strip()
        domain = domain.strip()
        started = time.monotonic()

        bundle = await self.fetcher.fetch_all(term, keyword.locale)

        if bundle.all_failed:
            logger.error(f"All sources failed for '{term}': {bundle.errors}")
            raise ScanSourceError(f"All sources failed for '{term}'", errors=bundle.errors)

        snapshot = self._assemble(keyword, domain, bundle, started)

        logger.info(
            f"Scanned '{term}' for {domain}: organic={snapshot.organic_rank}, "
            f"ai_overview={snapshot.ai_overview_position}, ai_mode={snapshot.ai_mode_status.value} "
            f"({snapshot.scan_duration_ms}ms)"
        )
        return snapshot

    def _match(self, result: SurfaceResult, domain: str) -> RankMatch:
        # A failed surface degrades to "not cited"
        if not result.ok:
            return NO_MATCH
        return find_rank(result.entries, domain, self.match_policy)

    @staticmethod
    def _snippet(match: RankMatch, result: SurfaceResult) -> Optional[str]:
        """Citation snippet when cited, otherwise the surface's answer text."""
        text = match.matched_snippet if match.cited else None
        if not text and result.ok:
            text = result.text
        return text[:MAX_SNIPPET_CHARS] if text else None

    def _assemble(
        self,
        keyword: Keyword,
        domain: str,
        bundle: SourceBundle,
        started: float,
    ) -> Snapshot:
        organic = self._match(bundle.organic, domain)
        overview = self._match(bundle.ai_overview, domain)
        ai_mode = self._match(bundle.ai_mode, domain)

        return Snapshot(
            keyword_id=keyword.id,
            domain=domain,
            organic_rank=organic.position,
            organic_url=organic.matched_url,
            organic_title=organic.matched_title,
            ai_overview_cited=overview.cited,
            ai_overview_position=overview.position,
            ai_overview_snippet=self._snippet(overview, bundle.ai_overview),
            ai_mode_cited=ai_mode.cited,
            ai_mode_position=ai_mode.position,
            ai_mode_snippet=self._snippet(ai_mode, bundle.ai_mode),
            ai_mode_status=ai_mode_status(bundle.ai_mode, ai_mode),
            organic_screenshot_url=bundle.organic.screenshot_url,
            ai_overview_screenshot_url=bundle.ai_overview.screenshot_url,
            ai_mode_screenshot_url=bundle.ai_mode.screenshot_url,
            scan_duration_ms=int((time.monotonic() - started) * 1000),
        )
