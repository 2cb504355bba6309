"""
Citewatch - Data Collection Package

Collects visibility data for tracked keywords from SerpApi:
- Source fetching: organic, AI Overview and AI Mode queries in parallel
- Rank extraction: first position of the tracked domain per surface
- Scan execution: one immutable Snapshot per keyword
- Batch scheduling: bounded concurrency windows with progress events
"""

from .client import SerpApiClient, SerpApiError, safe_get
from .rank import ResultEntry, RankMatch, NO_MATCH, find_rank
from .sources import (
    Surface,
    SurfaceResult,
    SourceBundle,
    SourceFetcher,
    normalize_organic,
    normalize_ai_overview,
    normalize_ai_mode,
    extract_screenshot,
)
from .executor import (
    ScanExecutor,
    ScanError,
    ScanValidationError,
    ScanSourceError,
    ai_mode_status,
)
from .scheduler import BatchScheduler, BatchProgress, ScanBatch

__all__ = [
    # Client
    "SerpApiClient",
    "SerpApiError",
    "safe_get",

    # Rank extraction
    "ResultEntry",
    "RankMatch",
    "NO_MATCH",
    "find_rank",

    # Sources
    "Surface",
    "SurfaceResult",
    "SourceBundle",
    "SourceFetcher",
    "normalize_organic",
    "normalize_ai_overview",
    "normalize_ai_mode",
    "extract_screenshot",

    # Execution
    "ScanExecutor",
    "ScanError",
    "ScanValidationError",
    "ScanSourceError",
    "ai_mode_status",

    # Scheduling
    "BatchScheduler",
    "BatchProgress",
    "ScanBatch",
]
