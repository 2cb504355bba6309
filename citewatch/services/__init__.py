"""
Citewatch - Services

Application-level orchestration used by the API, cron trigger and CLI.
"""

from .tracking import (
    RankTrackingService,
    RateLimitExceeded,
    ScanResult,
    build_tracking_service,
)

__all__ = [
    "RankTrackingService",
    "RateLimitExceeded",
    "ScanResult",
    "build_tracking_service",
]
