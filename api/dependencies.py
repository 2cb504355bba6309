"""
Shared API dependencies.

The tracking service is built once per process from settings; tests swap it
out with app.dependency_overrides.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from citewatch.services.tracking import RankTrackingService, build_tracking_service
from citewatch.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

_service: Optional[RankTrackingService] = None


def get_tracking_service() -> RankTrackingService:
    """Get or create the process-wide tracking service."""
    global _service
    if _service is None:
        _service = build_tracking_service(get_settings())
    return _service


async def shutdown_tracking_service():
    global _service
    if _service is not None:
        await _service.close()
        _service = None


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
):
    """Require "Authorization: Bearer <CRON_SECRET>"."""
    expected = f"Bearer {settings.CRON_SECRET}".encode()
    if not settings.CRON_SECRET or not hmac.compare_digest((authorization or "").encode(), expected):
        logger.warning("Rejected cron request with missing or invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")
