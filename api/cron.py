"""
Scheduled Trigger API

Called by the platform scheduler with "Authorization: Bearer <CRON_SECRET>".

- /api/cron/scan: queue up to CRON_BATCH_SIZE active keywords that are due
- /api/cron/process: scan queued keywords and mark queue rows done/failed

The periodic cadence is the only retry mechanism: failed items stay failed
and the keyword is picked up again on a later run.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from citewatch.database.repository import StoreError
from citewatch.services.tracking import RankTrackingService, RateLimitExceeded
from citewatch.utils.config import Settings, get_settings

from api.dependencies import get_tracking_service, verify_cron_secret

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/cron",
    tags=["Scheduled Trigger"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route("/scan", methods=["GET", "POST"])
async def queue_due_keywords(
    service: RankTrackingService = Depends(get_tracking_service),
    settings: Settings = Depends(get_settings),
):
    """Queue due keywords for scanning."""
    try:
        queued = service.enqueue_due(
            limit=settings.CRON_BATCH_SIZE,
            min_age_hours=settings.CACHE_TTL_HOURS,
        )
    except StoreError as e:
        logger.error(f"Cron error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": True, "queued": queued}


@router.api_route("/process", methods=["GET", "POST"])
async def process_queue(
    service: RankTrackingService = Depends(get_tracking_service),
    settings: Settings = Depends(get_settings),
):
    """Scan queued keywords."""
    try:
        summary = await service.process_queue(limit=settings.CRON_BATCH_SIZE)
    except RateLimitExceeded as e:
        raise HTTPException(status_code=429, detail=str(e))
    except StoreError as e:
        logger.error(f"Cron error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": True, **summary}
