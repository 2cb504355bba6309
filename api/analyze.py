"""
Snapshot Analysis API

Endpoints:
- POST /api/analyze: analyze supplied AI answer text for a stored snapshot
- GET /api/analyze/{snapshot_id}: enrichment state and stored analysis
- POST /api/analyze/{snapshot_id}/retry: manual re-trigger in the background
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from citewatch.analyzer.enricher import AnalysisError
from citewatch.database.repository import StoreError
from citewatch.services.tracking import RankTrackingService

from api.dependencies import get_tracking_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/analyze", tags=["Analysis"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class AnalyzeRequest(BaseModel):
    """Inbound analysis request."""
    model_config = ConfigDict(populate_by_name=True)

    snapshot_id: Optional[str] = Field(default=None, alias="snapshotId")
    text: Optional[str] = None
    # Accepted for older clients
    snippet: Optional[str] = None
    keyword: Optional[str] = None
    domain: Optional[str] = None


class RetryRequest(BaseModel):
    keyword: str = ""


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("")
async def analyze_snapshot(
    request: AnalyzeRequest,
    service: RankTrackingService = Depends(get_tracking_service),
):
    """Run analysis now and patch the snapshot's analysis fields."""
    text = request.text or request.snippet
    if not request.snapshot_id or not (text or "").strip():
        raise HTTPException(status_code=400, detail="Missing required fields")

    try:
        outcome = await service.analyze_snapshot(
            request.snapshot_id,
            text,
            request.keyword or "",
            request.domain,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except (ValueError, StoreError) as e:
        raise HTTPException(status_code=500, detail=str(e))

    if not outcome.succeeded:
        raise HTTPException(status_code=500, detail=outcome.error or "Analysis failed")

    return {"success": True, "analysis": outcome.analysis.to_dict()}


@router.get("/{snapshot_id}")
async def analysis_status(
    snapshot_id: str,
    service: RankTrackingService = Depends(get_tracking_service),
):
    """
    Enrichment state for a snapshot.

    state is "succeeded" once analysis is stored, whether or not this
    process ran it; None means no analysis was ever scheduled here.
    """
    snapshot = service.store.get(snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Snapshot {snapshot_id} not found")

    state = service.enricher.status(snapshot_id) if service.enricher else None
    return {
        "snapshot_id": snapshot_id,
        "state": "succeeded" if snapshot.has_analysis else (state.value if state else None),
        "analysis": {
            "sentiment": snapshot.sentiment_label,
            "sentiment_score": snapshot.sentiment_score,
            "gap": snapshot.content_gap,
            "strategy": snapshot.strategy_suggestion,
            "sources": snapshot.analysis_sources or [],
        } if snapshot.has_analysis else None,
    }


@router.post("/{snapshot_id}/retry", status_code=202)
async def retry_analysis(
    snapshot_id: str,
    request: RetryRequest,
    service: RankTrackingService = Depends(get_tracking_service),
):
    """Schedule a fresh analysis in the background."""
    try:
        task = service.retrigger_analysis(snapshot_id, request.keyword)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {"success": True, "snapshot_id": snapshot_id, "state": task.state.value}
