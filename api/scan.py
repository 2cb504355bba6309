"""
Citewatch API

FastAPI app exposing:
1. Single keyword scan (organic + AI Overview + AI Mode)
2. Batch scan in bounded concurrency windows
3. Snapshot analysis (see api/analyze.py)
4. Scheduled trigger endpoints (see api/cron.py)
5. Project keyword management (see api/keywords.py)

Errors are returned as {"error": message}.
"""

import logging
import sys
import time
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, ConfigDict, Field

from citewatch import __version__
from citewatch.collector.executor import ScanSourceError, ScanValidationError
from citewatch.database.repository import StoreError
from citewatch.models import Keyword
from citewatch.output.display import merge_display_rows
from citewatch.services.tracking import RankTrackingService
from citewatch.utils.config import get_settings

from api import analyze, cron, keywords
from api.dependencies import get_tracking_service, shutdown_tracking_service

# Configure logging to stdout (the host treats stderr as errors)
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="Citewatch",
    description="AI search visibility tracking powered by SerpApi and Claude",
    version=__version__,
)

app.include_router(analyze.router)
app.include_router(cron.router)
app.include_router(keywords.router)


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_tracking_service()


# ============================================================================
# ERROR FORMAT
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {fields}"})


# ============================================================================
# REQUEST MODELS
# ============================================================================

class ScanRequest(BaseModel):
    """Scan one keyword for a domain."""
    model_config = ConfigDict(populate_by_name=True)

    keyword: Optional[str] = None
    domain: Optional[str] = None
    location: Optional[str] = None
    keyword_id: Optional[str] = Field(default=None, alias="keywordId")
    use_cache: bool = Field(default=False, alias="useCache")


class BatchKeyword(BaseModel):
    id: str
    term: str
    location: Optional[str] = None


class BatchScanRequest(BaseModel):
    """Scan several keywords in concurrency windows."""
    model_config = ConfigDict(populate_by_name=True)

    keywords: List[BatchKeyword]
    domain: str
    window: Optional[int] = Field(default=None, ge=1, le=5)
    use_cache: bool = Field(default=False, alias="useCache")


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Citewatch"}


@app.get("/api/health")
async def health(service: RankTrackingService = Depends(get_tracking_service)):
    """Detailed health check including database status."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "database": "connected" if service.storage_available() else "disconnected",
        "analysis": "enabled" if service.enricher is not None else "disabled",
    }


def _require_rate_limit(service: RankTrackingService):
    try:
        allowed = service.within_rate_limit()
    except StoreError as e:
        logger.error(f"Rate limit check failed: {e}")
        raise HTTPException(status_code=500, detail="Could not check rate limit")
    if not allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again tomorrow.")


@app.post("/api/scan")
async def scan(
    request: ScanRequest,
    service: RankTrackingService = Depends(get_tracking_service),
):
    """
    Scan one keyword across organic, AI Overview and AI Mode.

    Returns the snapshot even when it could not be saved (saved=false).
    """
    started = time.monotonic()

    if not (request.keyword or "").strip() or not (request.domain or "").strip():
        raise HTTPException(status_code=400, detail="Missing required fields")

    _require_rate_limit(service)

    keyword = Keyword(
        id=request.keyword_id or str(uuid4()),
        term=request.keyword,
        locale=request.location or get_settings().DEFAULT_LOCATION,
    )

    try:
        result = await service.scan_keyword(keyword, request.domain, use_cache=request.use_cache)
    except ScanValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ScanSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Scan error: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Internal server error")

    return {
        "success": True,
        "duration": int((time.monotonic() - started) * 1000),
        **result.to_dict(),
    }


@app.post("/api/scan/batch")
async def scan_batch(
    request: BatchScanRequest,
    service: RankTrackingService = Depends(get_tracking_service),
):
    """Scan many keywords; every keyword comes back scanned or failed."""
    if not request.keywords:
        raise HTTPException(status_code=400, detail="No keywords provided")

    _require_rate_limit(service)

    default_location = get_settings().DEFAULT_LOCATION
    batch_keywords = [
        Keyword(id=k.id, term=k.term, locale=k.location or default_location)
        for k in request.keywords
    ]

    try:
        batch = await service.scan_batch(
            batch_keywords,
            request.domain,
            window=request.window,
            use_cache=request.use_cache,
        )
    except Exception as e:
        logger.error(f"Batch scan error: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Internal server error")

    return {
        "success": True,
        "completed": batch.completed,
        "total": batch.total,
        "failed": batch.failed_ids(),
        "results": [s.to_dict() for s in batch.snapshots()],
        "rows": merge_display_rows(batch_keywords, live_results=batch.results),
    }


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.scan:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
