"""
Project & Keyword Management API

Endpoints:
- POST /api/projects: get or create the project for a domain
- GET /api/projects/{project_id}/keywords: active keywords with latest results
- POST /api/projects/{project_id}/keywords: track a keyword
- DELETE /api/projects/{project_id}/keywords/{keyword_id}: stop tracking (soft delete)
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from citewatch.models import Keyword, Project
from citewatch.output.display import merge_display_rows, summarize
from citewatch.services.tracking import RankTrackingService
from citewatch.utils.domain_match import normalize_domain

from api.dependencies import get_tracking_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/projects", tags=["Projects"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domain: str
    name: Optional[str] = None
    target_location: str = Field(default="United States", alias="targetLocation")


class ProjectResponse(BaseModel):
    id: str
    name: str
    domain: str
    target_location: str
    created_at: Optional[datetime] = None


class KeywordRequest(BaseModel):
    term: str
    location: Optional[str] = None


class KeywordResponse(BaseModel):
    id: str
    term: str
    location: str
    is_active: bool
    created_at: Optional[datetime] = None


def _project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        domain=project.domain,
        target_location=project.target_location,
        created_at=project.created_at,
    )


def _keyword_response(keyword: Keyword) -> KeywordResponse:
    return KeywordResponse(
        id=keyword.id,
        term=keyword.term,
        location=keyword.locale,
        is_active=keyword.is_active,
        created_at=keyword.created_at,
    )


def _get_project(service: RankTrackingService, project_id: str) -> Project:
    project = service.keywords.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=ProjectResponse)
async def get_or_create_project(
    request: ProjectRequest,
    service: RankTrackingService = Depends(get_tracking_service),
):
    domain = normalize_domain(request.domain)
    if not domain:
        raise HTTPException(status_code=400, detail="Missing required field: domain")

    project = service.keywords.get_or_create_project(
        domain,
        name=request.name,
        target_location=request.target_location,
    )
    return _project_response(project)


@router.get("/{project_id}/keywords")
async def list_keywords(
    project_id: str,
    service: RankTrackingService = Depends(get_tracking_service),
) -> Dict:
    """Active keywords plus one display row each (latest stored snapshot or pending)."""
    project = _get_project(service, project_id)
    keywords = service.keywords.list_keywords(project_id)
    stored = service.store.latest_for_keywords([k.id for k in keywords], domain=project.domain)
    rows = merge_display_rows(keywords, stored=stored)

    return {
        "project": _project_response(project).model_dump(mode="json"),
        "keywords": [_keyword_response(k).model_dump(mode="json") for k in keywords],
        "rows": rows,
        "summary": summarize(rows),
    }


@router.post("/{project_id}/keywords", response_model=KeywordResponse, status_code=201)
async def add_keyword(
    project_id: str,
    request: KeywordRequest,
    service: RankTrackingService = Depends(get_tracking_service),
):
    try:
        keyword = service.keywords.add_keyword(project_id, request.term, request.location)
    except LookupError:
        raise HTTPException(status_code=404, detail="Project not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Tracking keyword '{keyword.term}' for project {project_id}")
    return _keyword_response(keyword)


@router.delete("/{project_id}/keywords/{keyword_id}")
async def delete_keyword(
    project_id: str,
    keyword_id: str,
    service: RankTrackingService = Depends(get_tracking_service),
):
    keyword = service.keywords.get_keyword(keyword_id)
    if keyword is None or keyword.project_id != project_id:
        raise HTTPException(status_code=404, detail="Keyword not found")

    service.keywords.deactivate_keyword(keyword_id)
    return {"success": True, "id": keyword_id}
