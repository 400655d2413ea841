"""
Analysis routes of the code review API.

This module contains the analysis endpoints:
- POST /api/analyses - Create an analysis of a connected repository
- POST /api/analyses/one-off - Create an analysis of a public GitHub URL
- POST /api/analyses/{analysis_id}/start - Run the analysis in the background
- GET /api/analyses/{analysis_id} - Analysis with its item results
- GET /api/analyses - List the user's analyses
- GET /api/analyses/{analysis_id}/progress - Live progress payload
- GET /api/analyses/{analysis_id}/export - Export as JSON or Markdown
"""

import logging
import uuid
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from codereview.domain.exceptions import (
    AccessDeniedError,
    InvalidRepositoryUrlError,
    InvalidTransitionError,
    NotFoundError,
)
from codereview.infrastructure.constants.evaluation_constants import DEFAULT_LIST_LIMIT
from codereview.schemas import (
    AnalysisDetail,
    AnalysisFilters,
    AnalysisProgress,
    AnalysisSummary,
    CreateAnalysisRequest,
    CreateAnalysisResponse,
    CreateOneOffAnalysisRequest,
    StartAnalysisResponse,
)
from codereview.services.analysis_service import AnalysisService
from codereview.services.evaluation.scheduler import FanOutScheduler
from codereview.services.export_service import export_as_json, export_as_markdown
from codereview.services.external.auth_middleware import CurrentUser, get_current_user
from codereview.services.external.rate_limiter import ANALYSIS_RATE_LIMIT, READ_RATE_LIMIT, limiter
from codereview.utils.structured_logger import request_end, request_error, request_start

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analysis"])


def get_analysis_service() -> AnalysisService:
    return AnalysisService()


def get_scheduler(
    analysis_service: AnalysisService = Depends(get_analysis_service),
) -> FanOutScheduler:
    return FanOutScheduler(analysis_service)


def to_http_exception(error: Exception) -> HTTPException:
    """Map domain errors to HTTP errors; anything unexpected becomes a 500."""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, AccessDeniedError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (InvalidRepositoryUrlError, ValueError)):
        return HTTPException(status_code=400, detail=str(error))
    logger.error(f"Unexpected error: {str(error)}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Internal error: {str(error)}")


def _fail(endpoint: str, start: float, user_id: str, error: Exception) -> HTTPException:
    http_error = to_http_exception(error)
    request_error(
        endpoint,
        start,
        user_id=user_id,
        http_status=http_error.status_code,
        error=str(http_error.detail),
    )
    return http_error


@router.post(
    "/api/analyses",
    response_model=CreateAnalysisResponse,
    status_code=201,
    summary="Create analysis",
    description="Create a pending analysis of a connected repository against a rubric.",
)
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def create_analysis(
    request: Request,
    payload: CreateAnalysisRequest,
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    endpoint = "/api/analyses"
    start = request_start(endpoint, user_id=current_user.user_id)
    try:
        analysis_id = analysis_service.create_analysis(
            current_user.user_id,
            payload.repository_id,
            payload.rubric_id,
            branch=payload.branch,
        )
    except Exception as e:
        raise _fail(endpoint, start, current_user.user_id, e)

    request_end(endpoint, start, user_id=current_user.user_id, http_status=201, analysis_id=analysis_id)
    return CreateAnalysisResponse(analysis_id=analysis_id, message="Analysis created")


@router.post(
    "/api/analyses/one-off",
    response_model=CreateAnalysisResponse,
    status_code=201,
    summary="Create one-off analysis",
    description="Create a pending analysis of a public GitHub repository given by URL.",
)
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def create_one_off_analysis(
    request: Request,
    payload: CreateOneOffAnalysisRequest,
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    endpoint = "/api/analyses/one-off"
    start = request_start(endpoint, user_id=current_user.user_id)
    try:
        analysis_id = analysis_service.create_one_off_analysis(
            current_user.user_id,
            payload.repository_url,
            payload.rubric_id,
            branch=payload.branch,
        )
    except Exception as e:
        raise _fail(endpoint, start, current_user.user_id, e)

    request_end(endpoint, start, user_id=current_user.user_id, http_status=201, analysis_id=analysis_id)
    return CreateAnalysisResponse(analysis_id=analysis_id, message="Analysis created")


@router.post(
    "/api/analyses/{analysis_id}/start",
    response_model=StartAnalysisResponse,
    status_code=202,
    summary="Start analysis",
    description="Fetch the repository and evaluate every rubric item in the background.",
)
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def start_analysis(
    request: Request,
    analysis_id: str,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
    scheduler: FanOutScheduler = Depends(get_scheduler),
):
    endpoint = "/api/analyses/{analysis_id}/start"
    start = request_start(endpoint, user_id=current_user.user_id, analysis_id=analysis_id)
    run_handle = f"run_{uuid.uuid4().hex[:12]}"
    try:
        status = analysis_service.start_analysis(analysis_id, current_user.user_id, run_handle)
    except Exception as e:
        raise _fail(endpoint, start, current_user.user_id, e)

    background_tasks.add_task(scheduler.run, analysis_id, run_handle)
    logger.info(f"[StartAnalysis] Scheduled analysis {analysis_id} with run handle {run_handle}")

    request_end(endpoint, start, user_id=current_user.user_id, http_status=202, analysis_id=analysis_id)
    return StartAnalysisResponse(
        analysis_id=analysis_id,
        status=status,
        message=f"Analysis accepted (run handle {run_handle})",
    )


@router.get(
    "/api/analyses",
    response_model=List[AnalysisSummary],
    summary="List analyses",
    description="List the current user's analyses, newest first.",
)
@limiter.limit(READ_RATE_LIMIT)
async def list_analyses(
    request: Request,
    repository_id: Optional[str] = None,
    rubric_id: Optional[str] = None,
    status: Optional[Literal["pending", "running", "completed", "failed"]] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    endpoint = "/api/analyses"
    start = request_start(endpoint, user_id=current_user.user_id, method="GET")
    try:
        filters = AnalysisFilters(
            repository_id=repository_id,
            rubric_id=rubric_id,
            status=status,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
        )
        analyses = analysis_service.list_analyses(current_user.user_id, filters)
    except Exception as e:
        raise _fail(endpoint, start, current_user.user_id, e)

    request_end(endpoint, start, user_id=current_user.user_id, count=len(analyses))
    return analyses


@router.get(
    "/api/analyses/{analysis_id}",
    response_model=AnalysisDetail,
    summary="Get analysis",
    description="Get an analysis together with all of its item results.",
)
@limiter.limit(READ_RATE_LIMIT)
async def get_analysis(
    request: Request,
    analysis_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    endpoint = "/api/analyses/{analysis_id}"
    start = request_start(endpoint, user_id=current_user.user_id, analysis_id=analysis_id)
    try:
        detail = analysis_service.get_analysis(analysis_id, current_user.user_id)
    except Exception as e:
        raise _fail(endpoint, start, current_user.user_id, e)

    request_end(endpoint, start, user_id=current_user.user_id, analysis_id=analysis_id)
    return detail


@router.get(
    "/api/analyses/{analysis_id}/progress",
    response_model=AnalysisProgress,
    response_model_exclude_none=True,
    summary="Analysis progress",
    description="Live progress while the analysis runs, derived from stored state otherwise.",
)
async def get_progress(
    request: Request,
    analysis_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    try:
        return analysis_service.get_progress(analysis_id, current_user.user_id)
    except Exception as e:
        raise to_http_exception(e)


@router.get(
    "/api/analyses/{analysis_id}/export",
    summary="Export analysis",
    description="Download an analysis as JSON or Markdown.",
)
@limiter.limit(READ_RATE_LIMIT)
async def export_analysis(
    request: Request,
    analysis_id: str,
    format: Literal["json", "markdown"] = "json",
    current_user: CurrentUser = Depends(get_current_user),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    endpoint = "/api/analyses/{analysis_id}/export"
    start = request_start(endpoint, user_id=current_user.user_id, analysis_id=analysis_id, format=format)
    try:
        detail = analysis_service.get_analysis(analysis_id, current_user.user_id)
    except Exception as e:
        raise _fail(endpoint, start, current_user.user_id, e)

    if format == "markdown":
        content = export_as_markdown(detail)
        media_type = "text/markdown"
        extension = "md"
    else:
        content = export_as_json(detail)
        media_type = "application/json"
        extension = "json"

    request_end(endpoint, start, user_id=current_user.user_id, analysis_id=analysis_id)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="analysis-{analysis_id}.{extension}"'},
    )
