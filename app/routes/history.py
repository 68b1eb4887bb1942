"""
Query history endpoints.
"""

import logging

from fastapi import APIRouter, Depends, Query

from app.auth import AuthenticatedUser, get_current_user
from app.exceptions import ErrorCode, ResourceNotFoundError, ValidationError
from app.models import (
    ClearHistoryResponse,
    ErrorResponse,
    ExportHistoryRequest,
    ExportResponse,
    HistoryListResponse,
    RecentHistoryResponse,
    SuccessResponse,
)
from src.history.service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    HistoryLog,
    HistoryNotFound,
    UnsupportedExportFormat,
    get_history_log,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=HistoryListResponse)
async def list_history(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    history: HistoryLog = Depends(get_history_log),
) -> HistoryListResponse:
    """A page of the caller's history, newest first."""
    page = await history.list_page(user.user_id, limit=limit, offset=offset)
    return HistoryListResponse(queries=page.queries, total=page.total, has_more=page.has_more)


@router.get("/recent", response_model=RecentHistoryResponse)
async def recent_history(
    user: AuthenticatedUser = Depends(get_current_user),
    history: HistoryLog = Depends(get_history_log),
) -> RecentHistoryResponse:
    return RecentHistoryResponse(queries=await history.recent(user.user_id))


@router.post(
    "/export",
    response_model=ExportResponse,
    responses={400: {"model": ErrorResponse, "description": "Unsupported format"}},
)
async def export_history(
    body: ExportHistoryRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    history: HistoryLog = Depends(get_history_log),
) -> ExportResponse:
    """Export history as markdown, json or pdf (rendered as markdown)."""
    try:
        export = await history.export(user.user_id, body.format, body.query_ids)
    except UnsupportedExportFormat as e:
        raise ValidationError(
            str(e),
            field="format",
            value=body.format,
            error_code=ErrorCode.INVALID_FORMAT,
        )
    return ExportResponse(download_url=export.download_url, filename=export.filename)


@router.delete(
    "/{query_id}",
    response_model=SuccessResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_query(
    query_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    history: HistoryLog = Depends(get_history_log),
) -> SuccessResponse:
    """Delete one of the caller's records."""
    try:
        await history.delete(user.user_id, query_id)
    except HistoryNotFound:
        raise ResourceNotFoundError(
            "Query not found",
            resource_type="query",
            resource_id=str(query_id),
            error_code=ErrorCode.QUERY_NOT_FOUND,
        )
    return SuccessResponse(message="Query deleted")


@router.delete("", response_model=ClearHistoryResponse)
async def clear_history(
    user: AuthenticatedUser = Depends(get_current_user),
    history: HistoryLog = Depends(get_history_log),
) -> ClearHistoryResponse:
    deleted = await history.clear(user.user_id)
    return ClearHistoryResponse(message="History cleared", deleted=deleted)
