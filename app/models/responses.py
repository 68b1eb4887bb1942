"""
Pydantic response models for API endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.types.history import QueryRecord


class AskResponse(BaseModel):
    answer: str
    model: str
    response_time_ms: int
    token_count: Optional[int] = None


class HistoryListResponse(BaseModel):
    queries: List[QueryRecord]
    total: int
    has_more: bool


class RecentHistoryResponse(BaseModel):
    queries: List[QueryRecord]


class ExportResponse(BaseModel):
    download_url: str = Field(..., description="base64 data: URL of the rendered export")
    filename: str


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class ClearHistoryResponse(SuccessResponse):
    deleted: int = 0


class CheckoutResponse(BaseModel):
    session_id: str
    url: str


class PortalResponse(BaseModel):
    url: str


class WebhookResponse(BaseModel):
    success: bool
    message: str
    sync: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error envelope (see app/error_handlers.py)."""

    success: bool = False
    error: str
    error_code: str
    details: Optional[Dict[str, Any]] = None
