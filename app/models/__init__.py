"""Request and response models for the PeekAI API."""

from .requests import (
    AskRequest,
    CheckoutRequest,
    CreateProfileRequest,
    ExportHistoryRequest,
    PortalRequest,
    UpdateProfileRequest,
)
from .responses import (
    AskResponse,
    CheckoutResponse,
    ClearHistoryResponse,
    ErrorResponse,
    ExportResponse,
    HistoryListResponse,
    PortalResponse,
    RecentHistoryResponse,
    SuccessResponse,
    WebhookResponse,
)

__all__ = [
    "AskRequest",
    "CheckoutRequest",
    "CreateProfileRequest",
    "ExportHistoryRequest",
    "PortalRequest",
    "UpdateProfileRequest",
    "AskResponse",
    "CheckoutResponse",
    "ClearHistoryResponse",
    "ErrorResponse",
    "ExportResponse",
    "HistoryListResponse",
    "PortalResponse",
    "RecentHistoryResponse",
    "SuccessResponse",
    "WebhookResponse",
]
