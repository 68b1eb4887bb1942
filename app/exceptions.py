"""
HTTP-facing exceptions for the PeekAI API.

Routes translate the domain errors raised under src/ into these classes;
app/error_handlers.py renders every one of them with the same envelope.

    PeekAIException                  500
    ├── ValidationError              400
    ├── AuthenticationError          401
    ├── ResourceNotFoundError        404
    ├── ConflictError                409
    ├── RateLimitError               429
    │   └── QuotaExceededError
    ├── ExternalServiceError         502
    │   ├── StripeServiceError
    │   └── AIProviderError          500
    └── DatabaseError                500
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable codes the extension switches on."""

    INTERNAL_ERROR = "INTERNAL_ERROR"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    FEATURE_NOT_AVAILABLE = "FEATURE_NOT_AVAILABLE"
    WEBHOOK_ERROR = "WEBHOOK_ERROR"

    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    QUERY_NOT_FOUND = "QUERY_NOT_FOUND"

    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    PROFILE_EXISTS = "PROFILE_EXISTS"

    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    STRIPE_ERROR = "STRIPE_ERROR"
    AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"

    DATABASE_ERROR = "DATABASE_ERROR"


def _clip(value: Any, limit: int) -> str:
    text = str(value)
    return text if len(text) <= limit else text[:limit] + "..."


class PeekAIException(Exception):
    """
    Base class for errors that map to an HTTP response.

    Keyword arguments beyond the named ones become response details, with
    None values dropped. `internal_message` is only ever logged.
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **context: Any,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = dict(details or {})
        self.details.update({k: v for k, v in context.items() if v is not None})
        self.original_error = original_error
        if internal_message is None and original_error is not None:
            internal_message = f"{type(original_error).__name__}: {original_error}"
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_code.value}, {self.status_code}, {self.message!r})"


class ValidationError(PeekAIException):
    """Input the request models accept but the domain rejects."""

    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request data"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None, value: Any = None, **kwargs):
        super().__init__(
            message,
            field=field,
            value=None if value is None else _clip(value, 100),
            **kwargs,
        )


class AuthenticationError(PeekAIException):
    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class ResourceNotFoundError(PeekAIException):
    """
    The resource does not exist for this caller.

    Another user's record is reported the same way as a missing one.
    """

    status_code = 404
    default_error_code = ErrorCode.RESOURCE_NOT_FOUND
    default_message = "Resource not found"

    def __init__(
        self,
        message: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            resource_type=resource_type,
            resource_id=None if resource_id is None else str(resource_id)[:36],
            **kwargs,
        )


class ConflictError(PeekAIException):
    status_code = 409
    default_error_code = ErrorCode.RESOURCE_CONFLICT
    default_message = "Resource conflict"

    def __init__(self, message: Optional[str] = None, resource_type: Optional[str] = None, **kwargs):
        super().__init__(message, resource_type=resource_type, **kwargs)


class RateLimitError(PeekAIException):
    """The caller must wait; `retry_after` seconds becomes the Retry-After header."""

    status_code = 429
    default_error_code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.retry_after:
            body["retry_after"] = self.retry_after
        return body


class QuotaExceededError(RateLimitError):
    """Daily question allowance used up; resets at the next UTC midnight."""

    default_error_code = ErrorCode.QUOTA_EXCEEDED
    default_message = "Daily question limit reached"

    def __init__(
        self,
        message: Optional[str] = None,
        tier: Optional[str] = None,
        limit: Optional[int] = None,
        current_usage: Optional[int] = None,
        reset_time: Optional[datetime] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            message,
            retry_after=retry_after,
            tier=tier,
            limit=limit,
            current_usage=current_usage,
            reset_time=reset_time.isoformat() if reset_time else None,
        )


class ExternalServiceError(PeekAIException):
    status_code = 502
    default_error_code = ErrorCode.EXTERNAL_SERVICE_ERROR
    default_message = "External service error"

    def __init__(self, message: Optional[str] = None, service_name: Optional[str] = None, **kwargs):
        super().__init__(message, service=service_name, **kwargs)


class StripeServiceError(ExternalServiceError):
    """A Stripe call failed. Only Stripe's short error code reaches the client."""

    default_error_code = ErrorCode.STRIPE_ERROR
    default_message = "Payment service temporarily unavailable"

    def __init__(self, message: Optional[str] = None, stripe_error_code: Optional[str] = None, **kwargs):
        super().__init__(message, service_name="stripe", stripe_code=stripe_error_code, **kwargs)


class AIProviderError(ExternalServiceError):
    """OpenRouter failed. Reported as 500, like any other failed answer."""

    status_code = 500
    default_error_code = ErrorCode.AI_PROVIDER_ERROR
    default_message = "failed to get AI response"

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message, service_name="openrouter", **kwargs)


class DatabaseError(PeekAIException):
    status_code = 500
    default_error_code = ErrorCode.DATABASE_ERROR
    default_message = "A database error occurred"

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None, **kwargs):
        original = kwargs.get("original_error")
        if operation and original is not None and "internal_message" not in kwargs:
            kwargs["internal_message"] = f"{operation} failed: {original}"
        super().__init__(message, **kwargs)


def is_retryable_error(exc: Exception) -> bool:
    """Whether the client may retry; quota denials last until midnight."""
    if isinstance(exc, QuotaExceededError):
        return False
    return isinstance(exc, (RateLimitError, ExternalServiceError))


def get_safe_error_message(exc: Exception) -> str:
    if isinstance(exc, PeekAIException):
        return exc.message
    return "An unexpected error occurred. Please try again later."
