"""
Exception handlers for the PeekAI API.

Every error leaves the service as

    {"success": false, "error": "...", "error_code": "...", "details": {...}}

with the message scrubbed of credentials, paths and addresses, and the
details restricted to a known set of keys. Server-side failures are
reported to Sentry.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import asyncpg
import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.config import get_settings

from .exceptions import DatabaseError, ErrorCode, PeekAIException, RateLimitError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An error occurred while processing your request"
MAX_MESSAGE_LENGTH = 500

# Any hit replaces the whole message.
_LEAKY = re.compile(
    r"api[_-]?key\s*[:=]|secret|password|bearer\s+\S+"
    r"|sk-or-v1-|[sr]k_(?:test|live)_|whsec_|eyJ[\w-]+\."
    r"|postgres(?:ql)?://|\$\{?[A-Z_]{3,}\}?"
    r"|/(?:home|Users|var|etc|root)/",
    re.IGNORECASE,
)
# Hits are masked in place.
_MASKS = [
    (re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?\b"), "[ip]"),
    (re.compile(r"\b[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12}\b", re.IGNORECASE), "[id]"),
    (re.compile(r"[/\\][\w.\\/-]+\.\w+"), "[path]"),
]

SAFE_DETAIL_KEYS = frozenset({
    "field", "value", "errors",
    "resource_type", "resource_id",
    "tier", "limit", "current_usage", "reset_time",
    "service", "stripe_code",
    "error_reference", "sentry_event_id",
})

_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTHENTICATION_REQUIRED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
}


def is_production() -> bool:
    return get_settings().is_production


def sanitize_error_message(message: Optional[str]) -> Optional[str]:
    if not message:
        return message
    if _LEAKY.search(message):
        return GENERIC_MESSAGE
    for pattern, replacement in _MASKS:
        message = pattern.sub(replacement, message)
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def _clean(value: Any) -> Any:
    if isinstance(value, bool) or isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return sanitize_error_message(value)
    if isinstance(value, dict):
        return {str(k): _clean(v) for k, v in value.items() if isinstance(v, (str, int, float, bool))}
    return None


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop unknown keys and anything that is not a primitive, flat dict or short list."""
    cleaned: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key not in SAFE_DETAIL_KEYS or value is None:
            continue
        if isinstance(value, list):
            cleaned[key] = [item for item in map(_clean, value[:10]) if item is not None]
            continue
        value = _clean(value)
        if value is not None:
            cleaned[key] = value
    return cleaned


def format_pydantic_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Turn pydantic error dicts into up to ten {field, message} pairs."""
    templates = {
        "missing": "Field '{}' is required",
        "string_type": "Field '{}' must be a string",
        "int_type": "Field '{}' must be an integer",
        "int_parsing": "Field '{}' must be an integer",
        "enum": "Field '{}' has an invalid value",
    }
    formatted = []
    for error in errors[:10]:
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "request"
        template = templates.get(error.get("type", ""))
        if template:
            message = template.format(field)
        else:
            message = sanitize_error_message(error.get("msg") or "Invalid value")
        formatted.append({"field": field, "message": message})
    return formatted


def create_error_response(
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(error),
        "error_code": error_code,
    }
    details = sanitize_details(details)
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers or None)


def report_to_sentry(
    exc: BaseException,
    request: Optional[Request] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Capture `exc` with request tags. Returns the event ID, or None when Sentry is off."""
    if not sentry_sdk.get_client().is_active():
        return None

    try:
        with sentry_sdk.new_scope() as scope:
            if request is not None:
                scope.set_context("request", {"method": request.method, "path": request.url.path})
                user_id = getattr(request.state, "user_id", None)
                if user_id:
                    scope.set_user({"id": user_id})
                request_id = getattr(request.state, "request_id", None)
                if request_id:
                    scope.set_tag("request_id", request_id)
            if extra_context:
                scope.set_context("extra", extra_context)
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning("Sentry capture failed: %s", type(e).__name__)
        return None


async def peekai_exception_handler(request: Request, exc: PeekAIException) -> JSONResponse:
    summary = f"{type(exc).__name__} [{exc.error_code.value}] {exc.message}"
    if exc.internal_message:
        summary += f" ({exc.internal_message})"

    if exc.status_code >= 500:
        logger.error(summary)
        report_to_sentry(exc.original_error or exc, request)
    else:
        logger.warning(summary)

    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}

    body = exc.to_dict()
    return create_error_response(
        exc.status_code,
        body["error"],
        body["error_code"],
        details=body.get("details"),
        headers=headers,
    )


async def database_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    """asyncpg errors that escaped a store become a generic DATABASE_ERROR."""
    wrapped = DatabaseError(
        operation=f"{request.method} {request.url.path}",
        original_error=exc,
    )
    return await peekai_exception_handler(request, wrapped)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = format_pydantic_errors(exc.errors())
    logger.warning("Rejected %s %s: %d invalid field(s)", request.method, request.url.path, len(errors))

    message = errors[0]["message"] if len(errors) == 1 else f"Validation failed with {len(errors)} error(s)"
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        message,
        ErrorCode.VALIDATION_ERROR.value,
        details={"errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework errors (unknown route, wrong method) in the standard envelope."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "HTTP %d on %s: %s", exc.status_code, request.url.path, detail)

    headers = {
        name: value
        for name, value in (exc.headers or {}).items()
        if name in ("Retry-After", "WWW-Authenticate")
    }
    return create_error_response(
        exc.status_code,
        detail,
        _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR).value,
        headers=headers,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log, report and answer with a short reference the user can quote."""
    reference = uuid.uuid4().hex[:8]
    logger.error(
        "Unhandled %s [ref:%s] on %s %s",
        type(exc).__name__,
        reference,
        request.method,
        request.url.path,
        exc_info=exc,
    )

    details: Dict[str, Any] = {"error_reference": reference}
    event_id = report_to_sentry(exc, request, extra_context={"error_reference": reference})

    if is_production():
        message = "An unexpected error occurred. Please try again later."
    else:
        message = f"Internal server error: {type(exc).__name__}"
        if event_id:
            details["sentry_event_id"] = event_id

    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        message,
        ErrorCode.INTERNAL_ERROR.value,
        details=details,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PeekAIException, peekai_exception_handler)
    app.add_exception_handler(asyncpg.PostgresError, database_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
