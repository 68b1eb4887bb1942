"""
Request logging middleware for the PeekAI API.

Every response gets X-Request-ID (taken from the caller when present) and
X-Response-Time. One log line is written per request; health checks only
log when they fail.
"""

import logging
import time
import uuid
from typing import Callable, FrozenSet, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.utils.logging import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

SILENT_PATHS: FrozenSet[str] = frozenset({"/", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})
HEALTH_CHECK_PATHS: FrozenSet[str] = frozenset({"/health", "/api/v1/health"})


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assign a request ID and log each request with its duration.

    For /ask/stream the duration covers the time until headers are sent,
    not the whole answer.
    """

    def __init__(
        self,
        app,
        silent_paths: Optional[Iterable[str]] = None,
        quiet_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.silent_paths = frozenset(silent_paths) if silent_paths is not None else SILENT_PATHS
        self.quiet_paths = frozenset(quiet_paths) if quiet_paths is not None else HEALTH_CHECK_PATHS

    def _wants_log(self, path: str, status_code: int) -> bool:
        if path in self.silent_paths:
            return False
        return path not in self.quiet_paths or status_code >= 400

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        path = request.url.path
        fields = {
            "http_method": request.method,
            "http_path": path,
            "client_ip": _client_ip(request),
        }
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "%s %s raised %s",
                request.method,
                path,
                type(exc).__name__,
                extra={**fields, "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
            clear_request_context()
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        user_id = getattr(request.state, "user_id", None)
        if user_id:
            set_request_context(user_id=str(user_id))

        if self._wants_log(path, response.status_code):
            logger.log(
                _level_for(response.status_code),
                "%s %s -> %d (%.1fms)",
                request.method,
                path,
                response.status_code,
                duration_ms,
                extra={**fields, "http_status": response.status_code, "duration_ms": round(duration_ms, 2)},
            )

        clear_request_context()
        return response
