"""
Structured logging for the PeekAI API.

Production writes one JSON object per line; development writes a short
colored line. Every record carries the current request and user IDs, and
credentials that end up in messages (OpenRouter keys, Stripe secrets,
Supabase tokens, database URLs) are masked before output.
"""

import asyncio
import json
import logging
import re
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple

SERVICE_NAME = "peekai-api"

_request_id: ContextVar[Optional[str]] = ContextVar("peekai_request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("peekai_user_id", default=None)

# (pattern, replacement). Known key prefixes are kept so a redacted line still
# shows which credential leaked.
_REDACTIONS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"sk-or-v1-[A-Za-z0-9]+"), "sk-or-v1-[REDACTED]"),
    (re.compile(r"(sk|rk)_(test|live)_[A-Za-z0-9]+"), r"\1_\2_[REDACTED]"),
    (re.compile(r"whsec_[A-Za-z0-9]+"), "whsec_[REDACTED]"),
    (re.compile(r"eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+"), "[REDACTED_JWT]"),
    (re.compile(r"(?i)\bbearer\s+[\w.-]+"), "Bearer [REDACTED]"),
    (re.compile(r"(?i)(postgres(?:ql)?://[^:/\s]+):[^@\s]+@"), r"\1:[REDACTED]@"),
    (re.compile(r"(?i)\b(api[_-]?key|secret|password)(\"?\s*[:=]\s*\"?)[^\s\",}]+"), r"\1\2[REDACTED]"),
]

# LogRecord attributes that are not caller-supplied `extra` fields.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "request_id", "user_id", "taskName"}


def redact_sensitive_data(message: str) -> str:
    """Mask credentials inside a log message."""
    if not message:
        return message
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class RequestContextFilter(logging.Filter):
    """Stamp request_id and user_id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        record.user_id = _user_id.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact the message template and any string arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_sensitive_data(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_sensitive_data(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record, timestamped from the record itself."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.levelno >= logging.ERROR:
            payload["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = _extra_fields(record)
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """HH:MM:SS.mmm LEVEL req/user logger: message {extra}"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        scope = f"{getattr(record, 'request_id', '-')[:8]}/{getattr(record, 'user_id', '-')[:12]}"

        line = (
            f"{self.DIM}{clock}{self.RESET} {color}{record.levelname:<7}{self.RESET} "
            f"{self.DIM}{scope}{self.RESET} {record.name}: {record.getMessage()}"
        )
        extra = _extra_fields(record)
        if extra:
            line += f" {self.DIM}{extra}{self.RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    service_name: str = SERVICE_NAME,
    log_level: Optional[int] = None,
    force_json: bool = False,
) -> logging.Logger:
    """
    Install the PeekAI handler on the root logger.

    Called once from server.py before the application modules are imported.
    LOG_LEVEL picks the level; JSON output is used when ENVIRONMENT is
    production or LOG_FORMAT_JSON is set. All three come from get_settings(),
    so `.env` values apply.
    """
    from src.config import get_settings

    settings = get_settings()
    if log_level is None:
        log_level = logging.getLevelName(settings.logging.log_level)

    use_json = force_json or settings.logging.log_format_json or settings.is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter(service_name) if use_json else DevelopmentFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "stripe", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(log_level), "json": use_json},
    )
    return root


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if request_id is not None:
        _request_id.set(request_id)
    if user_id is not None:
        _user_id.set(user_id)


def clear_request_context() -> None:
    _request_id.set(None)
    _user_id.set(None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def get_user_id() -> Optional[str]:
    return _user_id.get()


class Timer:
    """
    Wall-clock timer for provider calls and exports.

        with Timer("openrouter_completion", logger) as timer:
            ...
        timer.elapsed_ms

    While still running, `running_ms` reports the time so far; a streamed
    answer reads it when the last fragment arrives.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, log_level: int = logging.DEBUG):
        self.name = name
        self.logger = logger
        self.log_level = log_level
        self.start_time: Optional[float] = None
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.elapsed_ms = self.running_ms
        if self.logger is not None:
            self.logger.log(
                self.log_level,
                "%s took %dms",
                self.name,
                self.elapsed_ms,
                extra={"operation": self.name, "duration_ms": self.elapsed_ms, "success": exc_type is None},
            )

    @property
    def running_ms(self) -> int:
        if self.start_time is None:
            return 0
        return int((time.perf_counter() - self.start_time) * 1000)


def timed(name: Optional[str] = None, logger: Optional[logging.Logger] = None) -> Callable:
    """Decorator form of Timer for sync and async callables."""

    def decorator(func: Callable) -> Callable:
        label = name or func.__name__
        log = logger or logging.getLogger(func.__module__)

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with Timer(label, log):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            with Timer(label, log):
                return func(*args, **kwargs)
        return wrapper

    return decorator
