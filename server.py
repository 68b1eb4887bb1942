"""
Backend server for the PeekAI extension.
Relays contextual questions to OpenRouter, tracks per-tier usage,
keeps query history and handles Stripe subscriptions.

This is the main entry point that assembles the modular components
from the app package.
"""

import os
import re
import sys
from contextlib import asynccontextmanager

import sentry_sdk
import uvicorn
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

# Configure structured logging FIRST, before other imports that use logging
from src.utils.logging import setup_logging

logger = setup_logging(service_name="peekai-api")

from pydantic import ValidationError as SettingsError

from src.config import Settings, get_settings

# =============================================================================
# Configuration
# =============================================================================

try:
    settings: Settings = get_settings()
    logger.info("Configuration loaded: %s", settings.get_config_summary())
except SettingsError as e:
    logger.critical(f"Configuration validation failed: {e}")
    logger.critical("Application cannot start due to configuration errors.")
    sys.exit(1)

if not settings.is_openrouter_configured:
    logger.warning("OPENROUTER_API_KEY is not set; /ask requests will fail upstream")

# =============================================================================
# Import middleware and routes after config is loaded
# =============================================================================

from app.error_handlers import register_exception_handlers
from app.middleware import RequestLoggingMiddleware
from app.routes import (
    ai_router,
    billing_router,
    health_router,
    history_router,
    profile_router,
)
from src import db
from src.relay import close_ai_relay

# =============================================================================
# Sentry Error Tracking Configuration
# =============================================================================

SENSITIVE_BREADCRUMB_KEYS = [
    "password", "api_key", "apikey", "api-key", "secret", "token",
    "authorization", "bearer", "credential", "private", "stripe-signature",
]


def filter_sensitive_breadcrumbs(crumb, hint):
    """
    Filter sensitive data from Sentry breadcrumbs.

    Masks authorization headers, secret-looking query parameters and
    log messages that mention credentials.
    """
    if crumb.get("category") == "http":
        data = crumb.get("data")
        if isinstance(data, dict):
            headers = data.get("headers")
            if isinstance(headers, dict):
                for key in list(headers.keys()):
                    if any(s in key.lower() for s in SENSITIVE_BREADCRUMB_KEYS):
                        headers[key] = "[FILTERED]"
            if "url" in data:
                url = data["url"]
                for key in SENSITIVE_BREADCRUMB_KEYS:
                    if f"{key}=" in url.lower():
                        pattern = re.compile(f"({re.escape(key)}=)[^&]*", re.IGNORECASE)
                        url = pattern.sub(r"\1[FILTERED]", url)
                data["url"] = url

    if crumb.get("category") in ("console", "log") and "message" in crumb:
        message = str(crumb["message"]).lower()
        if any(key in message for key in SENSITIVE_BREADCRUMB_KEYS):
            crumb["message"] = "[FILTERED - may contain sensitive data]"

    return crumb


if settings.is_sentry_configured:
    sentry_settings = settings.sentry
    sentry_sdk.init(
        dsn=sentry_settings.sentry_dsn,
        environment=sentry_settings.sentry_environment,
        sample_rate=1.0,
        traces_sample_rate=sentry_settings.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        before_breadcrumb=filter_sensitive_breadcrumbs,
        send_default_pii=False,
        attach_stacktrace=True,
        server_name=sentry_settings.server_name,
        release=sentry_settings.sentry_release,
    )
    logger.info(f"Sentry initialized for environment: {sentry_settings.sentry_environment}")
else:
    logger.info("Sentry DSN not configured, error tracking disabled")


# =============================================================================
# Initialize FastAPI App
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema on startup and release shared clients on shutdown."""
    if db.is_database_configured():
        try:
            await db.ensure_schema()
        except Exception as e:
            logger.error("Failed to ensure Postgres schema: %s", e)
            raise
    else:
        logger.info("DATABASE_URL not set, using in-memory stores")
    yield
    try:
        await close_ai_relay()
    except Exception as e:
        logger.warning("Failed to close OpenRouter client: %s", e)
    try:
        await db.close_pool()
    except Exception as e:
        logger.warning("Failed to close Postgres pool: %s", e)


app = FastAPI(
    title="PeekAI API",
    description="""
## Contextual AI answers for the PeekAI browser extension

### Authentication

Every endpoint except `/health` and `/billing/webhook` requires a Supabase
access token via `Authorization: Bearer <token>`.

### Tiers

| Tier | Daily | Monthly | Default model |
|------|-------|---------|---------------|
| Free | 10 | 300 | openai/gpt-3.5-turbo |
| Student Pro | 200 | 6000 | openai/gpt-4-turbo |
| Premium | 1000 | 30000 | anthropic/claude-3-opus |

Requests over the daily limit return `429` with a `Retry-After` header
pointing at the next UTC midnight.

### Versioning

Every route is served at the root and under `/api/v1`.
""",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "health", "description": "Health checks and system status"},
        {"name": "ai", "description": "Ask questions, buffered or streamed over SSE"},
        {"name": "profile", "description": "Profile, tier and usage counters"},
        {"name": "history", "description": "Query history, export and deletion"},
        {"name": "billing", "description": "Stripe checkout, portal and webhooks"},
    ],
)

# =============================================================================
# Exception Handlers
# =============================================================================

register_exception_handlers(app)
logger.info("Centralized exception handlers registered")

# =============================================================================
# Middleware
# =============================================================================

security_settings = settings.security

app.add_middleware(
    CORSMiddleware,
    allow_origins=security_settings.origins_list,
    allow_origin_regex=security_settings.allowed_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "X-Request-ID",
        "Accept",
        "Origin",
    ],
    expose_headers=["X-Request-ID", "X-Response-Time", "Retry-After"],
    max_age=600,
)

# Added last so it wraps every other middleware
if settings.logging.request_logging_enabled:
    app.add_middleware(RequestLoggingMiddleware)
    logger.info("Request logging middleware enabled")

# =============================================================================
# Include Routers
# =============================================================================

ROUTERS = [ai_router, profile_router, history_router, billing_router]

app.include_router(health_router)
for router in ROUTERS:
    app.include_router(router)

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(health_router)
for router in ROUTERS:
    api_v1_router.include_router(router)

app.include_router(api_v1_router)


@app.get("/config-status", tags=["health"])
async def get_config_status():
    """Configuration flags without secrets. Disabled in production."""
    if settings.is_production and not settings.is_dev_mode:
        return {
            "error": "Config status endpoint disabled in production",
            "environment": security_settings.environment,
        }

    return {
        "success": True,
        "config": settings.get_config_summary(),
    }


if __name__ == "__main__":
    reload_enabled = os.environ.get("UVICORN_RELOAD", "false").lower() == "true"
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=reload_enabled)
