"""
Health check endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import sentry_sdk
from fastapi import APIRouter

from src import db
from src.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def get_database_status() -> Dict[str, Any]:
    """Check Postgres connectivity with a trivial query."""
    if not db.is_database_configured():
        return {"configured": False, "connected": False, "backend": "memory"}

    try:
        start_time = datetime.now()
        await db.fetchval("SELECT 1")
        latency_ms = (datetime.now() - start_time).total_seconds() * 1000
        return {
            "configured": True,
            "connected": True,
            "backend": "postgres",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        logger.warning(f"Database health check failed: {type(e).__name__}")
        return {
            "configured": True,
            "connected": False,
            "backend": "postgres",
            "error": type(e).__name__,
        }


@router.get("/health")
async def health() -> Dict[str, Any]:
    """Liveness check with configuration flags (never secrets)."""
    settings = get_settings()
    database = await get_database_status()
    status_value = "healthy" if not database["configured"] or database["connected"] else "degraded"

    return {
        "status": status_value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.sentry.sentry_release,
        "environment": settings.security.environment,
        "services": {
            "openrouter": {"configured": settings.is_openrouter_configured},
            "auth": {"configured": settings.auth.is_configured, "dev_mode": settings.is_dev_mode},
            "database": database,
            "stripe": {
                "configured": settings.is_stripe_configured,
                "webhook_configured": settings.stripe.has_webhook_secret,
            },
            "sentry": {"configured": sentry_sdk.get_client().is_active()},
        },
    }
