"""API routes for the PeekAI API."""

from .ai import router as ai_router
from .billing import router as billing_router
from .health import router as health_router
from .history import router as history_router
from .profile import router as profile_router

__all__ = [
    "ai_router",
    "billing_router",
    "health_router",
    "history_router",
    "profile_router",
]
