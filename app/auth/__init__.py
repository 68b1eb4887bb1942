"""Authentication components for the PeekAI API."""

from .supabase_jwt import (
    BEARER_SCHEME,
    DEV_USER_ID,
    AuthenticatedUser,
    get_current_user,
    verify_supabase_token,
)

__all__ = [
    "BEARER_SCHEME",
    "DEV_USER_ID",
    "AuthenticatedUser",
    "get_current_user",
    "verify_supabase_token",
]
