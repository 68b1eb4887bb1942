"""
Supabase access token verification.

The extension signs users in with Supabase and sends the access token as
`Authorization: Bearer <jwt>`. Tokens are HS256-signed with the project's
JWT secret and carry `aud="authenticated"`.

Configuration:
- SUPABASE_JWT_SECRET (required): project JWT secret
- SUPABASE_JWT_AUDIENCE (optional): expected `aud` claim, default "authenticated"
- DEV_MODE=true: skip verification and act as "dev_user" (blocked when
  production indicators are present)
"""

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from app.exceptions import AuthenticationError, ErrorCode
from src.config import Settings, get_settings
from src.utils.logging import set_request_context

logger = logging.getLogger(__name__)

BEARER_SCHEME = HTTPBearer(auto_error=False)

DEV_USER_ID = "dev_user"
DEV_USER_EMAIL = "dev@peekai.local"


class AuthenticatedUser(BaseModel):
    user_id: str
    email: Optional[str] = None


def verify_supabase_token(
    token: str,
    secret: str,
    audience: Optional[str] = "authenticated",
) -> Dict[str, Any]:
    """
    Verify a Supabase access token and return decoded claims.

    Raises jwt.PyJWTError subclasses on invalid tokens.
    """
    options = {"verify_aud": audience is not None, "require": ["sub", "exp"]}
    kwargs: Dict[str, Any] = {"options": options}
    if audience is not None:
        kwargs["audience"] = audience

    return jwt.decode(token, secret, algorithms=["HS256"], **kwargs)


def _is_dev_mode_safe(settings: Settings) -> bool:
    """
    DEV_MODE is blocked if production indicators are detected:
    - ENVIRONMENT or SENTRY_ENVIRONMENT is "production"
    - Stripe is in live mode
    """
    if settings.is_production:
        return False
    if settings.sentry.sentry_environment.lower() in ("production", "prod"):
        return False
    return not settings.stripe.is_live


_dev_mode_warning_logged = False


def _dev_mode_user(settings: Settings) -> Optional[AuthenticatedUser]:
    global _dev_mode_warning_logged

    if not settings.is_dev_mode:
        return None

    if not _is_dev_mode_safe(settings):
        logger.error(
            "DEV_MODE was requested but BLOCKED due to production indicators. "
            "Check ENVIRONMENT, SENTRY_ENVIRONMENT and STRIPE_SECRET_KEY."
        )
        return None

    if not _dev_mode_warning_logged:
        logger.warning(
            "DEV_MODE is enabled - authentication is bypassed! "
            "Never use this in production."
        )
        _dev_mode_warning_logged = True
    return AuthenticatedUser(user_id=DEV_USER_ID, email=DEV_USER_EMAIL)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(BEARER_SCHEME),
) -> AuthenticatedUser:
    """
    Resolve the caller from the bearer token.

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    settings = get_settings()
    user = _dev_mode_user(settings)

    if user is None:
        if credentials is None or not credentials.credentials:
            raise AuthenticationError("Authentication required")

        secret = settings.auth.supabase_jwt_secret
        if not secret:
            logger.error("SUPABASE_JWT_SECRET is not configured; rejecting token")
            raise AuthenticationError(
                "Authentication is not configured",
                error_code=ErrorCode.INVALID_TOKEN,
            )

        try:
            claims = verify_supabase_token(
                credentials.credentials,
                secret.get_secret_value(),
                settings.auth.supabase_jwt_audience,
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError(
                "Session expired, please sign in again",
                error_code=ErrorCode.EXPIRED_TOKEN,
            )
        except jwt.PyJWTError as e:
            raise AuthenticationError(
                "Invalid credentials",
                error_code=ErrorCode.INVALID_TOKEN,
                internal_message=type(e).__name__,
            )

        user = AuthenticatedUser(user_id=str(claims["sub"]), email=claims.get("email"))

    request.state.user_id = user.user_id
    set_request_context(user_id=user.user_id)
    return user
