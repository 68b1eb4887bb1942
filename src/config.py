"""
Settings for the PeekAI API, read from the environment and `.env`.

Each concern has its own settings group; `get_settings()` returns the cached
aggregate. Secrets are `SecretStr` and never appear in
`Settings.get_config_summary()`.

    settings = get_settings()
    if settings.is_stripe_configured:
        ...
"""

from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class _EnvGroup(BaseSettings):
    """Common loader for every settings group."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# =============================================================================
# OpenRouter
# =============================================================================


class OpenRouterSettings(_EnvGroup):
    openrouter_api_key: Optional[SecretStr] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    # Identifying headers OpenRouter shows on its dashboard.
    openrouter_referer: str = "https://peekai.app"
    openrouter_title: str = "PeekAI Browser Extension"
    openrouter_timeout_seconds: float = Field(
        default=120.0,
        ge=0,
        le=600,
        description="0 disables the timeout",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.openrouter_api_key)


# =============================================================================
# Supabase token verification
# =============================================================================


class AuthSettings(_EnvGroup):
    supabase_jwt_secret: Optional[SecretStr] = Field(default=None, description="HS256 signing secret")
    supabase_jwt_audience: str = "authenticated"

    @property
    def is_configured(self) -> bool:
        return bool(self.supabase_jwt_secret)


# =============================================================================
# Postgres
# =============================================================================


class DatabaseSettings(_EnvGroup):
    """Connection details used by the pool in src/db.py."""

    database_url: Optional[SecretStr] = None
    database_url_direct: Optional[SecretStr] = None
    database_pool_min_size: int = Field(default=1, ge=0)
    database_pool_max_size: int = Field(default=5, ge=1)

    @property
    def is_configured(self) -> bool:
        return bool(self.database_url_direct or self.database_url)


# =============================================================================
# Stripe
# =============================================================================


class StripeSettings(_EnvGroup):
    stripe_secret_key: Optional[SecretStr] = None
    stripe_webhook_secret: Optional[SecretStr] = None
    stripe_price_id_student_pro: str = "price_student_pro"
    stripe_price_id_premium: str = "price_premium"

    @property
    def is_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def has_webhook_secret(self) -> bool:
        return bool(self.stripe_webhook_secret)

    @property
    def is_live(self) -> bool:
        key = self.stripe_secret_key.get_secret_value() if self.stripe_secret_key else ""
        return key.startswith(("sk_live_", "rk_live_"))

    @property
    def price_tiers(self) -> Dict[str, str]:
        """Price ID -> tier value for the paid plans."""
        return {
            self.stripe_price_id_student_pro: "student_pro",
            self.stripe_price_id_premium: "premium",
        }


# =============================================================================
# Usage gate
# =============================================================================


class UsageSettings(_EnvGroup):
    usage_strict_locking: bool = Field(
        default=False,
        description="Hold a per-user lock from gate to commit",
    )
    usage_monthly_reset: bool = Field(
        default=True,
        description="Zero monthly_usage when a new UTC month starts",
    )


# =============================================================================
# Environment and CORS
# =============================================================================


class SecuritySettings(_EnvGroup):
    environment: Literal["development", "staging", "production"] = "development"
    dev_mode: bool = Field(default=False, description="Skip token verification and act as dev_user")

    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    allowed_origin_regex: Optional[str] = r"chrome-extension://.*"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


# =============================================================================
# Logging and Sentry
# =============================================================================


class LoggingSettings(_EnvGroup):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format_json: bool = Field(default=False, description="JSON log lines outside production too")
    request_logging_enabled: bool = True


class SentrySettings(_EnvGroup):
    sentry_dsn: Optional[str] = None
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    sentry_release: Optional[str] = "peekai-api@1.0.0"
    server_name: str = "peekai-api"

    @property
    def is_configured(self) -> bool:
        return bool(self.sentry_dsn)


# =============================================================================
# Aggregate
# =============================================================================


class Settings(_EnvGroup):
    openrouter: OpenRouterSettings = Field(default_factory=OpenRouterSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    usage: UsageSettings = Field(default_factory=UsageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @property
    def is_openrouter_configured(self) -> bool:
        return self.openrouter.is_configured

    @property
    def is_database_configured(self) -> bool:
        return self.database.is_configured

    @property
    def is_stripe_configured(self) -> bool:
        return self.stripe.is_configured

    @property
    def is_sentry_configured(self) -> bool:
        return self.sentry.is_configured

    @property
    def is_production(self) -> bool:
        return self.security.is_production

    @property
    def is_dev_mode(self) -> bool:
        return self.security.dev_mode

    def get_config_summary(self) -> Dict[str, Any]:
        """What is switched on, for the startup log and /config-status. No secrets."""
        return {
            "environment": self.security.environment,
            "dev_mode": self.is_dev_mode,
            "openrouter": {
                "configured": self.is_openrouter_configured,
                "timeout_seconds": self.openrouter.openrouter_timeout_seconds,
            },
            "token_verification": self.auth.is_configured,
            "database": self.is_database_configured,
            "stripe": {
                "configured": self.is_stripe_configured,
                "live": self.stripe.is_live,
                "webhooks": self.stripe.has_webhook_secret,
            },
            "sentry": self.is_sentry_configured,
            "usage": {
                "strict_locking": self.usage.usage_strict_locking,
                "monthly_reset": self.usage.usage_monthly_reset,
            },
            "allowed_origins": self.security.origins_list,
            "log_level": self.logging.log_level,
        }


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings. Raises pydantic.ValidationError on a malformed
    environment; `reload_settings()` re-reads it.
    """
    return Settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()
