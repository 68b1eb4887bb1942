"""
Pydantic models for subscription tiers, user profiles and usage counters.

This module defines the data models for:
- Subscription tiers with their daily/monthly limits and default model
- The per-user profile row that carries the usage counters
- Usage statistics for API responses
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class UserTier(str, Enum):
    """
    Available subscription tiers.

    Each tier defines daily and monthly question limits and a default model.
    """
    FREE = "free"
    STUDENT_PRO = "student_pro"
    PREMIUM = "premium"


class TierLimits(BaseModel):
    """Daily and monthly question limits for a tier."""

    daily: int = Field(..., ge=0, description="Maximum questions per UTC day")
    monthly: int = Field(..., ge=0, description="Maximum questions per month")


class TierConfig(BaseModel):
    """Configuration for a subscription tier."""

    tier: UserTier
    name: str
    limits: TierLimits
    default_model: str = Field(
        ...,
        description="OpenRouter model used when the caller does not pick one",
    )
    description: str = Field(
        default="",
        description="Human-readable tier description",
    )


TIER_CONFIGS: Dict[UserTier, TierConfig] = {
    UserTier.FREE: TierConfig(
        tier=UserTier.FREE,
        name="Free",
        limits=TierLimits(daily=10, monthly=300),
        default_model="openai/gpt-3.5-turbo",
        description="Try PeekAI on any page",
    ),
    UserTier.STUDENT_PRO: TierConfig(
        tier=UserTier.STUDENT_PRO,
        name="Student Pro",
        limits=TierLimits(daily=200, monthly=6000),
        default_model="openai/gpt-4-turbo",
        description="For students reading and researching every day",
    ),
    UserTier.PREMIUM: TierConfig(
        tier=UserTier.PREMIUM,
        name="Premium",
        limits=TierLimits(daily=1000, monthly=30000),
        default_model="anthropic/claude-3-opus",
        description="Highest limits and the strongest default model",
    ),
}


class UserProfile(BaseModel):
    """
    A user's profile row.

    The tier is kept as the raw stored string so that a value outside the
    UserTier enum survives a round-trip; policy lookups parse it leniently.
    """

    id: str = Field(..., description="User identifier from the identity provider")
    email: str = Field(default="", description="User email address")
    tier: str = Field(default=UserTier.FREE.value, description="Stored tier value")
    daily_usage: int = Field(default=0, ge=0)
    monthly_usage: int = Field(default=0, ge=0)
    last_reset_date: date = Field(..., description="UTC day of the last daily reset")
    stripe_customer_id: Optional[str] = Field(
        default=None,
        description="Stripe customer linked to this user",
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UsageStats(BaseModel):
    """
    Current usage statistics for a user.

    Returned by the usage stats API endpoint.
    """

    daily_usage: int = Field(..., description="Questions asked today")
    monthly_usage: int = Field(..., description="Questions asked this month")
    daily_limit: int = Field(..., description="Daily question limit")
    monthly_limit: int = Field(..., description="Monthly question limit")
    daily_remaining: int = Field(..., description="Questions left today")
    tier: UserTier = Field(..., description="Effective subscription tier")


def get_tier_config(tier: UserTier) -> TierConfig:
    """Get the configuration for a subscription tier."""
    return TIER_CONFIGS.get(tier, TIER_CONFIGS[UserTier.FREE])

