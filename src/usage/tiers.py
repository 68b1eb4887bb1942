"""
Tier policy: limits and default model per subscription tier.

All lookups are total. A stored tier string that is not exactly a UserTier
value (including None, or a different case) resolves to FREE.
"""

from typing import Optional, Union

from src.types.usage import TierConfig, TierLimits, UserTier, get_tier_config


def parse_tier(value: Optional[Union[str, UserTier]]) -> UserTier:
    """Parse a stored tier value, falling back to FREE."""
    if isinstance(value, UserTier):
        return value
    if not value:
        return UserTier.FREE
    try:
        return UserTier(value)
    except ValueError:
        return UserTier.FREE


def tier_config(tier: Optional[Union[str, UserTier]]) -> TierConfig:
    return get_tier_config(parse_tier(tier))


def limits_for(tier: Optional[Union[str, UserTier]]) -> TierLimits:
    """Daily and monthly limits for a tier."""
    return tier_config(tier).limits


def default_model(tier: Optional[Union[str, UserTier]]) -> str:
    """OpenRouter model used when the caller does not request one."""
    return tier_config(tier).default_model
