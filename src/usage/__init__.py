"""
Usage tracking and limits module for PeekAI.

This module provides the tier policy and the usage ledger that gates
questions against daily limits and records usage after provider success.
"""

from .ledger import (
    QuotaExceeded,
    UsageLedger,
    check_and_consume,
    get_usage_ledger,
    get_usage_stats,
    next_utc_midnight,
    record_usage,
    reset_usage_ledger,
    utc_today,
)
from .tiers import default_model, limits_for, parse_tier, tier_config

__all__ = [
    "QuotaExceeded",
    "UsageLedger",
    "check_and_consume",
    "get_usage_ledger",
    "get_usage_stats",
    "next_utc_midnight",
    "record_usage",
    "reset_usage_ledger",
    "utc_today",
    "default_model",
    "limits_for",
    "parse_tier",
    "tier_config",
]
