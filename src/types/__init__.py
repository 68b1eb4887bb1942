"""
Type definitions for the PeekAI project.
"""

from .history import (
    ExportFormat,
    HistoryExport,
    HistoryPage,
    QueryContext,
    QueryRecord,
)
from .usage import (
    TIER_CONFIGS,
    TierConfig,
    TierLimits,
    UsageStats,
    UserProfile,
    UserTier,
    get_tier_config,
)

__all__ = [
    # History types
    "ExportFormat",
    "HistoryExport",
    "HistoryPage",
    "QueryContext",
    "QueryRecord",
    # Usage types
    "TIER_CONFIGS",
    "TierConfig",
    "TierLimits",
    "UsageStats",
    "UserProfile",
    "UserTier",
    "get_tier_config",
]
