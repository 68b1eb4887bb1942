"""
Profile service: create, read and update the caller's profile row.
"""

import logging
from typing import Optional

from src.profiles.store import ProfileStore, get_profile_store
from src.types.usage import UsageStats, UserProfile, UserTier
from src.usage.ledger import UsageLedger, get_usage_ledger, utc_today

logger = logging.getLogger(__name__)


class ProfileNotFound(Exception):
    """Raised when the user has no profile row."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Profile not found for user {user_id}")


class ProfileExists(Exception):
    """Raised when creating a profile for a user who already has one."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Profile already exists for user {user_id}")


class ProfileService:
    def __init__(
        self,
        store: Optional[ProfileStore] = None,
        ledger: Optional[UsageLedger] = None,
    ):
        self._store = store
        self._ledger = ledger

    @property
    def store(self) -> ProfileStore:
        if self._store is None:
            self._store = get_profile_store()
        return self._store

    @property
    def ledger(self) -> UsageLedger:
        if self._ledger is None:
            self._ledger = get_usage_ledger()
        return self._ledger

    async def create(
        self,
        user_id: str,
        email: str,
        tier: UserTier = UserTier.FREE,
    ) -> UserProfile:
        profile = await self.store.create(user_id, email, tier.value, utc_today())
        if profile is None:
            raise ProfileExists(user_id)
        logger.info(
            "Profile created",
            extra={"target_user": user_id, "tier": tier.value},
        )
        return profile

    async def get(self, user_id: str) -> UserProfile:
        profile = await self.store.get(user_id)
        if profile is None:
            raise ProfileNotFound(user_id)
        return profile

    async def update_tier(
        self,
        user_id: str,
        tier: Optional[UserTier],
    ) -> UserProfile:
        """Update the tier; a None tier keeps the current one."""
        if tier is None:
            return await self.get(user_id)

        profile = await self.store.update_tier(user_id, tier.value)
        if profile is None:
            raise ProfileNotFound(user_id)
        logger.info(
            "Profile tier updated",
            extra={"target_user": user_id, "tier": tier.value},
        )
        return profile

    async def usage(self, user_id: str) -> UsageStats:
        stats = await self.ledger.get_usage_stats(user_id)
        if stats is None:
            raise ProfileNotFound(user_id)
        return stats


_profile_service: Optional[ProfileService] = None


def get_profile_service() -> ProfileService:
    """Get the singleton profile service instance."""
    global _profile_service
    if _profile_service is None:
        _profile_service = ProfileService()
    return _profile_service
