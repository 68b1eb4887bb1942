"""
Storage backends for user profile rows.

A profile row carries the user's tier, the daily/monthly usage counters, the
date of the last daily reset and the linked Stripe customer. Two backends are
provided:
- PostgresProfileStore: the `profiles` table via asyncpg (see src/db.py)
- InMemoryProfileStore: process-local dict, used when no database is configured
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Dict, Optional

from src import db
from src.types.usage import UserProfile

logger = logging.getLogger(__name__)


class ProfileStore(ABC):
    """Abstract base class for profile storage backends."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserProfile]:
        """Return the profile row for a user, or None."""
        pass

    @abstractmethod
    async def create(
        self,
        user_id: str,
        email: str,
        tier: str,
        today: date,
    ) -> Optional[UserProfile]:
        """
        Insert a new profile row with zeroed counters.

        Returns None if a row for the user already exists.
        """
        pass

    @abstractmethod
    async def update_tier(self, user_id: str, tier: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def reset_counters(
        self,
        user_id: str,
        today: date,
        reset_monthly: bool,
    ) -> Optional[UserProfile]:
        """Zero the daily counter (and optionally the monthly one) and stamp today."""
        pass

    @abstractmethod
    async def increment_usage(self, user_id: str) -> Optional[UserProfile]:
        """Add one to both usage counters."""
        pass

    @abstractmethod
    async def find_by_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def set_customer_id(
        self,
        user_id: str,
        customer_id: str,
    ) -> Optional[UserProfile]:
        pass


class InMemoryProfileStore(ProfileStore):
    """
    Process-local profile storage.

    Rows are copied on the way in and out so callers never hold a live
    reference into the store.
    """

    def __init__(self):
        self._rows: Dict[str, UserProfile] = {}

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _read(self, user_id: str) -> Optional[UserProfile]:
        row = self._rows.get(user_id)
        return row.model_copy() if row else None

    def _write(self, user_id: str, **changes) -> Optional[UserProfile]:
        row = self._rows.get(user_id)
        if row is None:
            return None
        changes["updated_at"] = self._now()
        updated = row.model_copy(update=changes)
        self._rows[user_id] = updated
        return updated.model_copy()

    async def get(self, user_id: str) -> Optional[UserProfile]:
        return self._read(user_id)

    async def create(
        self,
        user_id: str,
        email: str,
        tier: str,
        today: date,
    ) -> Optional[UserProfile]:
        if user_id in self._rows:
            return None
        now = self._now()
        self._rows[user_id] = UserProfile(
            id=user_id,
            email=email,
            tier=tier,
            daily_usage=0,
            monthly_usage=0,
            last_reset_date=today,
            created_at=now,
            updated_at=now,
        )
        return self._read(user_id)

    async def update_tier(self, user_id: str, tier: str) -> Optional[UserProfile]:
        return self._write(user_id, tier=tier)

    async def reset_counters(
        self,
        user_id: str,
        today: date,
        reset_monthly: bool,
    ) -> Optional[UserProfile]:
        changes = {"daily_usage": 0, "last_reset_date": today}
        if reset_monthly:
            changes["monthly_usage"] = 0
        return self._write(user_id, **changes)

    async def increment_usage(self, user_id: str) -> Optional[UserProfile]:
        row = self._rows.get(user_id)
        if row is None:
            return None
        return self._write(
            user_id,
            daily_usage=row.daily_usage + 1,
            monthly_usage=row.monthly_usage + 1,
        )

    async def find_by_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        for row in self._rows.values():
            if row.stripe_customer_id == customer_id:
                return row.model_copy()
        return None

    async def set_customer_id(
        self,
        user_id: str,
        customer_id: str,
    ) -> Optional[UserProfile]:
        return self._write(user_id, stripe_customer_id=customer_id)

    def clear(self) -> None:
        self._rows.clear()


_PROFILE_COLUMNS = (
    "id, email, tier, daily_usage, monthly_usage, last_reset_date, "
    "stripe_customer_id, created_at, updated_at"
)


def _row_to_profile(row) -> Optional[UserProfile]:
    if row is None:
        return None
    return UserProfile(**dict(row))


class PostgresProfileStore(ProfileStore):
    """Profile storage backed by the `profiles` table."""

    async def get(self, user_id: str) -> Optional[UserProfile]:
        row = await db.fetchrow(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = $1",
            user_id,
        )
        return _row_to_profile(row)

    async def create(
        self,
        user_id: str,
        email: str,
        tier: str,
        today: date,
    ) -> Optional[UserProfile]:
        row = await db.fetchrow(
            f"""
            INSERT INTO profiles (id, email, tier, daily_usage, monthly_usage, last_reset_date)
            VALUES ($1, $2, $3, 0, 0, $4)
            ON CONFLICT (id) DO NOTHING
            RETURNING {_PROFILE_COLUMNS}
            """,
            user_id,
            email,
            tier,
            today,
        )
        return _row_to_profile(row)

    async def update_tier(self, user_id: str, tier: str) -> Optional[UserProfile]:
        row = await db.fetchrow(
            f"""
            UPDATE profiles SET tier = $2, updated_at = now()
            WHERE id = $1
            RETURNING {_PROFILE_COLUMNS}
            """,
            user_id,
            tier,
        )
        return _row_to_profile(row)

    async def reset_counters(
        self,
        user_id: str,
        today: date,
        reset_monthly: bool,
    ) -> Optional[UserProfile]:
        row = await db.fetchrow(
            f"""
            UPDATE profiles
            SET daily_usage = 0,
                monthly_usage = CASE WHEN $3 THEN 0 ELSE monthly_usage END,
                last_reset_date = $2,
                updated_at = now()
            WHERE id = $1
            RETURNING {_PROFILE_COLUMNS}
            """,
            user_id,
            today,
            reset_monthly,
        )
        return _row_to_profile(row)

    async def increment_usage(self, user_id: str) -> Optional[UserProfile]:
        # Single statement so concurrent commits never lose an increment.
        row = await db.fetchrow(
            f"""
            UPDATE profiles
            SET daily_usage = daily_usage + 1,
                monthly_usage = monthly_usage + 1,
                updated_at = now()
            WHERE id = $1
            RETURNING {_PROFILE_COLUMNS}
            """,
            user_id,
        )
        return _row_to_profile(row)

    async def find_by_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        row = await db.fetchrow(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE stripe_customer_id = $1",
            customer_id,
        )
        return _row_to_profile(row)

    async def set_customer_id(
        self,
        user_id: str,
        customer_id: str,
    ) -> Optional[UserProfile]:
        row = await db.fetchrow(
            f"""
            UPDATE profiles SET stripe_customer_id = $2, updated_at = now()
            WHERE id = $1
            RETURNING {_PROFILE_COLUMNS}
            """,
            user_id,
            customer_id,
        )
        return _row_to_profile(row)


_profile_store: Optional[ProfileStore] = None


def get_profile_store() -> ProfileStore:
    """
    Get the singleton profile store.

    Uses Postgres when DATABASE_URL is configured, otherwise memory.
    """
    global _profile_store
    if _profile_store is None:
        if db.is_database_configured():
            _profile_store = PostgresProfileStore()
            logger.info("Profile store initialized with Postgres")
        else:
            _profile_store = InMemoryProfileStore()
            logger.info("Database not configured, using in-memory profile store")
    return _profile_store


def set_profile_store(store: Optional[ProfileStore]) -> None:
    """Replace the singleton profile store (None resets it)."""
    global _profile_store
    _profile_store = store


__all__ = [
    "ProfileStore",
    "InMemoryProfileStore",
    "PostgresProfileStore",
    "get_profile_store",
    "set_profile_store",
]
