"""
Usage ledger for enforcing per-tier question limits.

Counters live on the user's profile row:
- check_and_consume: lazy daily/monthly rollover, then the daily gate
- record_usage: commit one question after the provider succeeded
- get_usage_stats: current counters and limits for the usage endpoint
- user_scope: optional per-user lock around gate, provider call and commit

Rollover is applied lazily whenever a row is read for gating or stats; there
is no scheduled reset job.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, Optional

from src.profiles.store import ProfileStore, get_profile_store
from src.types.usage import UsageStats, UserProfile, UserTier
from src.usage.tiers import limits_for, parse_tier

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def next_utc_midnight(today: date) -> datetime:
    """The instant the daily counter next resets."""
    return datetime.combine(today + timedelta(days=1), time.min, tzinfo=timezone.utc)


class QuotaExceeded(Exception):
    """Exception raised when a user has used up today's questions."""

    def __init__(
        self,
        message: str,
        tier: UserTier,
        current_usage: int,
        quota_limit: int,
        reset_date: datetime,
    ):
        self.message = message
        self.tier = tier
        self.current_usage = current_usage
        self.quota_limit = quota_limit
        self.reset_date = reset_date
        super().__init__(self.message)

    def retry_after_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return max(1, int((self.reset_date - now).total_seconds()))


class UsageLedger:
    """
    Service for gating questions and recording usage.

    The gate and the commit are separate calls. Without strict locking,
    concurrent calls from the same user can each pass the gate before any of
    them commits, so a user can go over the daily limit by up to
    (concurrency - 1). With strict locking enabled, callers wrap the whole
    gate/call/commit sequence in `user_scope()`.
    """

    def __init__(
        self,
        store: Optional[ProfileStore] = None,
        strict_locking: bool = False,
        monthly_reset: bool = True,
        today: Callable[[], date] = utc_today,
    ):
        self._store = store
        self.strict_locking = strict_locking
        self.monthly_reset = monthly_reset
        self._today = today
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per user; the lock is dropped when this hits zero.
        self._lock_users: Dict[str, int] = {}

    @property
    def store(self) -> ProfileStore:
        if self._store is None:
            self._store = get_profile_store()
        return self._store

    def _needs_monthly_reset(self, profile: UserProfile, today: date) -> bool:
        if not self.monthly_reset:
            return False
        last = profile.last_reset_date
        return (last.year, last.month) != (today.year, today.month)

    async def _rollover(self, profile: UserProfile) -> UserProfile:
        """Apply the lazy daily (and monthly) reset if the UTC day changed."""
        today = self._today()
        if profile.last_reset_date == today:
            return profile

        reset_monthly = self._needs_monthly_reset(profile, today)
        updated = await self.store.reset_counters(profile.id, today, reset_monthly)
        logger.debug(
            "Usage counters rolled over",
            extra={
                "target_user": profile.id,
                "previous_reset": profile.last_reset_date.isoformat(),
                "monthly_reset": reset_monthly,
            },
        )
        return updated or profile

    async def _get_or_create(self, user_id: str, email: Optional[str]) -> UserProfile:
        """
        Get the user's profile row.

        Creates a default FREE row if none exists yet.
        """
        profile = await self.store.get(user_id)
        if profile is not None:
            return profile

        created = await self.store.create(
            user_id,
            email or "",
            UserTier.FREE.value,
            self._today(),
        )
        if created is None:
            # Lost an insert race with another request for the same user.
            created = await self.store.get(user_id)
        logger.info("Provisioned free profile", extra={"target_user": user_id})
        return created

    async def check_and_consume(
        self,
        user_id: str,
        email: Optional[str] = None,
    ) -> UserProfile:
        """
        Gate a question against the user's daily limit.

        Returns the (rolled-over) profile when the question may proceed.

        Raises:
            QuotaExceeded: If daily usage has reached the tier's daily limit
        """
        profile = await self._get_or_create(user_id, email)
        profile = await self._rollover(profile)

        tier = parse_tier(profile.tier)
        limits = limits_for(tier)
        if profile.daily_usage >= limits.daily:
            logger.info(
                "Daily quota exceeded",
                extra={
                    "target_user": user_id,
                    "tier": tier.value,
                    "daily_usage": profile.daily_usage,
                    "daily_limit": limits.daily,
                },
            )
            raise QuotaExceeded(
                message=(
                    f"Daily limit of {limits.daily} questions reached for the "
                    f"{tier.value} tier"
                ),
                tier=tier,
                current_usage=profile.daily_usage,
                quota_limit=limits.daily,
                reset_date=next_utc_midnight(self._today()),
            )

        return profile

    async def record_usage(self, user_id: str) -> Optional[UserProfile]:
        """Record one answered question. Call only after provider success."""
        profile = await self.store.increment_usage(user_id)
        if profile is None:
            logger.warning(
                "Usage recorded for unknown profile",
                extra={"target_user": user_id},
            )
        return profile

    async def get_usage_stats(self, user_id: str) -> Optional[UsageStats]:
        """
        Get current usage statistics for a user.

        Returns None when the user has no profile row.
        """
        profile = await self.store.get(user_id)
        if profile is None:
            return None
        profile = await self._rollover(profile)

        tier = parse_tier(profile.tier)
        limits = limits_for(tier)
        return UsageStats(
            daily_usage=profile.daily_usage,
            monthly_usage=profile.monthly_usage,
            daily_limit=limits.daily,
            monthly_limit=limits.monthly,
            daily_remaining=max(0, limits.daily - profile.daily_usage),
            tier=tier,
        )

    @asynccontextmanager
    async def user_scope(self, user_id: str) -> AsyncIterator[None]:
        """
        Serialize gate, provider call and commit for one user.

        A no-op unless strict locking is enabled.
        """
        if not self.strict_locking:
            yield
            return

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]


_usage_ledger: Optional[UsageLedger] = None


def get_usage_ledger() -> UsageLedger:
    """Get the singleton usage ledger instance."""
    global _usage_ledger
    if _usage_ledger is None:
        from src.config import get_settings

        settings = get_settings()
        _usage_ledger = UsageLedger(
            strict_locking=settings.usage.usage_strict_locking,
            monthly_reset=settings.usage.usage_monthly_reset,
        )
    return _usage_ledger


def reset_usage_ledger() -> None:
    global _usage_ledger
    _usage_ledger = None


# Convenience functions for direct access
async def check_and_consume(user_id: str, email: Optional[str] = None) -> UserProfile:
    """Gate a question for a user."""
    return await get_usage_ledger().check_and_consume(user_id, email)


async def record_usage(user_id: str) -> Optional[UserProfile]:
    """Record one answered question."""
    return await get_usage_ledger().record_usage(user_id)


async def get_usage_stats(user_id: str) -> Optional[UsageStats]:
    """Get current usage statistics."""
    return await get_usage_ledger().get_usage_stats(user_id)
