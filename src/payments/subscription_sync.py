"""
Subscription sync: apply Stripe webhook events to profile tiers.

- Checkout completed → store customer mapping, set tier from the subscription price
- Subscription updated → active/trialing sets tier from price, anything else → free
- Subscription deleted → free
"""

import logging
from typing import Any, Dict, Optional

from src.payments.stripe_service import ACTIVE_SUBSCRIPTION_STATUSES, StripeService
from src.profiles.store import ProfileStore, get_profile_store
from src.types.usage import UserTier

logger = logging.getLogger(__name__)


class SubscriptionSyncService:
    """Apply verified webhook results (see StripeService.handle_webhook)."""

    def __init__(self, stripe_service: StripeService, store: Optional[ProfileStore] = None):
        self.stripe_service = stripe_service
        self._store = store

    @property
    def store(self) -> ProfileStore:
        if self._store is None:
            self._store = get_profile_store()
        return self._store

    async def _resolve_user_id(self, webhook_result: Dict[str, Any]) -> Optional[str]:
        """Prefer the stored customer mapping, then event metadata."""
        customer_id = webhook_result.get("customer_id")
        if customer_id:
            profile = await self.store.find_by_customer_id(customer_id)
            if profile is not None:
                return profile.id
        return webhook_result.get("user_id")

    async def sync_webhook_event(self, webhook_result: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sync a webhook to the profile store.

        Returns:
            Dict with `synced` and either the applied tier or the skip reason
        """
        event_type = webhook_result.get("event_type")

        if event_type == "checkout.session.completed":
            user_id = webhook_result.get("user_id") or await self._resolve_user_id(webhook_result)
        elif event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            user_id = await self._resolve_user_id(webhook_result)
        else:
            logger.debug("Unhandled webhook event type: %s", event_type)
            return {"synced": False, "reason": "unhandled_event_type", "event_type": event_type}

        if not user_id:
            logger.warning(
                "Cannot sync webhook: no user_id found",
                extra={"event_type": event_type, "customer_id": webhook_result.get("customer_id")},
            )
            return {"synced": False, "reason": "no_user_id", "event_type": event_type}

        if event_type == "checkout.session.completed":
            tier = await self._handle_checkout_completed(user_id, webhook_result)
        elif event_type == "customer.subscription.updated":
            tier = self._tier_for_status(webhook_result.get("status"), webhook_result.get("price_id"))
        else:
            tier = UserTier.FREE

        profile = await self.store.update_tier(user_id, tier.value)
        if profile is None:
            logger.warning("Webhook for unknown profile", extra={"target_user": user_id})
            return {"synced": False, "reason": "no_profile", "event_type": event_type}

        logger.info(
            "Subscription synced",
            extra={"event_type": event_type, "target_user": user_id, "tier": tier.value},
        )
        return {"synced": True, "event_type": event_type, "user_id": user_id, "tier": tier.value}

    async def _handle_checkout_completed(
        self,
        user_id: str,
        webhook_result: Dict[str, Any],
    ) -> UserTier:
        customer_id = webhook_result.get("customer_id")
        if customer_id:
            await self.store.set_customer_id(user_id, customer_id)

        subscription_id = webhook_result.get("subscription_id")
        if not subscription_id:
            return UserTier.FREE

        subscription = await self.stripe_service.retrieve_subscription_price(subscription_id)
        return self._tier_for_status(subscription["status"], subscription["price_id"])

    def _tier_for_status(self, status: Optional[str], price_id: Optional[str]) -> UserTier:
        if status not in ACTIVE_SUBSCRIPTION_STATUSES:
            return UserTier.FREE
        return self.stripe_service.tier_for_price_id(price_id)


_sync_service: Optional[SubscriptionSyncService] = None


def get_sync_service() -> SubscriptionSyncService:
    """Get the singleton subscription sync service."""
    global _sync_service
    if _sync_service is None:
        from src.payments.stripe_service import get_stripe_service

        _sync_service = SubscriptionSyncService(get_stripe_service())
    return _sync_service


async def sync_webhook_event(webhook_result: Dict[str, Any]) -> Dict[str, Any]:
    """Sync a webhook result. See SubscriptionSyncService.sync_webhook_event."""
    return await get_sync_service().sync_webhook_event(webhook_result)
