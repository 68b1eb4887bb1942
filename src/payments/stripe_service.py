"""
Stripe payment service for PeekAI subscriptions.

This module provides functions for:
- Creating checkout sessions for Student Pro and Premium
- Creating customer portal sessions
- Verifying and decoding Stripe webhooks
- Mapping Stripe prices to tiers

Stripe's SDK is synchronous, so every API call runs in a worker thread.
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any, Dict, Optional

import stripe

from src.profiles.store import ProfileStore, get_profile_store
from src.types.usage import UserTier
from src.usage.tiers import parse_tier

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


class StripeNotConfigured(ValueError):
    """Raised when a billing operation needs a Stripe key that is not set."""


class InvalidPrice(ValueError):
    """Raised when checkout is requested for a price that maps to no tier."""


class InvalidWebhook(ValueError):
    """Raised when a webhook is unsigned, badly signed or malformed."""


class BillingError(Exception):
    """Raised when a Stripe API call fails."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class StripeService:
    """
    Service class for Stripe payment operations.

    The Stripe customer for a user is remembered on the profile row
    (`stripe_customer_id`) so webhooks can be mapped back to users.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        price_tiers: Optional[Dict[str, str]] = None,
        store: Optional[ProfileStore] = None,
    ) -> None:
        self._api_key = secret_key
        self._webhook_secret = webhook_secret
        self._price_tiers = dict(price_tiers or {})
        self._store = store

        if self._api_key:
            stripe.api_key = self._api_key
            logger.info("Stripe initialized successfully")
        else:
            logger.warning("STRIPE_SECRET_KEY not configured - billing features disabled")

    @classmethod
    def from_settings(cls, settings=None) -> "StripeService":
        if settings is None:
            from src.config import get_settings

            settings = get_settings()
        stripe_settings = settings.stripe
        secret_key = stripe_settings.stripe_secret_key
        webhook_secret = stripe_settings.stripe_webhook_secret
        return cls(
            secret_key=secret_key.get_secret_value() if secret_key else None,
            webhook_secret=webhook_secret.get_secret_value() if webhook_secret else None,
            price_tiers=stripe_settings.price_tiers,
        )

    @property
    def store(self) -> ProfileStore:
        if self._store is None:
            self._store = get_profile_store()
        return self._store

    @property
    def is_configured(self) -> bool:
        """Check if Stripe is properly configured."""
        return bool(self._api_key)

    def _ensure_configured(self) -> None:
        """Raise an error if Stripe is not configured."""
        if not self.is_configured:
            raise StripeNotConfigured(
                "Stripe is not configured. Set STRIPE_SECRET_KEY environment variable."
            )

    def tier_for_price_id(self, price_id: Optional[str]) -> UserTier:
        """Get the tier for a Stripe price ID, FREE if unknown."""
        return parse_tier(self._price_tiers.get(price_id or ""))

    def is_known_price(self, price_id: str) -> bool:
        return price_id in self._price_tiers

    async def get_or_create_customer(
        self,
        user_id: str,
        email: Optional[str] = None,
    ) -> str:
        """
        Get the user's Stripe customer, creating and storing one if needed.

        Returns:
            Stripe customer ID
        """
        self._ensure_configured()

        profile = await self.store.get(user_id)
        if profile is not None and profile.stripe_customer_id:
            return profile.stripe_customer_id

        try:
            customer = await asyncio.to_thread(
                partial(
                    stripe.Customer.create,
                    email=email or (profile.email if profile else None),
                    metadata={"user_id": user_id},
                )
            )
        except stripe.StripeError as e:
            logger.error("Error creating customer: %s", e)
            raise BillingError("Failed to create Stripe customer", original_error=e)

        await self.store.set_customer_id(user_id, customer.id)
        logger.info(
            "Created Stripe customer",
            extra={"customer_id": customer.id, "target_user": user_id},
        )
        return customer.id

    async def create_checkout_session(
        self,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Create a Stripe checkout session for a subscription.

        Returns:
            Dictionary with session_id and url

        Raises:
            StripeNotConfigured: If no Stripe key is set
            InvalidPrice: If price_id is not a configured tier price
            BillingError: If Stripe rejects the request
        """
        self._ensure_configured()

        if not self.is_known_price(price_id):
            raise InvalidPrice(f"Unknown price '{price_id}'")

        params: Dict[str, Any] = {
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata": {"user_id": user_id},
            "subscription_data": {"metadata": {"user_id": user_id}},
            "allow_promotion_codes": True,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.to_thread(
                partial(stripe.checkout.Session.create, **params)
            )
        except stripe.StripeError as e:
            logger.error("Error creating checkout session: %s", e)
            raise BillingError("Failed to create checkout session", original_error=e)

        logger.info(
            "Created checkout session",
            extra={"session_id": session.id, "tier": self.tier_for_price_id(price_id).value},
        )
        return {"session_id": session.id, "url": session.url}

    async def create_customer_portal_session(
        self,
        user_id: str,
        return_url: str,
        email: Optional[str] = None,
    ) -> str:
        """
        Create a Stripe customer portal session for the user.

        Returns:
            Portal session URL
        """
        customer_id = await self.get_or_create_customer(user_id, email)

        try:
            session = await asyncio.to_thread(
                partial(
                    stripe.billing_portal.Session.create,
                    customer=customer_id,
                    return_url=return_url,
                )
            )
        except stripe.StripeError as e:
            logger.error("Error creating portal session: %s", e)
            raise BillingError("Failed to create portal session", original_error=e)

        logger.info("Created portal session", extra={"customer_id": customer_id})
        return session.url

    async def retrieve_subscription_price(self, subscription_id: str) -> Dict[str, Optional[str]]:
        """Status and first price ID of a subscription."""
        self._ensure_configured()
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.retrieve, subscription_id
            )
        except stripe.StripeError as e:
            logger.error("Error retrieving subscription: %s", e)
            raise BillingError("Failed to retrieve subscription", original_error=e)

        return {
            "status": subscription["status"],
            "price_id": _first_price_id(subscription),
        }

    def handle_webhook(
        self,
        payload: bytes,
        sig_header: Optional[str],
    ) -> Dict[str, Any]:
        """
        Verify a webhook and flatten the fields the sync step needs.

        Raises:
            StripeNotConfigured: If the webhook secret is not set
            InvalidWebhook: If the signature or payload is invalid
        """
        if not self._webhook_secret:
            raise StripeNotConfigured(
                "Webhook secret not configured. Set STRIPE_WEBHOOK_SECRET."
            )
        if not sig_header:
            raise InvalidWebhook("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, sig_header, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed: %s", e)
            raise InvalidWebhook("Invalid webhook signature")
        except ValueError:
            raise InvalidWebhook("Invalid webhook payload")

        event = json.loads(payload)
        event_type = event["type"]
        data = event["data"]["object"]
        metadata = data.get("metadata") or {}

        result: Dict[str, Any] = {
            "event_type": event_type,
            "event_id": event.get("id"),
            "customer_id": data.get("customer"),
            "user_id": metadata.get("user_id"),
        }

        if event_type == "checkout.session.completed":
            result["user_id"] = data.get("client_reference_id") or result["user_id"]
            result["subscription_id"] = data.get("subscription")
        elif event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            result["subscription_id"] = data.get("id")
            result["status"] = data.get("status")
            result["price_id"] = _first_price_id(data)

        logger.info("Processing webhook event", extra={"event_type": event_type})
        return result


def _first_price_id(subscription) -> Optional[str]:
    try:
        return subscription["items"]["data"][0]["price"]["id"]
    except (KeyError, IndexError, TypeError):
        return None


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get the singleton Stripe service, configured from settings."""
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripeService.from_settings()
    return _stripe_service
