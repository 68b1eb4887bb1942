"""
Stripe billing integration for PeekAI.
"""

from .stripe_service import (
    BillingError,
    InvalidPrice,
    InvalidWebhook,
    StripeNotConfigured,
    StripeService,
    get_stripe_service,
)
from .subscription_sync import (
    SubscriptionSyncService,
    get_sync_service,
    sync_webhook_event,
)

__all__ = [
    "BillingError",
    "InvalidPrice",
    "InvalidWebhook",
    "StripeNotConfigured",
    "StripeService",
    "get_stripe_service",
    # Subscription sync
    "SubscriptionSyncService",
    "get_sync_service",
    "sync_webhook_event",
]
