"""
Billing endpoints backed by Stripe.

Checkout and portal require a signed-in user. The webhook is called by
Stripe directly and is authenticated by its signature instead.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from app.auth import AuthenticatedUser, get_current_user
from app.exceptions import ErrorCode, StripeServiceError, ValidationError
from app.models import (
    CheckoutRequest,
    CheckoutResponse,
    ErrorResponse,
    PortalRequest,
    PortalResponse,
    WebhookResponse,
)
from src.payments.stripe_service import (
    BillingError,
    InvalidPrice,
    InvalidWebhook,
    StripeNotConfigured,
    StripeService,
    get_stripe_service,
)
from src.payments.subscription_sync import SubscriptionSyncService, get_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

BILLING_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Billing not configured or invalid request"},
    502: {"model": ErrorResponse, "description": "Stripe request failed"},
}


def _stripe_error(e: BillingError) -> StripeServiceError:
    original = e.original_error
    return StripeServiceError(
        stripe_error_code=getattr(original, "code", None),
        internal_message=e.message,
        original_error=original,
    )


@router.post("/checkout", response_model=CheckoutResponse, responses=BILLING_ERROR_RESPONSES)
async def create_checkout_session(
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    billing: StripeService = Depends(get_stripe_service),
) -> CheckoutResponse:
    """Start a Stripe checkout for a Student Pro or Premium subscription."""
    try:
        session = await billing.create_checkout_session(
            price_id=body.price_id,
            user_id=user.user_id,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            customer_email=user.email,
        )
    except StripeNotConfigured:
        raise ValidationError("Billing is not available", error_code=ErrorCode.FEATURE_NOT_AVAILABLE)
    except InvalidPrice:
        raise ValidationError("Unknown price", field="price_id", value=body.price_id)
    except BillingError as e:
        raise _stripe_error(e)

    return CheckoutResponse(session_id=session["session_id"], url=session["url"])


@router.post("/portal", response_model=PortalResponse, responses=BILLING_ERROR_RESPONSES)
async def create_portal_session(
    body: PortalRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    billing: StripeService = Depends(get_stripe_service),
) -> PortalResponse:
    """Open the Stripe customer portal for the caller."""
    try:
        url = await billing.create_customer_portal_session(
            user_id=user.user_id,
            return_url=body.return_url,
            email=user.email,
        )
    except StripeNotConfigured:
        raise ValidationError("Billing is not available", error_code=ErrorCode.FEATURE_NOT_AVAILABLE)
    except BillingError as e:
        raise _stripe_error(e)

    return PortalResponse(url=url)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid webhook signature or payload"}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    billing: StripeService = Depends(get_stripe_service),
    sync: SubscriptionSyncService = Depends(get_sync_service),
) -> WebhookResponse:
    """
    Handle Stripe subscription lifecycle events.

    This endpoint does not require a bearer token as it is called directly
    by Stripe. The Stripe-Signature header is verified instead.
    """
    payload = await request.body()
    try:
        result = billing.handle_webhook(payload, stripe_signature)
    except StripeNotConfigured:
        raise ValidationError("Webhooks are not configured", error_code=ErrorCode.FEATURE_NOT_AVAILABLE)
    except InvalidWebhook as e:
        raise ValidationError(str(e), error_code=ErrorCode.WEBHOOK_ERROR)

    try:
        sync_result = await sync.sync_webhook_event(result)
    except BillingError as e:
        raise _stripe_error(e)

    return WebhookResponse(
        success=True,
        message=f"Processed {result.get('event_type')}",
        sync=sync_result,
    )
