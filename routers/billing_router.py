"""
Billing Router - Stripe checkout and webhook endpoints
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

from auth import get_current_user
from config.settings import settings
from database import get_db
from routers.subscription_router import get_billing_gateway
from services.billing_service import BillingService
from services.stripe_gateway import stripe_field
from utils.responses import success_response, error_response

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def _ack(ok: bool, status_code: int = 200, **extra) -> JSONResponse:
    # Stripe redelivers anything that is not a 2xx; only transient failures ask for that
    return JSONResponse(status_code=status_code, content={"ok": ok, "received": True, **extra})


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_billing_gateway),
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed. Subscription events trigger a
    reconciliation for the owning user; completed checkouts link the new
    subscription to the user who started them.

    Rejected events are acknowledged with 200. When Stripe or the database could
    not be reached the endpoint answers 503 so Stripe delivers the event again.
    """
    webhook_secret = settings.stripe_webhook_secret
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
        return _ack(False, error="Webhook secret not configured")

    payload = await request.body()
    stripe_signature = request.headers.get("stripe-signature")
    if not stripe_signature:
        logger.error("Missing Stripe-Signature header")
        return _ack(False, error="Missing signature header")

    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature, webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Stripe webhook signature verification failed: {e}")
        return _ack(False, error="Invalid webhook signature")
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return _ack(False, error="Invalid payload format")

    try:
        result = await BillingService(db, gateway).process_webhook(event)
    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return _ack(False, error="Webhook processing failed")

    event_type = stripe_field(event, "type")
    if result.get("retryable"):
        return _ack(False, status_code=503, error="Billing provider unavailable", event_type=event_type)
    return _ack(not result.get("is_error", True), event_type=event_type)


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_billing_gateway),
):
    """
    Create a Stripe Checkout session for the current user. Used both for the
    first purchase and for resubscribing after a cancellation.
    """
    result = await BillingService(db, gateway).create_checkout_session(current_user)
    if result.get("is_error"):
        return error_response("CHECKOUT_FAILED", status=503, message=result.get("error", "Unknown error"))
    return success_response({"url": result["data"]})
