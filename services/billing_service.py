"""
Billing Service - Stripe checkout and webhook handling
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crud.subscription import SubscriptionRepository
from services.errors import StoreError, SubscriptionError, SyncError
from services.reconciliation_service import ReconciliationService
from services.stripe_gateway import stripe_field

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


def _metadata_user_id(obj) -> Optional[int]:
    raw = stripe_field(obj, "client_reference_id") or stripe_field(stripe_field(obj, "metadata"), "user_id")
    try:
        return int(raw) if raw is not None else None
    except (ValueError, TypeError):
        return None


class BillingService:
    """
    Service class for billing flows that start or end outside the app:
    Checkout sessions going out, webhook events coming back in.

    Webhook payloads are only used to find which subscription changed. Field
    values always come from a fresh fetch, so late or out-of-order events converge.
    """

    def __init__(self, db: AsyncSession, gateway):
        self.gateway = gateway
        self.reconciler = ReconciliationService(SubscriptionRepository(db), gateway)

    async def create_checkout_session(self, user: dict):
        """
        Create a Stripe Checkout session for the current user.

        Returns:
            Normalized response: {"data": url, "is_error": False} or {"error": str(e), "is_error": True}
        """
        try:
            url = await self.gateway.create_checkout_session(int(user["user_id"]), user.get("email"))
            return {"data": url, "is_error": False}
        except SubscriptionError as e:
            logger.error(f"Failed to create checkout session: {e}", exc_info=True)
            return {"error": str(e), "is_error": True}

    async def process_webhook(self, event):
        """
        Process a verified Stripe webhook event.

        Returns:
            Normalized response: {"data": True, "is_error": False} or
            {"error": str(e), "is_error": True, "retryable": bool}. Sync and store
            failures are retryable; Stripe should deliver the event again.
        """
        event_type = stripe_field(event, "type")
        obj = stripe_field(stripe_field(event, "data"), "object")
        logger.info(f"Processing Stripe webhook event: {event_type}")

        try:
            if event_type == "checkout.session.completed":
                await self._handle_checkout_completed(obj)
            elif event_type in SUBSCRIPTION_EVENTS:
                await self._handle_subscription_changed(obj)
            else:
                logger.info(f"Ignoring Stripe webhook event: {event_type}")
            return {"data": True, "is_error": False}
        except (SyncError, StoreError) as e:
            logger.error(f"Error processing webhook {event_type}, asking Stripe to retry: {e}", exc_info=True)
            return {"error": str(e), "is_error": True, "retryable": True}
        except SubscriptionError as e:
            logger.error(f"Error processing webhook {event_type}: {e}", exc_info=True)
            return {"error": str(e), "is_error": True, "retryable": False}

    async def _handle_checkout_completed(self, session) -> None:
        subscription_id = stripe_field(session, "subscription")
        if stripe_field(session, "mode") != "subscription" or not subscription_id:
            logger.info("Checkout session without a subscription; nothing to link")
            return

        user_id = _metadata_user_id(session)
        if user_id is None:
            logger.warning(f"Checkout for {subscription_id} carries no user id; ignoring")
            return

        await self.reconciler.link_checkout(user_id, subscription_id)

    async def _handle_subscription_changed(self, subscription) -> None:
        subscription_id = stripe_field(subscription, "id")
        record = await self.reconciler.refresh_by_stripe_id(subscription_id)
        if record is not None:
            return

        # Subscription events can beat checkout.session.completed
        user_id = _metadata_user_id(subscription)
        if user_id is not None:
            await self.reconciler.adopt_subscription(user_id, subscription_id)
