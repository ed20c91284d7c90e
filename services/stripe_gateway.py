"""
Stripe gateway - the only code that talks to the billing provider
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import stripe

from config.settings import settings
from models.subscription import RemoteSubscription
from services.errors import SyncError

logger = logging.getLogger(__name__)


def stripe_field(obj, key: str):
    """Read a key from a StripeObject, returning None when it is absent."""
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return None


def _from_unix(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def to_remote_subscription(sub) -> RemoteSubscription:
    """
    Convert a Stripe Subscription object into a RemoteSubscription.

    Newer API versions moved current_period_end onto the subscription items,
    so fall back to the first item when the top-level field is missing.
    """
    period_end = stripe_field(sub, "current_period_end")
    if period_end is None:
        items = stripe_field(stripe_field(sub, "items"), "data") or []
        if items:
            period_end = stripe_field(items[0], "current_period_end")

    customer = stripe_field(sub, "customer")
    if customer is not None and not isinstance(customer, str):
        customer = stripe_field(customer, "id")

    return RemoteSubscription(
        id=stripe_field(sub, "id"),
        status=stripe_field(sub, "status"),
        current_period_end=_from_unix(period_end),
        cancel_at_period_end=bool(stripe_field(sub, "cancel_at_period_end")),
        customer_id=customer,
    )


class StripeBillingGateway:
    """
    Async facade over the blocking Stripe client.
    Every provider failure surfaces as SyncError; the gateway never retries.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.timeout = timeout if timeout is not None else settings.stripe_request_timeout_seconds

    async def _call(self, description: str, func, *args, **kwargs):
        if not self.api_key:
            logger.error(f"STRIPE_SECRET_KEY is not set. Cannot {description}.")
            raise SyncError(f"STRIPE_SECRET_KEY is not set. Cannot {description}.")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Stripe timed out after {self.timeout}s while trying to {description}")
            raise SyncError(f"Billing provider timed out while trying to {description}") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe error while trying to {description}: {e}")
            raise SyncError(f"Billing provider error while trying to {description}") from e

    async def fetch_subscription(self, subscription_id: str) -> RemoteSubscription:
        sub = await self._call(
            f"fetch subscription {subscription_id}",
            stripe.Subscription.retrieve,
            subscription_id,
        )
        return to_remote_subscription(sub)

    async def cancel_subscription(self, subscription_id: str) -> RemoteSubscription:
        """Ask Stripe to cancel at the end of the current period."""
        sub = await self._call(
            f"cancel subscription {subscription_id}",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        return to_remote_subscription(sub)

    async def reactivate_subscription(self, subscription_id: str) -> RemoteSubscription:
        """Withdraw a pending cancellation."""
        sub = await self._call(
            f"reactivate subscription {subscription_id}",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=False,
        )
        return to_remote_subscription(sub)

    async def create_checkout_session(self, user_id: int, email: Optional[str] = None) -> str:
        """
        Create a subscription Checkout session tied to a user.

        Returns:
            The hosted Checkout URL
        """
        if not settings.stripe_price_id:
            raise SyncError("STRIPE_PRICE_ID is not set. Cannot create checkout session.")

        frontend_url = settings.frontend_url or "http://localhost:5173"
        params = {
            "mode": "subscription",
            "line_items": [{"price": settings.stripe_price_id, "quantity": 1}],
            "client_reference_id": str(user_id),
            "metadata": {"user_id": str(user_id)},
            "subscription_data": {"metadata": {"user_id": str(user_id)}},
            "success_url": f"{frontend_url}/profile?payment=success",
            "cancel_url": f"{frontend_url}/profile",
        }
        if email:
            params["customer_email"] = email

        session = await self._call("create checkout session", stripe.checkout.Session.create, **params)
        return stripe_field(session, "url")
