"""
Reconciliation Service - keeps the local subscription mirror in line with Stripe
"""

import logging
from typing import Optional

from crud.subscription import SubscriptionRepository
from models.subscription import STATUS_CANCELED, SubscriptionRecord
from services.errors import ValidationError

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Pulls canonical subscription state from the billing provider and overwrites
    the local mirror with it. The provider always wins; local edits are never
    merged field by field.

    The service holds no state of its own and performs no retries. Callers decide
    whether to call again after a SyncError.
    """

    def __init__(self, subscription_repo: SubscriptionRepository, gateway):
        self.subscription_repo = subscription_repo
        self.gateway = gateway

    async def refresh(self, user_id: int) -> Optional[SubscriptionRecord]:
        """
        Re-sync the user's subscription from the provider.

        Returns:
            The synced record, the untouched local record when it was never linked
            to a provider subscription, or None when the user has no record

        Raises:
            SyncError: If the provider is unreachable or returned an error
            StoreError: If the local store could not be read or written
        """
        local = await self.subscription_repo.get_by_user_id(user_id)
        if local is None:
            return None

        if not local.stripe_subscription_id:
            # Nothing to reconcile against
            return local

        remote = await self.gateway.fetch_subscription(local.stripe_subscription_id)
        if local.status != remote.status:
            logger.info(
                f"Provider status for user {user_id} is {remote.status!r}, "
                f"overwriting local {local.status!r}"
            )
        return await self.subscription_repo.upsert_synced(user_id, remote)

    async def link_checkout(self, user_id: int, subscription_id: str) -> SubscriptionRecord:
        """
        Attach a subscription created by a completed checkout to a user and sync it.
        A new subscription id on an existing record starts a new billing cycle.
        """
        if not subscription_id:
            raise ValidationError("Checkout completed without a subscription id")

        remote = await self.gateway.fetch_subscription(subscription_id)
        return await self.subscription_repo.upsert_synced(user_id, remote)

    async def refresh_by_stripe_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        """
        Refresh whichever user owns the given provider subscription.
        Used by webhooks, which identify subscriptions rather than users.
        """
        local = await self.subscription_repo.get_by_stripe_id(subscription_id)
        if local is None:
            logger.warning(f"No local subscription linked to {subscription_id}; ignoring")
            return None
        return await self.refresh(local.user_id)

    async def adopt_subscription(self, user_id: int, subscription_id: str) -> Optional[SubscriptionRecord]:
        """
        Link a subscription known only from event metadata.

        A record already tied to another subscription is only replaced when that
        subscription is canceled and the named one is not. Late events for an old
        subscription therefore never displace a newer one.

        Returns:
            The synced record, or None when the event was ignored
        """
        if not subscription_id:
            raise ValidationError("Subscription event without a subscription id")

        local = await self.subscription_repo.get_by_user_id(user_id)
        if local is None or not local.stripe_subscription_id:
            return await self.link_checkout(user_id, subscription_id)

        if local.status == STATUS_CANCELED:
            remote = await self.gateway.fetch_subscription(subscription_id)
            if remote.status != STATUS_CANCELED:
                logger.info(
                    f"Replacing canceled {local.stripe_subscription_id} with "
                    f"{subscription_id} for user {user_id}"
                )
                return await self.subscription_repo.upsert_synced(user_id, remote)

        logger.info(
            f"Ignoring event for {subscription_id}: user {user_id} is linked to "
            f"{local.stripe_subscription_id} ({local.status})"
        )
        return None
