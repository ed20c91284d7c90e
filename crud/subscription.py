"""
SubscriptionRepository for database operations on the Subscription model
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from database_models import Subscription
from models.subscription import RemoteSubscription, SubscriptionRecord
from services.errors import StoreError

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository class for the local subscription store.
    Every write replaces all mirrored fields at once.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self, user_id: int) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: int) -> Optional[SubscriptionRecord]:
        """
        Retrieve the subscription mirror for a user.

        Raises:
            StoreError: If the read fails
        """
        try:
            row = await self._get_row(user_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read subscription for user {user_id}") from e
        return SubscriptionRecord.model_validate(row) if row else None

    async def get_by_stripe_id(self, stripe_subscription_id: str) -> Optional[SubscriptionRecord]:
        """Retrieve the subscription mirror that carries a given provider id."""
        try:
            result = await self.db.execute(
                select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read subscription {stripe_subscription_id}") from e
        return SubscriptionRecord.model_validate(row) if row else None

    async def upsert_synced(self, user_id: int, remote: RemoteSubscription) -> SubscriptionRecord:
        """
        Overwrite the user's mirror with the provider's canonical state,
        creating the row on first sync. created_at is never touched once set.
        The write runs in a SAVEPOINT so a failure leaves the rest of the session intact.

        Args:
            user_id: Owner of the subscription
            remote: Subscription as fetched from the billing provider

        Returns:
            The persisted record

        Raises:
            StoreError: If the write fails
        """
        try:
            async with self.db.begin_nested():
                row = await self._get_row(user_id)
                if row is None:
                    row = Subscription(user_id=user_id)
                    self.db.add(row)

                row.status = remote.status
                row.stripe_subscription_id = remote.id
                row.current_period_end = remote.current_period_end
                row.cancel_at_period_end = remote.cancel_at_period_end
                if remote.customer_id:
                    row.stripe_customer_id = remote.customer_id

                await self.db.flush()
            await self.db.refresh(row)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to persist subscription for user {user_id}") from e

        logger.info(f"Subscription for user {user_id} synced: status={remote.status}")
        return SubscriptionRecord.model_validate(row)
