"""
TrialRepository for database operations on the UserTrial model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from database_models import UserTrial
from services.errors import StoreError


class TrialRepository:
    """
    Repository class for the one-shot trial store.
    Trials are granted elsewhere; this repository only reads and marks them used.

    The session is shared with the subscription store, so a failure here must
    not undo subscription writes made earlier in the same request.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_user_id(self, user_id: int) -> Optional[UserTrial]:
        try:
            result = await self.db.execute(
                select(UserTrial).where(UserTrial.user_id == user_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read trial for user {user_id}") from e

    async def mark_used(self, user_id: int) -> None:
        """
        Flip is_trial_used to True for the user. Rows already marked are left alone.
        The update runs in a SAVEPOINT; on failure only the savepoint is rolled back.

        Raises:
            StoreError: If the update fails
        """
        try:
            async with self.db.begin_nested():
                await self.db.execute(
                    update(UserTrial)
                    .where(UserTrial.user_id == user_id, UserTrial.is_trial_used.is_(False))
                    .values(is_trial_used=True)
                    .execution_options(synchronize_session="fetch")
                )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to mark trial used for user {user_id}") from e
