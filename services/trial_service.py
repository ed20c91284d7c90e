"""
Trial Service for reporting one-shot trial status
"""
import logging

from crud.subscription import SubscriptionRepository
from crud.trial import TrialRepository
from models.subscription import TrialStatus
from services.errors import StoreError

logger = logging.getLogger(__name__)


class TrialService:
    """
    Service for evaluating user trials.

    Trials are granted outside this service. Here a trial is only read and, the
    first time it is seen, marked as used. An existing trial is never reported as
    running; access is decided by subscription status alone.
    """

    def __init__(self, subscription_repo: SubscriptionRepository, trial_repo: TrialRepository):
        """
        Initialize the trial service with the two stores it consults.

        Args:
            subscription_repo: Local subscription store
            trial_repo: Local trial store
        """
        self.subscription_repo = subscription_repo
        self.trial_repo = trial_repo

    async def evaluate(self, user_id: int) -> TrialStatus:
        """
        Evaluate the trial status of a user.

        1. A paid (active or trialing) subscription suppresses trial semantics.
        2. No trial record means no trial.
        3. An existing trial is reported as not in trial, with its end time.
        4. An unused trial is marked used once.

        Store failures are logged and degrade to the empty status; this never raises.

        Args:
            user_id: User to evaluate

        Returns:
            TrialStatus for the user
        """
        try:
            subscription = await self.subscription_repo.get_by_user_id(user_id)
            if subscription is not None and subscription.is_entitled:
                return TrialStatus()

            trial = await self.trial_repo.get_by_user_id(user_id)
            if trial is None:
                return TrialStatus()

            trial_end_time = trial.trial_end_time
            if not trial.is_trial_used:
                await self.trial_repo.mark_used(user_id)
                logger.info(f"Marked trial as used for user {user_id}")

            return TrialStatus(is_in_trial=False, trial_end_time=trial_end_time, is_trial_used=True)
        except StoreError as e:
            logger.error(f"Error checking trial status for user {user_id}: {e}", exc_info=True)
            return TrialStatus()
