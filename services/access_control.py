import logging
from typing import List, Optional, Tuple

from models.subscription import (
    EntitlementDecision,
    EntitlementReason,
    LOGIN_PATH,
    PROFILE_PATH,
    STATUS_CANCELED,
    STATUS_TRIALING,
    SubscriptionRecord,
    TrialStatus,
)
from services.errors import StoreError, SyncError

logger = logging.getLogger(__name__)

ACTION_RESUBSCRIBE = "resubscribe"
ACTION_RESUME = "resume"
ACTION_CANCEL = "cancel"
ACTION_GO_TO_DASHBOARD = "go_to_dashboard"


def decide_access(
    subscription: Optional[SubscriptionRecord],
    trial: Optional[TrialStatus],
    *,
    authenticated: bool = True,
    auth_loading: bool = False,
    sync_in_flight: bool = False,
    sync_failed: bool = False,
) -> EntitlementDecision:
    """
    Central entitlement decision, highest precedence first:
      - auth unresolved or sync in flight -> pending, no redirect
      - no user -> login
      - failed sync -> pending (never entitled)
      - active/trialing subscription -> entitled
      - otherwise -> not entitled, trial-exhausted or no-subscription
    """
    if auth_loading or sync_in_flight:
        return EntitlementDecision(is_entitled=False, reason=EntitlementReason.SYNC_PENDING)

    if not authenticated:
        return EntitlementDecision(
            is_entitled=False,
            reason=EntitlementReason.UNAUTHENTICATED,
            redirect_to=LOGIN_PATH,
        )

    if sync_failed:
        return EntitlementDecision(is_entitled=False, reason=EntitlementReason.SYNC_FAILED)

    if subscription is not None and subscription.is_entitled:
        reason = (
            EntitlementReason.TRIALING
            if subscription.status == STATUS_TRIALING
            else EntitlementReason.ACTIVE_SUBSCRIPTION
        )
        return EntitlementDecision(is_entitled=True, reason=reason)

    if trial is not None and trial.is_trial_used:
        reason = EntitlementReason.TRIAL_EXHAUSTED
    else:
        reason = EntitlementReason.NO_SUBSCRIPTION
    return EntitlementDecision(is_entitled=False, reason=reason, redirect_to=PROFILE_PATH)


def subscription_actions(subscription: Optional[SubscriptionRecord]) -> List[str]:
    """Actions the profile page offers for a subscription."""
    if subscription is None:
        return []
    if subscription.status == STATUS_CANCELED:
        return [ACTION_RESUBSCRIBE]
    if subscription.cancel_at_period_end:
        return [ACTION_RESUME]
    if subscription.is_entitled:
        return [ACTION_GO_TO_DASHBOARD, ACTION_CANCEL]
    return []


class AccessGate:
    """
    Combines a fresh reconciliation with the trial evaluation into one decision.
    Sync or store failures never produce an entitled decision.
    """

    def __init__(self, reconciler, trial_service):
        self.reconciler = reconciler
        self.trial_service = trial_service

    async def check(
        self, user_id: Optional[int]
    ) -> Tuple[Optional[SubscriptionRecord], EntitlementDecision]:
        """Refresh, evaluate and decide. Returns the synced record alongside the decision."""
        if user_id is None:
            return None, decide_access(None, None, authenticated=False)

        try:
            subscription = await self.reconciler.refresh(user_id)
        except SyncError as e:
            logger.warning(f"Subscription sync failed for user {user_id}: {e}")
            return None, decide_access(None, None, sync_failed=True)
        except StoreError as e:
            logger.error(f"Subscription store failed for user {user_id}: {e}", exc_info=True)
            return None, decide_access(None, None, sync_failed=True)

        trial = await self.trial_service.evaluate(user_id)
        decision = decide_access(subscription, trial)
        logger.info(
            f"Access check for user {user_id}: entitled={decision.is_entitled} "
            f"reason={decision.reason.value} status={subscription.status if subscription else None}"
        )
        return subscription, decision

    async def can_access(self, user_id: Optional[int]) -> EntitlementDecision:
        _, decision = await self.check(user_id)
        return decision
