"""
SubscriptionContext - per-session view of a user's subscription and entitlement
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crud.subscription import SubscriptionRepository
from crud.trial import TrialRepository
from models.subscription import EntitlementDecision, SubscriptionRecord, TrialStatus
from services.access_control import AccessGate, decide_access
from services.errors import OwnershipError, StoreError, SyncError, ValidationError
from services.reconciliation_service import ReconciliationService
from services.refresh_loop import BoundedRefresh, RefreshHandle
from services.trial_service import TrialService

logger = logging.getLogger(__name__)


class SubscriptionContext:
    """
    Explicit replacement for app-wide auth/subscription state.

    A context is bound to one user with init() and released with dispose(),
    which also cancels any scheduled auto-refresh. It can be used as an async
    context manager to get dispose() on exit.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway,
        *,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.subscription_repo = SubscriptionRepository(db)
        self.reconciler = ReconciliationService(self.subscription_repo, gateway)
        self.trial_service = TrialService(self.subscription_repo, TrialRepository(db))
        self.gate = AccessGate(self.reconciler, self.trial_service)

        self.max_attempts = max_attempts
        self.interval = interval
        self.sleep = sleep

        self.user: Optional[dict] = None
        self.is_auth_loading = True
        self.is_loading = False
        self.subscription: Optional[SubscriptionRecord] = None
        self.trial: Optional[TrialStatus] = None
        self.decision: Optional[EntitlementDecision] = None

        self._refresh_handle: Optional[RefreshHandle] = None
        self._disposed = False

    async def __aenter__(self) -> "SubscriptionContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    @property
    def user_id(self) -> Optional[int]:
        if not self.user:
            return None
        return int(self.user["user_id"])

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise RuntimeError("SubscriptionContext has been disposed")

    def _require_user(self) -> int:
        self._ensure_alive()
        if self.user_id is None:
            raise ValidationError("No authenticated user")
        return self.user_id

    async def init(self, user: Optional[dict]) -> "SubscriptionContext":
        """Bind the context to the caller resolved by the auth layer (None when anonymous)."""
        self._ensure_alive()
        self.user = user
        self.is_auth_loading = False
        return self

    def dispose(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        self._disposed = True

    async def fetch_subscription(self) -> Optional[SubscriptionRecord]:
        """
        Reconcile and return the caller's subscription.

        Raises:
            SyncError: If the provider could not be reached
            StoreError: If the local store failed
        """
        user_id = self._require_user()
        self.is_loading = True
        try:
            self.subscription = await self.reconciler.refresh(user_id)
        finally:
            self.is_loading = False
        return self.subscription

    async def evaluate_trial(self) -> TrialStatus:
        self.trial = await self.trial_service.evaluate(self._require_user())
        return self.trial

    async def can_access(self) -> EntitlementDecision:
        self._ensure_alive()
        if self.is_auth_loading or self.is_loading:
            return decide_access(
                self.subscription,
                self.trial,
                auth_loading=self.is_auth_loading,
                sync_in_flight=self.is_loading,
            )

        self.is_loading = True
        try:
            subscription, decision = await self.gate.check(self.user_id)
        finally:
            self.is_loading = False

        if not decision.is_pending:
            self.subscription = subscription
        self.decision = decision
        return decision

    def start_auto_refresh(
        self, attempt: Optional[Callable[[], Awaitable[bool]]] = None
    ) -> RefreshHandle:
        """
        Schedule a bounded auto-refresh. By default an attempt succeeds once the
        subscription can be fetched. Any previously scheduled refresh is cancelled.
        """
        self._ensure_alive()

        async def fetch_attempt() -> bool:
            await self.fetch_subscription()
            return True

        if self._refresh_handle is not None:
            self._refresh_handle.cancel()

        refresh = BoundedRefresh(
            attempt or fetch_attempt,
            max_attempts=self.max_attempts,
            interval=self.interval,
            sleep=self.sleep,
        )
        self._refresh_handle = refresh.start()
        return self._refresh_handle

    async def wait_for_access(self) -> EntitlementDecision:
        """
        Decide access, auto-refreshing while the decision is pending. Once the
        retries run out the pending decision carries a manual-retry message.
        """
        decision = await self.can_access()
        if not decision.is_pending:
            return decision

        async def access_attempt() -> bool:
            return not (await self.can_access()).is_pending

        outcome = await self.start_auto_refresh(access_attempt).wait()
        if outcome.settled or outcome.cancelled:
            return self.decision

        self.decision = self.decision.model_copy(update={"message": outcome.message})
        return self.decision

    async def _validate_mutation(self, subscription_id: Optional[str]) -> str:
        user_id = self._require_user()
        if not subscription_id:
            raise ValidationError("subscriptionId is required")

        local = await self.subscription_repo.get_by_user_id(user_id)
        if local is None or not local.stripe_subscription_id:
            raise ValidationError("No synced subscription to modify")
        if local.stripe_subscription_id != subscription_id:
            raise OwnershipError("Subscription does not belong to the current user")
        self.subscription = local
        return subscription_id

    async def _follow_up_sync(self) -> Optional[SubscriptionRecord]:
        """The provider already applied the mutation; a failed sync falls back to the last known record."""
        try:
            return await self.fetch_subscription()
        except (SyncError, StoreError) as e:
            logger.warning(f"Follow-up sync failed for user {self.user_id}: {e}")
            return self.subscription

    async def cancel_subscription(self, subscription_id: Optional[str]) -> Optional[SubscriptionRecord]:
        """
        Request cancellation at period end, then reconcile. The local status is
        only ever changed by the follow-up sync.

        Raises:
            ValidationError: If the request has no known subscription id
            OwnershipError: If the id belongs to another user
            SyncError: If the provider rejected or never received the request
        """
        subscription_id = await self._validate_mutation(subscription_id)
        await self.gateway.cancel_subscription(subscription_id)
        logger.info(f"Cancellation requested for {subscription_id} (user {self.user_id})")
        return await self._follow_up_sync()

    async def reactivate_subscription(self, subscription_id: Optional[str]) -> Optional[SubscriptionRecord]:
        subscription_id = await self._validate_mutation(subscription_id)
        await self.gateway.reactivate_subscription(subscription_id)
        logger.info(f"Reactivation requested for {subscription_id} (user {self.user_id})")
        return await self._follow_up_sync()
