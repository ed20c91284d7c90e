"""
Bounded auto-refresh for consumers waiting on a subscription that is still loading
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from config.settings import settings
from models.subscription import MANUAL_RETRY_MESSAGE
from services.errors import StoreError, SyncError

logger = logging.getLogger(__name__)


@dataclass
class RefreshOutcome:
    settled: bool
    attempts: int
    message: Optional[str] = None
    cancelled: bool = False


class BoundedRefresh:
    """
    Re-runs an attempt at a fixed interval until it reports the state as settled,
    giving up after max_attempts with a manual-retry message.

    The attempt callable returns True once loading is over. SyncError and StoreError
    raised by it count as "still loading". The sleeper is injectable so callers can
    drive time themselves.
    """

    def __init__(
        self,
        attempt: Callable[[], Awaitable[bool]],
        *,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.attempt = attempt
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.subscription_refresh_max_attempts
        )
        self.interval = (
            interval if interval is not None else settings.subscription_refresh_interval_seconds
        )
        self.sleep = sleep
        self.attempts = 0

    async def run(self) -> RefreshOutcome:
        while self.attempts < self.max_attempts:
            await self.sleep(self.interval)
            self.attempts += 1
            logger.info(f"Attempting auto-refresh ({self.attempts}/{self.max_attempts})")
            try:
                settled = await self.attempt()
            except (SyncError, StoreError) as e:
                logger.warning(f"Auto-refresh attempt {self.attempts} failed: {e}")
                settled = False
            if settled:
                return RefreshOutcome(settled=True, attempts=self.attempts)

        logger.warning(f"Auto-refresh gave up after {self.attempts} attempts")
        return RefreshOutcome(settled=False, attempts=self.attempts, message=MANUAL_RETRY_MESSAGE)

    def start(self) -> "RefreshHandle":
        """Schedule the loop on the running event loop and return a handle to it."""
        return RefreshHandle(self, asyncio.create_task(self.run()))


class RefreshHandle:
    """Cancellable handle for a scheduled BoundedRefresh."""

    def __init__(self, refresh: BoundedRefresh, task: "asyncio.Task[RefreshOutcome]"):
        self._refresh = refresh
        self._task = task

    @property
    def attempts(self) -> int:
        return self._refresh.attempts

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> RefreshOutcome:
        if not self._task.done():
            await asyncio.wait({self._task})
        if self._task.cancelled():
            return RefreshOutcome(settled=False, attempts=self.attempts, cancelled=True)
        return self._task.result()
