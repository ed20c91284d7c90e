"""
Tests for SubscriptionContext: lifecycle, auto-refresh and mutations
"""
import asyncio

import pytest

from models.subscription import EntitlementReason, MANUAL_RETRY_MESSAGE
from services.errors import OwnershipError, StoreError, SyncError, ValidationError
from services.subscription_context import SubscriptionContext
from tests.conftest import PERIOD_END, seed_subscription, seed_user


def _context(db, gateway, sleep):
    return SubscriptionContext(db, gateway, max_attempts=3, interval=3.0, sleep=sleep)


def _caller(user):
    return {"user_id": str(user.id), "email": user.email, "is_active": True}


@pytest.mark.asyncio
async def test_access_is_pending_until_auth_resolves(test_db, gateway, recording_sleep):
    ctx = _context(test_db, gateway, recording_sleep)

    decision = await ctx.can_access()

    assert decision.is_entitled is False
    assert decision.reason == EntitlementReason.SYNC_PENDING
    assert decision.redirect_to is None
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_anonymous_caller_is_sent_to_login(test_db, gateway, recording_sleep):
    ctx = await _context(test_db, gateway, recording_sleep).init(None)

    decision = await ctx.can_access()

    assert decision.reason == EntitlementReason.UNAUTHENTICATED
    assert decision.redirect_to == "/login"


@pytest.mark.asyncio
async def test_wait_for_access_gives_up_after_three_refreshes(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="active")
    gateway.fail = True

    async with _context(test_db, gateway, recording_sleep) as ctx:
        await ctx.init(_caller(user))
        decision = await ctx.wait_for_access()

    assert decision.is_entitled is False
    assert decision.reason == EntitlementReason.SYNC_FAILED
    assert decision.message == MANUAL_RETRY_MESSAGE
    assert recording_sleep.calls == [3.0, 3.0, 3.0]
    # one initial check plus exactly three refresh attempts
    assert gateway.count("fetch") == 4


@pytest.mark.asyncio
async def test_wait_for_access_recovers_when_provider_returns(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="active")
    gateway.put("sub_123", status="active")
    gateway.fail = True

    class HealingSleep:
        def __init__(self):
            self.calls = []

        async def __call__(self, seconds):
            self.calls.append(seconds)
            gateway.fail = False

    sleep = HealingSleep()
    async with _context(test_db, gateway, sleep) as ctx:
        await ctx.init(_caller(user))
        decision = await ctx.wait_for_access()

    assert decision.is_entitled is True
    assert decision.message is None
    assert sleep.calls == [3.0]


@pytest.mark.asyncio
async def test_fetch_subscription_and_trial(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="incomplete")
    gateway.put("sub_123", status="trialing")
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(user))

    record = await ctx.fetch_subscription()
    trial = await ctx.evaluate_trial()

    assert record.status == "trialing"
    assert ctx.subscription == record
    assert ctx.is_loading is False
    assert trial.is_in_trial is False


@pytest.mark.asyncio
async def test_fetch_subscription_propagates_sync_error(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id)
    gateway.fail = True
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(user))

    with pytest.raises(SyncError):
        await ctx.fetch_subscription()
    assert ctx.is_loading is False


@pytest.mark.asyncio
async def test_cancel_requires_subscription_id(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id)
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(user))

    with pytest.raises(ValidationError):
        await ctx.cancel_subscription("")
    assert gateway.count("cancel") == 0


@pytest.mark.asyncio
async def test_cancel_rejects_someone_elses_subscription(test_db, gateway, recording_sleep):
    owner = await seed_user(test_db, "owner@example.com")
    other = await seed_user(test_db, "other@example.com")
    await seed_subscription(test_db, owner.id, stripe_subscription_id="sub_owner")
    await seed_subscription(test_db, other.id, stripe_subscription_id="sub_other")
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(other))

    with pytest.raises(OwnershipError):
        await ctx.cancel_subscription("sub_owner")
    assert gateway.count("cancel") == 0


@pytest.mark.asyncio
async def test_cancel_keeps_status_and_flags_period_end(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="active")
    gateway.put("sub_123", status="active")
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(user))

    record = await ctx.cancel_subscription("sub_123")

    assert record.status == "active"
    assert record.cancel_at_period_end is True
    assert record.current_period_end == PERIOD_END
    assert gateway.calls == [("cancel", "sub_123"), ("fetch", "sub_123")]


@pytest.mark.asyncio
async def test_reactivate_clears_pending_cancellation(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="active", cancel_at_period_end=True)
    gateway.put("sub_123", status="active", cancel_at_period_end=True)
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(user))

    record = await ctx.reactivate_subscription("sub_123")

    assert record.cancel_at_period_end is False
    assert (await ctx.can_access()).is_entitled is True


@pytest.mark.asyncio
async def test_dispose_cancels_scheduled_refresh(test_db, gateway):
    user = await seed_user(test_db)
    never_called = []

    async def slow_sleep(seconds):
        await asyncio.Event().wait()

    async def attempt():
        never_called.append(1)
        return True

    ctx = await SubscriptionContext(test_db, gateway, sleep=slow_sleep).init(_caller(user))
    handle = ctx.start_auto_refresh(attempt)
    await asyncio.sleep(0)
    ctx.dispose()
    outcome = await handle.wait()

    assert outcome.cancelled is True
    assert never_called == []
    with pytest.raises(RuntimeError):
        await ctx.can_access()


@pytest.mark.asyncio
async def test_cancel_survives_store_failure_after_provider_applied_it(test_db, gateway, recording_sleep):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="active")
    gateway.put("sub_123", status="active")
    ctx = await _context(test_db, gateway, recording_sleep).init(_caller(user))

    async def failing_upsert(user_id, remote):
        raise StoreError("database is down")

    ctx.subscription_repo.upsert_synced = failing_upsert

    record = await ctx.cancel_subscription("sub_123")

    assert gateway.count("cancel") == 1
    assert gateway.subscriptions["sub_123"].cancel_at_period_end is True
    # Last known local record, not an error
    assert record.stripe_subscription_id == "sub_123"
    assert record.status == "active"
