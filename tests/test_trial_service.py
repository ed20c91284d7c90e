"""
Unit tests for TrialService
"""
from datetime import datetime

import pytest

from crud.subscription import SubscriptionRepository
from crud.trial import TrialRepository
from models.subscription import TrialStatus
from services.errors import StoreError
from services.trial_service import TrialService
from tests.conftest import seed_subscription, seed_trial, seed_user

FUTURE = datetime(2099, 1, 1)


class CountingTrialRepository(TrialRepository):
    def __init__(self, db):
        super().__init__(db)
        self.mark_used_calls = 0

    async def mark_used(self, user_id):
        self.mark_used_calls += 1
        await super().mark_used(user_id)


class BrokenTrialRepository:
    async def get_by_user_id(self, user_id):
        raise StoreError("database is down")

    async def mark_used(self, user_id):
        raise StoreError("database is down")


def _service(db, trial_repo=None):
    return TrialService(SubscriptionRepository(db), trial_repo or TrialRepository(db))


@pytest.mark.asyncio
async def test_no_trial_record(test_db):
    user = await seed_user(test_db)

    status = await _service(test_db).evaluate(user.id)

    assert status == TrialStatus(is_in_trial=False, trial_end_time=None, is_trial_used=False)


@pytest.mark.asyncio
async def test_paid_subscription_suppresses_trial(test_db):
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="active")
    await seed_trial(test_db, user.id, trial_end_time=FUTURE, is_trial_used=False)
    trial_repo = CountingTrialRepository(test_db)

    status = await _service(test_db, trial_repo).evaluate(user.id)

    assert status.is_in_trial is False
    assert status.trial_end_time is None
    assert trial_repo.mark_used_calls == 0


@pytest.mark.asyncio
async def test_existing_trial_is_never_reported_running(test_db):
    """Even with an end time in the future, an existing trial counts as consumed."""
    user = await seed_user(test_db)
    await seed_subscription(test_db, user.id, status="canceled")
    await seed_trial(test_db, user.id, trial_end_time=FUTURE, is_trial_used=False)

    status = await _service(test_db).evaluate(user.id)

    assert status.is_in_trial is False
    assert status.trial_end_time == FUTURE
    assert status.is_trial_used is True


@pytest.mark.asyncio
async def test_first_evaluation_marks_trial_used_once(test_db):
    user = await seed_user(test_db)
    await seed_trial(test_db, user.id, trial_end_time=FUTURE, is_trial_used=False)
    trial_repo = CountingTrialRepository(test_db)
    service = _service(test_db, trial_repo)

    first = await service.evaluate(user.id)
    stored = await trial_repo.get_by_user_id(user.id)
    assert stored.is_trial_used is True

    second = await service.evaluate(user.id)

    assert first == second
    assert trial_repo.mark_used_calls == 1


@pytest.mark.asyncio
async def test_store_failure_degrades_to_default(test_db):
    user = await seed_user(test_db)

    status = await _service(test_db, BrokenTrialRepository()).evaluate(user.id)

    assert status == TrialStatus()
