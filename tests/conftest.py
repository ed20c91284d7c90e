"""
Pytest configuration and fixtures for testing
"""
from datetime import datetime
from typing import Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import settings
from database import Base, enable_sqlite_savepoints, get_db
from database_models import User, Subscription, UserTrial
from models.subscription import RemoteSubscription
from services.errors import SyncError

# In-memory SQLite shared by every session of a test through StaticPool
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_END = datetime(2030, 1, 1, 12, 0, 0)
TEST_JWT_SECRET = "test-jwt-secret"


class FakeBillingGateway:
    """
    In-memory stand-in for StripeBillingGateway.
    Set fail=True to make every call behave like an unreachable provider.
    """

    def __init__(self):
        self.subscriptions: dict[str, RemoteSubscription] = {}
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    def put(
        self,
        subscription_id: str,
        status: str = "active",
        cancel_at_period_end: bool = False,
        current_period_end: Optional[datetime] = PERIOD_END,
        customer_id: Optional[str] = "cus_test",
    ) -> RemoteSubscription:
        remote = RemoteSubscription(
            id=subscription_id,
            status=status,
            cancel_at_period_end=cancel_at_period_end,
            current_period_end=current_period_end,
            customer_id=customer_id,
        )
        self.subscriptions[subscription_id] = remote
        return remote

    def count(self, kind: str) -> int:
        return sum(1 for call, _ in self.calls if call == kind)

    def _lookup(self, kind: str, subscription_id: str) -> RemoteSubscription:
        self.calls.append((kind, subscription_id))
        if self.fail:
            raise SyncError("Billing provider unreachable")
        if subscription_id not in self.subscriptions:
            raise SyncError(f"No such subscription: {subscription_id}")
        return self.subscriptions[subscription_id]

    async def fetch_subscription(self, subscription_id: str) -> RemoteSubscription:
        return self._lookup("fetch", subscription_id).model_copy()

    async def cancel_subscription(self, subscription_id: str) -> RemoteSubscription:
        remote = self._lookup("cancel", subscription_id)
        remote.cancel_at_period_end = True
        return remote.model_copy()

    async def reactivate_subscription(self, subscription_id: str) -> RemoteSubscription:
        remote = self._lookup("reactivate", subscription_id)
        remote.cancel_at_period_end = False
        return remote.model_copy()

    async def create_checkout_session(self, user_id: int, email: Optional[str] = None) -> str:
        self.calls.append(("checkout", str(user_id)))
        if self.fail:
            raise SyncError("Billing provider unreachable")
        return f"https://checkout.test/session/{user_id}"


class RecordingSleep:
    """Sleeper that returns immediately and remembers what it was asked to wait"""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
async def session_factory():
    """
    Fixture that provides a session factory bound to a fresh in-memory database.
    Tables are created before the test and the engine is disposed afterwards.
    """
    import database_models  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_db(session_factory):
    """Fixture that yields a clean AsyncSession for the test."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
def gateway():
    return FakeBillingGateway()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "jwt_secret_key", TEST_JWT_SECRET)
    return TEST_JWT_SECRET


@pytest.fixture
async def async_client(session_factory, gateway, recording_sleep, jwt_secret):
    """
    Async HTTP client over the ASGI app with the database, billing gateway and
    auto-refresh sleeper replaced by test doubles.
    """
    from main import app
    from routers.subscription_router import get_billing_gateway, get_refresh_sleep

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_gateway] = lambda: gateway
    app.dependency_overrides[get_refresh_sleep] = lambda: recording_sleep

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def seed_user(session: AsyncSession, email: str = "user@example.com") -> User:
    user = User(email=email, hashed_password="not-a-real-hash", is_active=True)
    session.add(user)
    await session.commit()
    return user


async def seed_subscription(
    session: AsyncSession,
    user_id: int,
    status: str = "active",
    stripe_subscription_id: Optional[str] = "sub_123",
    cancel_at_period_end: bool = False,
    current_period_end: Optional[datetime] = PERIOD_END,
) -> Subscription:
    subscription = Subscription(
        user_id=user_id,
        status=status,
        stripe_subscription_id=stripe_subscription_id,
        cancel_at_period_end=cancel_at_period_end,
        current_period_end=current_period_end,
        created_at=datetime(2024, 1, 1),
    )
    session.add(subscription)
    await session.commit()
    return subscription


async def seed_trial(
    session: AsyncSession,
    user_id: int,
    trial_end_time: Optional[datetime] = None,
    is_trial_used: bool = False,
) -> UserTrial:
    trial = UserTrial(user_id=user_id, trial_end_time=trial_end_time, is_trial_used=is_trial_used)
    session.add(trial)
    await session.commit()
    return trial
