"""
Pytest fixtures for test database, client, fakes and authentication.

Each test gets its own SQLite file database, so tests are isolated and
concurrent requests really use separate connections. Every request opens its
own session, like production.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_ENABLED"] = "false"
os.environ["LOCK_BACKEND"] = "local"
os.environ["NOTIFICATION_BACKEND"] = "log"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agripool.api.deps import get_gateway, get_locks, get_notifications
from agripool.core.errors import PaymentGateUnavailable
from agripool.core.security import create_access_token
from agripool.db.base import Base
from agripool.db.session import get_db
from agripool.domain.actors import Actor, Role
from agripool.main import app
from agripool.models.equipment import Equipment
from agripool.services.interfaces.notification import Notification, NotificationSink
from agripool.services.interfaces.payment import (
    PaymentGateway,
    PaymentInitialization,
    PaymentVerification,
)
from agripool.services.interfaces.reservation_lock import LocalReservationLock

OWNER_ID = 1
FARMER_IDS = [2, 3, 4, 5, 6]
ADMIN_ID = 99
PRICE_PER_DAY = 5000  # kobo


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification for assertions."""

    def __init__(self):
        self.sent: list[Notification] = []

    async def notify(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        self.sent.append(Notification(user_id=user_id, event=event, payload=payload))

    def events(self, user_id: Optional[int] = None) -> list[str]:
        return [n.event for n in self.sent if user_id is None or n.user_id == user_id]


class FakePaymentGateway(PaymentGateway):
    """In-memory gateway: every initialized payment succeeds unless told otherwise."""

    def __init__(self):
        self.initialized: dict[str, int] = {}
        self.outcomes: dict[str, bool] = {}
        self.unavailable = False

    async def initialize(self, amount, reference, email, metadata=None, callback_url=None):
        if self.unavailable:
            raise PaymentGateUnavailable()
        self.initialized[reference] = amount
        return PaymentInitialization(
            authorization_url=f"https://checkout.test/{reference}",
            reference=reference,
            access_code=f"AC_{reference}",
        )

    async def verify(self, reference):
        if self.unavailable:
            raise PaymentGateUnavailable()
        return PaymentVerification(
            reference=reference,
            paid=self.outcomes.get(reference, True),
            amount=self.initialized.get(reference, 0),
            status="success" if self.outcomes.get(reference, True) else "failed",
        )


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh schema per test in a throwaway SQLite file."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def locks() -> LocalReservationLock:
    return LocalReservationLock()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, notifications, gateway, locks) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a session per request and fake collaborators."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifications] = lambda: notifications
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_locks] = lambda: locks

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    """Bearer headers for any user id and role."""

    def _headers(user_id: int, role: Role = Role.FARMER) -> dict:
        token = create_access_token(data={"sub": user_id, "role": role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def owner_headers(headers_for) -> dict:
    return headers_for(OWNER_ID, Role.PLATFORM_OWNER)


@pytest.fixture
def farmer_headers(headers_for) -> dict:
    return headers_for(FARMER_IDS[0])


@pytest.fixture
def admin_headers(headers_for) -> dict:
    return headers_for(ADMIN_ID, Role.ADMIN)


@pytest.fixture
def owner() -> Actor:
    return Actor(user_id=OWNER_ID, role=Role.PLATFORM_OWNER)


@pytest.fixture
def farmers() -> list[Actor]:
    return [Actor(user_id=user_id) for user_id in FARMER_IDS]


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, role=Role.ADMIN)


@pytest.fixture
def day():
    """day(n): midnight UTC, n days after a base date a month from now."""
    base = (datetime.now(timezone.utc) + timedelta(days=30)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )

    def _day(offset: int) -> datetime:
        return base + timedelta(days=offset)

    return _day


@pytest_asyncio.fixture
async def equipment(session_factory) -> Equipment:
    """A tractor owned by OWNER_ID renting at 5000 kobo per day."""
    async with session_factory() as session:
        tractor = Equipment(owner_id=OWNER_ID, name="Tractor", price_per_day=PRICE_PER_DAY)
        session.add(tractor)
        await session.commit()
        await session.refresh(tractor)
        return tractor


@pytest_asyncio.fixture
async def unavailable_equipment(session_factory) -> Equipment:
    async with session_factory() as session:
        harvester = Equipment(
            owner_id=OWNER_ID,
            name="Harvester",
            price_per_day=PRICE_PER_DAY,
            is_available=False,
        )
        session.add(harvester)
        await session.commit()
        await session.refresh(harvester)
        return harvester
