import os

os.environ["TESTING"] = "1"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest_asyncio
from faker import Faker
from fastapi import Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession

from pacmac.api.dependencies import (
    get_async_session,
    get_auction_timers,
    get_clock,
    get_payment_gateway,
    get_user,
)
from pacmac.api.main import app
from pacmac.core.config import config
from pacmac.core.exceptions import ExternalServiceError
from pacmac.db.database import build_engine, build_session_factory, init_db
from pacmac.models.listing_model import Listing
from pacmac.models.user_model import User
from pacmac.services.auction.timer import AuctionTimerService
from pacmac.services.events import EventBus, events
from pacmac.services.payments.gateway import PAYMENT_SUCCEEDED, PaymentIntent

DATABASE_URL = "sqlite+aiosqlite:///:memory:"
STAFF_EMAIL = "staff@example.com"

fake = Faker()


class FakeClock:
    """Settable clock handed to every service under test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakePaymentGateway:
    def __init__(self) -> None:
        self.status = PAYMENT_SUCCEEDED
        self.unreachable = False
        self.created: list[dict] = []

    async def create_payment_intent(self, amount_minor_units, currency, metadata):
        if self.unreachable:
            raise ExternalServiceError("stripe", "connection reset")
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append(
            {"intent_id": intent_id, "amount": amount_minor_units, "metadata": metadata}
        )
        return PaymentIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret",
            status="requires_payment_method",
        )

    async def get_payment_intent_status(self, intent_id):
        if self.unreachable:
            raise ExternalServiceError("stripe", "timeout")
        return self.status


class EventRecorder:
    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []

    async def __call__(self, name: str, payload: dict) -> None:
        self.published.append((name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.published]


def as_user(user: User) -> dict:
    return {"X-Test-Email": user.email}


@pytest_asyncio.fixture()
async def engine():
    engine = build_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        # ensure that we are connecting to the same
        # in memory database
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture()
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture()
async def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest_asyncio.fixture()
async def recorder() -> EventRecorder:
    return EventRecorder()


@pytest_asyncio.fixture()
async def event_bus(recorder) -> EventBus:
    bus = EventBus()
    bus.subscribe(recorder)
    return bus


@pytest_asyncio.fixture()
async def recorded_events():
    # services built by the API dependencies publish on the shared bus
    recorder = EventRecorder()
    events.subscribe(recorder)
    yield recorder
    events.unsubscribe(recorder)


@pytest_asyncio.fixture()
async def timers(session_factory, clock) -> AuctionTimerService:
    return AuctionTimerService(session_factory, clock=clock)


async def create_user(session: AsyncSession, email: str | None = None) -> User:
    user = User(
        firstname=fake.first_name(),
        lastname=fake.last_name(),
        email=email or fake.unique.email(),
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture()
async def seller(session) -> User:
    return await create_user(session)


@pytest_asyncio.fixture()
async def buyer(session) -> User:
    return await create_user(session)


@pytest_asyncio.fixture()
async def stranger(session) -> User:
    return await create_user(session)


@pytest_asyncio.fixture()
async def staff(session, monkeypatch) -> User:
    monkeypatch.setattr(config, "staff_emails", [STAFF_EMAIL])
    return await create_user(session, STAFF_EMAIL)


@pytest_asyncio.fixture()
async def listing(session, seller) -> Listing:
    listing = Listing(
        title=fake.sentence(nb_words=3),
        description=fake.text(max_nb_chars=200),
        price=Decimal("50.00"),
        seller_id=seller.id,
    )
    session.add(listing)
    await session.commit()
    await session.refresh(listing)
    return listing


@pytest_asyncio.fixture()
async def async_client(session_factory, gateway, timers, clock) -> AsyncClient:
    async def override_get_async_session() -> AsyncSession:
        async with session_factory() as session:
            yield session

    async def override_get_user(request: Request):
        return {"email": request.headers.get("X-Test-Email", "test@example.com")}

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_user] = override_get_user
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_auction_timers] = lambda: timers
    app.dependency_overrides[get_clock] = lambda: clock

    headers = {"Authorization": "Bearer fake"}

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test", headers=headers
    ) as client:
        yield client

    app.dependency_overrides.clear()
