from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_dispatcher, get_gateway
from app.core.db import close_db, get_sessionmaker, init_db, utcnow
from app.events.side_effects import SideEffectDispatcher
from app.main import app
from app.models.event import Event, EventStatus, User
from app.services.email_service import RecordingMailer
from app.services.notification_service import InMemoryBroadcaster, NotificationEmitter
from app.services.webhook_service import WebhookProcessor
from app.testing.testing_mocks import make_test_gateway, mock_stripe_client

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def sessionmaker():
    await init_db(TEST_DB_URL)
    yield get_sessionmaker()
    await close_db()


async def _add(sessionmaker, obj):
    async with sessionmaker() as session:
        async with session.begin():
            session.add(obj)
    return obj


@pytest.fixture
def make_user(sessionmaker):
    async def factory(username: str) -> User:
        return await _add(sessionmaker, User(username=username, email=f"{username}@example.com"))
    return factory


@pytest.fixture
def make_event(sessionmaker):
    async def factory(creator: User, price: str = "0", status: EventStatus = EventStatus.PUBLISHED,
                      title: str = "Community Garden Day", starts_in_days: int = 7) -> Event:
        return await _add(sessionmaker, Event(
            creator_id=creator.id,
            title=title,
            description="Planting, weeding and a shared lunch.",
            starts_at=utcnow() + timedelta(days=starts_in_days),
            location="Elm Street Garden",
            category="Volunteer",
            price=Decimal(price),
            status=status,
        ))
    return factory


@pytest_asyncio.fixture
async def creator(make_user):
    return await make_user("organizer")


@pytest_asyncio.fixture
async def member(make_user):
    return await make_user("member")


@pytest_asyncio.fixture
async def free_event(make_event, creator):
    return await make_event(creator, price="0", title="Neighbourhood Clean-up")


@pytest_asyncio.fixture
async def paid_event(make_event, creator):
    return await make_event(creator, price="25.00", title="Intro to Pottery Workshop")


@pytest.fixture
def stripe_client():
    return mock_stripe_client()


@pytest.fixture
def gateway(stripe_client):
    return make_test_gateway(stripe_client)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def broadcaster():
    return InMemoryBroadcaster()


@pytest.fixture
def dispatcher(sessionmaker, broadcaster, mailer):
    return SideEffectDispatcher(NotificationEmitter(broadcaster), mailer)


@pytest.fixture
def processor(gateway, dispatcher):
    return WebhookProcessor(gateway, dispatcher)


@pytest_asyncio.fixture
async def client(gateway, dispatcher):
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
