"""Shared pytest fixtures for Back2U tests."""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AI_GATEWAY_API_KEY"] = "test-key"
os.environ["MATCH_SCORER"] = "oracle"
os.environ["NOTIFICATION_SINK_URL"] = ""
os.environ["SERVICE_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""

import uuid
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from back2u.database import Base
from back2u.models import Item, ItemMatch, Notification, Profile  # noqa: F401


class RecordingDispatcher:
    """Notification dispatcher double that records every request and can
    be told to fail for specific recipients."""

    def __init__(self, fail_for: set | None = None) -> None:
        self.requests = []
        self.fail_for = fail_for or set()

    async def dispatch(self, request) -> None:
        self.requests.append(request)
        if request.user_id in self.fail_for:
            from back2u.services.errors import NotificationError

            raise NotificationError(f"sink rejected {request.user_id}")


class FixedScorer:
    """Scorer double returning a fixed response, filtered to the
    candidates actually supplied."""

    def __init__(self, responses: list[dict]) -> None:
        self.responses = responses
        self.calls = []

    async def score(self, source, candidates):
        self.calls.append((source, list(candidates)))
        ids = {str(c.id) for c in candidates}
        return [dict(r) for r in self.responses if r["item_id"] in ids]


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with working SAVEPOINT semantics."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'back2u.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_profile(db_session):
    async def _make(name="Alex", email=None, email_notifications=True):
        profile = Profile(
            id=uuid.uuid4(),
            name=name,
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            email_notifications=email_notifications,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest_asyncio.fixture
async def make_item(db_session):
    async def _make(
        owner,
        category="lost",
        title="black wallet",
        description="black wallet with cards",
        location="Main St",
        item_date=date(2024, 1, 10),
        status="active",
    ):
        item = Item(
            id=uuid.uuid4(),
            user_id=owner.id,
            title=title,
            description=description,
            category=category,
            location=location,
            item_date=item_date,
            status=status,
            image_urls=[],
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _make


@pytest.fixture
def sample_source_item():
    """Scenario A source item (lost black wallet on Main St)."""
    return {
        "id": "11111111-1111-1111-1111-111111111111",
        "title": "black wallet",
        "description": "Lost my black wallet with ID cards",
        "category": "lost",
        "location": "Main St",
        "item_date": date(2024, 1, 10),
    }


@pytest.fixture
def sample_candidates():
    return [
        {
            "id": "22222222-2222-2222-2222-222222222222",
            "title": "black leather wallet",
            "description": "Found a black leather wallet near the bus stop",
            "category": "found",
            "location": "Main St",
            "item_date": date(2024, 1, 11),
        },
        {
            "id": "33333333-3333-3333-3333-333333333333",
            "title": "blue umbrella",
            "description": "Compact blue umbrella left on a bench",
            "category": "found",
            "location": "Central Park",
            "item_date": date(2023, 6, 2),
        },
    ]


@pytest.fixture
def make_scorer():
    return FixedScorer


@pytest.fixture
def make_dispatcher():
    return RecordingDispatcher
