import itertools
import os
from datetime import datetime

# must be in place before heartsense modules read their settings
os.environ.setdefault("SECRET", "test-secret-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["PUSH_GATEWAY"] = "dummy"

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from heartsense.database import Base
from heartsense.models import EngagementStats, NotificationPreferences, User
from heartsense.services.notifications import configure_fanout
from heartsense.services.push import NotificationDispatcher

from fakes import FakeTransport

# a Wednesday, midday UTC
NOW = datetime(2026, 3, 18, 12, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def no_push_fanout(session_factory):
    """Alert commits do not spawn pushes unless a test turns fan-out back on."""
    configure_fanout(
        enabled=False,
        session_factory=session_factory,
        dispatcher=NotificationDispatcher(FakeTransport(), FakeTransport()),
    )
    yield
    configure_fanout(enabled=False)


@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(*, prefs: dict | None = None, stats: dict | None = None, **fields) -> User:
        n = next(counter)
        async with session_factory() as session:
            user = User(
                email=fields.pop("email", f"user{n}@example.com"),
                hashed_password="not-a-real-hash",
                is_active=fields.pop("is_active", True),
                **fields,
            )
            session.add(user)
            await session.flush()
            if prefs is not None:
                session.add(NotificationPreferences(user_id=user.id, **prefs))
            if stats is not None:
                session.add(EngagementStats(user_id=user.id, **stats))
            await session.commit()
            return user

    return _make
