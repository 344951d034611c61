"""Shared test fixtures.

The ledger runs against an in-memory SQLite database built from the ORM
metadata. SQLite's driver manages transactions itself by default, which
breaks SAVEPOINTs, so the engine hooks below hand transaction control to
SQLAlchemy.
"""

from __future__ import annotations

import random
from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from naffles.config import get_settings
from naffles.database import get_session
from naffles.db import models  # noqa: F401
from naffles.db.base import Base
from naffles.db.models import Community, User
from naffles.main import create_app

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FixedRandom(random.Random):
    """Random source whose ``random()`` always returns the same draw."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    """Fresh settings per test; side effects stay explicit in tests."""
    monkeypatch.setenv("NAFFLES_LOCAL_TIMEZONE", "UTC")
    monkeypatch.setenv("NAFFLES_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_client() -> AsyncMock:
    """Stand-in for the Redis client; records publish calls."""
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory creating committed users with unique usernames."""
    counter = {"n": 0}

    async def _make(**fields) -> User:
        counter["n"] += 1
        fields.setdefault("username", f"user{counter['n']}")
        user = User(**fields)
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def user(make_user) -> User:
    return await make_user()


@pytest_asyncio.fixture
async def admin_user(make_user) -> User:
    return await make_user(username="platform_admin", role="naffles_admin")


@pytest_asyncio.fixture
async def community(db_session: AsyncSession, make_user) -> Community:
    """A user community created through the service, with its creator as member."""
    from naffles.community.service import create_community

    creator = await make_user(username="creator")
    return await create_community(
        db_session,
        creator.id,
        {"name": "Test Guild", "points_name": "Guild Coins", "points_symbol": "GC"},
    )


@pytest.fixture
def app(session_factory, redis_client, monkeypatch):
    """The application wired to the test database and a mocked Redis."""
    app = create_app()
    monkeypatch.setattr("naffles.health.router.get_redis", lambda: redis_client)

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_session
    return app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def fixed_rng() -> type[FixedRandom]:
    """``fixed_rng(0.0)`` always wins a jackpot roll, ``fixed_rng(0.99)`` never does."""
    return FixedRandom
