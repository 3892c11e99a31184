"""Shared test fixtures.

Every test gets a fresh in-memory SQLite database with the full schema, an
in-process cache and a controllable clock shared by the engine and the cache.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sips.cache import MemoryCache
from sips.config import Settings
from sips.db import models  # noqa: F401
from sips.db.base import Base
from sips.dependencies import get_app_settings, get_db
from sips.gamification.points_engine import PointsEngine
from sips.gamification.seed import seed_levels, seed_roles
from sips.main import create_app

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# A Tuesday, mid-quarter, well away from UTC midnight
CLOCK_START = datetime(2026, 5, 12, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock for the engine plus a monotonic clock for the cache, advanced together."""

    def __init__(self, start: datetime = CLOCK_START) -> None:
        self.current = start
        self.elapsed = 0.0

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.elapsed

    def advance(self, **delta: float) -> None:
        step = timedelta(**delta)
        self.current += step
        self.elapsed += step.total_seconds()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url=TEST_DATABASE_URL, redis_url="", log_format="console")


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(clock=clock.monotonic)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def reference_data(db: AsyncSession) -> None:
    """Level table and rule roles. Badges and challenges are created per test."""
    await seed_levels(db)
    await seed_roles(db)
    await db.commit()


@pytest.fixture
def points_engine(db: AsyncSession, cache: MemoryCache, settings: Settings, clock: FakeClock) -> PointsEngine:
    return PointsEngine(db, cache, settings, clock=clock.now)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    cache: MemoryCache,
    settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test database and cache wired in."""
    app = create_app()
    app.state.cache = cache

    async def _override_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_app_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
