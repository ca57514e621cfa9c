"""
Shared pytest configuration for buffalo tests.

By default every test gets a fresh SQLite file. Set TEST_DATABASE_URL to run
against PostgreSQL instead.

SAFETY: when TEST_DATABASE_URL is set, this module REFUSES to run against any
database whose name does not contain the substring "test". Tables are dropped
after every test, so pointing it at a real database would destroy data.
"""

import os

os.environ.setdefault("ENV", "test")

from datetime import datetime

import pytest
import pytest_asyncio
import pytz
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from buffalo.database.db import Base, configure_sqlite
from buffalo.services import player_service
from buffalo.utils import clock as clock_module
from buffalo.utils.clock import FrozenClock

PERIOD = 2025


def _resolve_test_database_url(tmp_path) -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if TEST_DATABASE_URL points at a database whose
    name does not contain "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        return f"sqlite+aiosqlite:///{tmp_path / 'buffalo_test.db'}"

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"{'=' * 70}"
        )
    return url


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with all tables for one test."""
    url = _resolve_test_database_url(tmp_path)
    engine = create_async_engine(
        url,
        echo=False,
        poolclass=NullPool,  # each session gets its own connection
        connect_args={"timeout": 30} if url.startswith("sqlite") else {},
    )
    if url.startswith("sqlite"):
        configure_sqlite(engine)

    async with engine.begin() as conn:
        from buffalo.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions through db.AsyncSessionLocal uses the test engine
    from buffalo.database import db

    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_engine):
    """Session factory for tests that need several concurrent sessions."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_maker):
    """A database session for the test."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest.fixture
def frozen_clock():
    """Install a FrozenClock at 2025-12-01 12:00 UTC (period 2025) for the test."""
    clock = FrozenClock(datetime(2025, 12, 1, 12, 0, tzinfo=pytz.UTC), period=PERIOD)
    previous = clock_module.set_clock(clock)
    yield clock
    clock_module.set_clock(previous)


@pytest_asyncio.fixture
async def players(db_session):
    """Create four players (alice is an admin), return their ids by name."""
    ids = {}
    for name, is_admin in (("Alice", True), ("Bob", False), ("Cara", False), ("Dev", False)):
        player = await player_service.create_player(db_session, name, is_admin=is_admin)
        ids[name.lower()] = player["id"]
    await db_session.commit()
    return ids
