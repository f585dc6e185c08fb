"""
Shared pytest configuration for rallyboard tests.

Tests run against a throwaway SQLite file (aiosqlite) in the temp directory
unless TEST_DATABASE_URL points elsewhere, e.g. a PostgreSQL test database.
Every DB-backed test gets freshly created tables.

The resolved database name must contain "test"; anything else aborts the run
before a single table is dropped.
"""

import os
import tempfile

# Rate limiting must be disabled before the routes package is imported
os.environ.setdefault("ENV", "test")

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from rallyboard.database import db  # noqa: E402
from rallyboard.database.db import Base  # noqa: E402

DEFAULT_TEST_DATABASE_URL = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.gettempdir(), "rallyboard_test.db"
)


def _resolve_test_database_url() -> str:
    url = os.getenv("TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"Refusing to run tests against database '{db_name}' ({url}). "
            "Point TEST_DATABASE_URL at a database whose name contains 'test'."
        )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()


def _session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Engine on an empty schema; also backs ``db.AsyncSessionLocal`` for the test."""
    # NullPool: each test runs on its own event loop
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Startup hooks and maintenance code open their own sessions
    previous = db.AsyncSessionLocal
    db.AsyncSessionLocal = _session_maker(engine)
    try:
        yield engine
    finally:
        db.AsyncSessionLocal = previous
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    async with _session_maker(test_engine)() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(test_engine):
    """Session factory for tests that need several independent sessions."""
    return _session_maker(test_engine)
