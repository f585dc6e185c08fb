"""
Async engine, session factory and declarative base for the Rallyboard store.

PostgreSQL (asyncpg) in deployment; any SQLAlchemy async URL works, which is
how the test suite runs against aiosqlite.
"""

import os
from typing import AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.orm import DeclarativeBase
from dotenv import load_dotenv

load_dotenv()


def _postgres_url_from_parts() -> str:
    user = os.getenv("POSTGRES_USER", "rallyboard")
    password = os.getenv("POSTGRES_PASSWORD", "rallyboard")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    name = os.getenv("POSTGRES_DB", "rallyboard")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


# DATABASE_URL wins; otherwise assembled from POSTGRES_* settings
DATABASE_URL = os.getenv("DATABASE_URL") or _postgres_url_from_parts()


def engine_options(url: str) -> Dict:
    """Engine keyword arguments for ``url``. SQLite has no connection pool to size."""
    options = {
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
        "pool_pre_ping": True,
    }
    if not url.startswith("sqlite"):
        options["pool_size"] = int(os.getenv("DB_POOL_SIZE", "10"))
        options["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    return options


engine: AsyncEngine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))

# Objects stay readable after commit; route handlers serialize them afterwards
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


# Registers tables on Base.metadata; must follow the Base definition
from rallyboard.database import models  # noqa: F401, E402


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Commits when the handler returns, rolls back if it raises. Services that
    need a tighter transaction (recording or reversing an outcome) commit on
    their own before returning.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_database():
    """Create any missing tables. Existing tables are left untouched."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)
