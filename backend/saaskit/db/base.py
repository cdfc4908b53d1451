"""Declarative base, async engine and session factory.

Production runs on PostgreSQL through asyncpg with a bounded pool. SQLite
URLs (local runs and the test suite) get a single shared connection so an
in-memory database survives across sessions.
"""

from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from saaskit.core.config import get_settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str) -> dict[str, Any]:
    """Engine keyword arguments for the given database URL's backend."""
    settings = get_settings()
    options: dict[str, Any] = {"echo": settings.debug}

    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


async def init_db(url: str | None = None, create_tables: bool = True) -> AsyncEngine:
    """Create the engine and session factory, then the tables for every model.

    Idempotent: returns the existing engine when already initialized.
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    db_url = url or get_settings().database_url
    _engine = create_async_engine(db_url, **engine_options(db_url))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if create_tables:
        # Model modules register themselves on Base.metadata when imported
        import saaskit.db.models  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    logger.info("db_engine_ready", backend=_engine.dialect.name)
    return _engine


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def ping_db() -> None:
    """Round-trip a trivial query. Raises on any connectivity failure."""
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))
