"""Async engine and session factory for the hierarchy store.

Pool choice follows the database:
- in-memory SQLite: StaticPool, so every session sees the same database
- file SQLite: NullPool, one connection per checkout
- PostgreSQL: QueuePool sized from DatabaseSettings

SQLite connections get ``PRAGMA foreign_keys=ON`` so custom role
permission rows cascade with their role.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple, Type

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, Pool, QueuePool, StaticPool

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)

# Process-wide engine, created on first use
_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _pool_options(settings: DatabaseSettings) -> Tuple[Type[Pool], Dict[str, Any]]:
    if settings.is_memory:
        return StaticPool, {}
    if settings.is_sqlite:
        return NullPool, {}
    return QueuePool, {
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_timeout": settings.pool_timeout,
        "pool_recycle": settings.pool_recycle,
        "pool_pre_ping": settings.pool_pre_ping,
    }


def _install_sqlite_pragmas(engine: AsyncEngine, settings: DatabaseSettings) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not settings.is_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def create_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    """Build a new engine for ``settings`` (environment settings by default)."""
    settings = settings or get_database_settings()
    pool_class, pool_kwargs = _pool_options(settings)

    engine = create_async_engine(
        settings.async_url,
        echo=settings.echo_sql,
        poolclass=pool_class,
        connect_args=settings.get_connect_args(),
        **pool_kwargs,
    )
    if settings.is_sqlite:
        _install_sqlite_pragmas(engine, settings)

    logger.info(
        f"Hierarchy store engine created ({pool_class.__name__})",
        extra={"driver": settings.driver, "memory": settings.is_memory},
    )
    return engine


def get_session_factory(
    engine: Optional[AsyncEngine] = None,
    settings: Optional[DatabaseSettings] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to ``engine``.

    Objects stay readable after commit and nothing is flushed implicitly;
    the store flushes where it needs constraint errors surfaced.
    """
    return async_sessionmaker(
        bind=engine or get_async_engine(settings),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    global _async_engine
    if _async_engine is None:
        _async_engine = create_engine(settings)
    return _async_engine


def get_async_session_factory(
    settings: Optional[DatabaseSettings] = None,
) -> async_sessionmaker[AsyncSession]:
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = get_session_factory(get_async_engine(settings))
    return _async_session_factory


@asynccontextmanager
async def get_async_session(
    settings: Optional[DatabaseSettings] = None,
) -> AsyncIterator[AsyncSession]:
    """Session from the global factory, committed on success."""
    session = get_async_session_factory(settings)()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


async def check_database_connection(settings: Optional[DatabaseSettings] = None) -> bool:
    """True when a trivial query succeeds against the global engine."""
    try:
        async with get_async_engine(settings).connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Hierarchy store is unreachable: {e}")
        return False
    return True


async def init_database(
    engine: Optional[AsyncEngine] = None,
    settings: Optional[DatabaseSettings] = None,
) -> None:
    """Create any missing hierarchy tables."""
    engine = engine or get_async_engine(settings)

    from database.models import Base
    import hierarchy.models  # noqa: F401  registers the tables

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Hierarchy tables initialized")


async def close_database() -> None:
    """Dispose of the global engine and forget the session factory."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None
