"""Async engine and session lifecycle for the permission store.

One engine per process, created lazily from DatabaseSettings. Request
handlers receive a session through get_db_session; background code uses
the get_async_session context manager.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    """Build an engine for the configured database."""
    settings = settings or get_database_settings()
    target = str(settings.sqlite_path) if settings.is_sqlite else f"{settings.host}/{settings.name}"
    logger.info(f"Opening {settings.driver} database at {target}")

    options = {
        "echo": settings.echo_sql,
        "connect_args": settings.connect_args(),
    }
    if settings.is_sqlite:
        options["poolclass"] = NullPool
    else:
        options.update(
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_pre_ping=settings.pool_pre_ping,
        )

    engine = create_async_engine(settings.async_url, **options)
    if settings.is_sqlite:
        _enable_sqlite_foreign_keys(engine)
    return engine


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    # Grant rows cascade with their role, user and permission
    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_async_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    global _async_engine
    if _async_engine is None:
        _async_engine = create_engine(settings)
    return _async_engine


def get_async_session_factory(
    settings: Optional[DatabaseSettings] = None,
) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process engine.

    Objects stay usable after commit: the store commits mid-request and
    handlers keep reading the entities they loaded.
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(settings),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _async_session_factory


@asynccontextmanager
async def get_async_session(
    settings: Optional[DatabaseSettings] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Unit-of-work session: commits on success, rolls back on error.

    Usage:
        async with get_async_session() as session:
            await seed_permissions(session)
    """
    session = get_async_session_factory(settings)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_async_session() as session:
        yield session


async def check_database_connection(settings: Optional[DatabaseSettings] = None) -> bool:
    try:
        async with get_async_engine(settings).connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
    return True


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    """Create every table of the clinic and authorization models.

    Intended for SQLite development databases and tests; server databases
    are expected to be provisioned ahead of time.
    """
    engine = engine or get_async_engine()

    from database.models import Base
    import authz.models  # noqa: F401  registers permission tables on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Created {len(Base.metadata.tables)} tables")


async def reset_engine() -> None:
    """Dispose the process engine. Called on shutdown and between tests."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
        logger.info("Database engine disposed")
    _async_engine = None
    _async_session_factory = None
