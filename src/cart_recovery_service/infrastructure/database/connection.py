"""Database connection management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from cart_recovery_service.config import Settings, get_settings
from cart_recovery_service.infrastructure.database.models import Base

logger = structlog.get_logger()


def get_async_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create async database engine with connection pooling."""
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
    )


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Global engine and session factory for the API process
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the global engine."""
    global _engine
    if _engine is None:
        _engine = get_async_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = get_async_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the global engine on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_db_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session as async context manager."""
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI to get database session."""
    async with get_db_session() as session:
        yield session


def _missing_tables(sync_conn) -> list[str]:
    existing = set(inspect(sync_conn).get_table_names())
    return [table.name for table in Base.metadata.sorted_tables if table.name not in existing]


async def ensure_schema(engine: AsyncEngine) -> bool:
    """
    Create any cart tables that do not exist yet.

    Existence is probed per table rather than versioned; tables already
    present are left untouched.

    Returns:
        bool: True if any table was created
    """
    async with engine.begin() as conn:
        missing = await conn.run_sync(_missing_tables)
        if not missing:
            return False
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    logger.info("Created cart recovery tables", tables=missing)
    return True
