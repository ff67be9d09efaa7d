"""
Async Database Session Management

Handles SQLAlchemy async session lifecycle, the transactional unit of work
used by the scheduling services, and schema bootstrap.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from salon_scheduler.config import settings
from salon_scheduler.db.repository import BookingStore
from salon_scheduler.db.schema import create_schema

logger = logging.getLogger(__name__)


# Global engine instance
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Configures connection pooling with settings from config.

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    global _engine

    if _engine is None:
        _engine = create_async_engine(
            settings.database_url_str,
            echo=settings.db_echo,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=True,  # Enable connection health checks
            future=True,
        )
        logger.info("Database engine created successfully")

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the async session factory.

    Returns:
        async_sessionmaker: Session factory for creating new sessions
    """
    global _async_session_factory

    if _async_session_factory is None:
        engine = get_engine()
        _async_session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,  # Prevent lazy loading after commit
        )
        logger.info("Session factory created successfully")

    return _async_session_factory


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside of FastAPI.

    Commits when the block exits normally and rolls back on any exception.

    Yields:
        AsyncSession: Database session
    """
    session_factory = get_session_factory()
    session = session_factory()

    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(f"Error in database context: {e}")
        raise
    finally:
        await session.close()


@asynccontextmanager
async def booking_transaction() -> AsyncGenerator[BookingStore, None]:
    """
    One atomic scheduling operation.

    Every read and write made through the yielded store shares a single
    transaction, committed when the block exits normally. Any exception
    rolls everything back; rejected bookings are expected, so the rollback
    is only logged at debug level.

    Example:
        async with booking_transaction() as store:
            await store.lock_date(day)
            appointment = await store.appointments.insert(...)
    """
    session_factory = get_session_factory()
    session = session_factory()

    try:
        yield BookingStore(session)
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.debug(f"Booking transaction rolled back: {e!r}")
        raise
    finally:
        await session.close()


async def init_database() -> None:
    """Create tables and indexes if they are missing."""
    async with get_db_context() as db:
        await create_schema(db)


async def check_database_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        bool: True if connection is healthy, False otherwise
    """
    try:
        async with get_db_context() as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
            logger.info("Database connection check successful")
            return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


async def close_database_connection() -> None:
    """
    Close database engine and cleanup resources.

    Should be called during application shutdown.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connections closed successfully")
