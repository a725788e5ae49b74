"""
VPS Autoscaler - Database Configuration

This module provides async SQLAlchemy setup with connection pooling,
session management, and dependency injection.
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
import logging
from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from .config import get_settings

logger = logging.getLogger(__name__)

# Global database engine and session factory
_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

# Metadata naming convention for constraints and indexes
custom_metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# SQLAlchemy declarative base with custom metadata
Base = declarative_base(metadata=custom_metadata)


def create_async_database_engine() -> AsyncEngine:
    """
    Create async SQLAlchemy engine.

    Returns:
        AsyncEngine: Configured async database engine
    """
    settings = get_settings()

    engine_config = {
        "url": settings.database.database_url,
        "echo": settings.debug,
        "echo_pool": settings.debug,
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": settings.database.db_pool_size,
        "max_overflow": settings.database.db_max_overflow,
        "pool_timeout": settings.database.db_pool_timeout,
        "pool_recycle": settings.database.db_pool_recycle,
        "pool_pre_ping": True,
        "connect_args": {
            "command_timeout": 60,
            "server_settings": {
                "application_name": "vps_autoscaler",
                "timezone": "UTC",  # All timestamps are stored in UTC
                "statement_timeout": "60s",
                "lock_timeout": "30s",
            },
        },
    }

    if settings.environment == "testing":
        engine_config["poolclass"] = NullPool
        for key in ("pool_size", "max_overflow", "pool_timeout"):
            engine_config.pop(key)
        logger.info("Using NullPool for testing environment")

    engine = create_async_engine(**engine_config)

    logger.info(
        f"Created async database engine: {settings.database.postgres_host}:"
        f"{settings.database.postgres_port}/{settings.database.postgres_db}"
    )

    return engine


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create async session factory for database operations.

    Args:
        engine: Async SQLAlchemy engine

    Returns:
        async_sessionmaker: Session factory for creating async sessions
    """
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )

    logger.info("Created async session factory")
    return session_factory


async def init_database() -> None:
    """
    Initialize database connection and global session factory.
    Should be called during application startup.
    """
    global _async_engine, _async_session_factory

    if _async_engine is not None:
        logger.warning("Database already initialized")
        return

    try:
        _async_engine = create_async_database_engine()
        _async_session_factory = create_async_session_factory(_async_engine)

        await test_database_connection()

        logger.info("Database initialization completed successfully")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_database() -> None:
    """
    Close database connections and cleanup resources.
    Should be called during application shutdown.
    """
    global _async_engine, _async_session_factory

    if _async_engine is not None:
        await _async_engine.dispose()
        _async_engine = None
        _async_session_factory = None
        logger.info("Database connections closed")


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the global async session factory.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _async_session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get an async database session with automatic cleanup.

    Usage:
        async with get_async_session() as session:
            result = await session.execute(query)
            await session.commit()
    """
    session_factory = get_async_session_factory()

    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def test_database_connection() -> bool:
    """
    Test database connectivity.

    Raises:
        Exception: If connection fails
    """
    try:
        async with get_async_session() as session:
            result = await session.execute(text("SELECT 1"))
            if result.scalar() != 1:
                raise RuntimeError("Unexpected result from connectivity check")

            logger.info("Database connection test successful")
            return True

    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        raise


async def check_database_health() -> dict:
    """
    Database health check for the health endpoint.

    Returns:
        dict: Health check results with pool statistics
    """
    health_data = {"status": "unknown", "connection_pool": {}}

    if _async_engine is None:
        health_data["status"] = "not_initialized"
        return health_data

    try:
        pool = _async_engine.pool
        health_data["connection_pool"] = {
            "pool_class": str(type(pool).__name__),
            "status": pool.status(),
        }

        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))

        health_data["status"] = "healthy"

    except Exception as e:
        health_data["status"] = "unhealthy"
        health_data["error"] = str(e)
        logger.error(f"Database health check failed: {e}")

    return health_data
