"""
Database Configuration and Session Management
The relational backend is optional: without DATABASE_URL every domain
is served by the tabular API.
"""

from typing import Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from lexintake.core.config import DATABASE_CONFIG, settings

logger = structlog.get_logger()

# Create declarative base
Base = declarative_base()


def create_engine_from_settings() -> Optional[AsyncEngine]:
    """Build the async engine, or None when no relational backend is configured"""
    database_url = settings.async_database_url
    if not database_url:
        logger.info("DATABASE_URL not set, relational backend disabled")
        return None

    engine_kwargs = {**DATABASE_CONFIG}
    if "postgresql" in database_url:
        engine_kwargs["connect_args"] = {
            "server_settings": {
                "application_name": "lexintake-permissions",
            }
        }
    else:
        # Pool sizing options only apply to QueuePool backed dialects
        for key in ("pool_size", "max_overflow", "pool_timeout"):
            engine_kwargs.pop(key, None)

    return create_async_engine(database_url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def check_database_health(engine: Optional[AsyncEngine]) -> bool:
    """
    Check database connectivity
    Used by health check endpoints
    """
    if engine is None:
        return False
    try:
        async with engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False


async def init_database(engine: AsyncEngine):
    """
    Create tables for the permissions schema
    Used in development and tests; production schemas are managed externally
    """
    try:
        async with engine.begin() as conn:
            from lexintake import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        raise


async def close_database(engine: Optional[AsyncEngine]):
    """Close database connections"""
    if engine is None:
        return
    try:
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error("Error closing database connections", error=str(e))
