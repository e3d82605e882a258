"""Nevis Database Configuration - Async SQLAlchemy."""

import asyncio
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from nevis.core.config import Settings, settings
from nevis.core.logging import get_logger

logger = get_logger("database")

HEALTH_CHECK_TIMEOUT_SECONDS = 3.0


def build_engine(config: Settings) -> AsyncEngine:
    """Create the pooled engine described by ``config``.

    asyncpg gets a per-statement ``command_timeout`` so a stalled database
    surfaces as an error instead of a hung request.
    """
    connect_args = {}
    if "+asyncpg" in config.database_url:
        connect_args["command_timeout"] = config.db_command_timeout

    return create_async_engine(
        config.database_url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=config.db_pool_timeout,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=config.debug and config.log_level == "DEBUG",
    )


engine = build_engine(settings)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a request-scoped session.

    Account writes commit themselves, so anything still pending when the
    request fails is rolled back. Cancellation counts as failure.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise


async def check_db_connection(timeout: float = HEALTH_CHECK_TIMEOUT_SECONDS) -> bool:
    """Return True if ``SELECT 1`` succeeds within ``timeout`` seconds."""

    async def _ping() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_ping(), timeout=timeout)
        return True
    except (OSError, TimeoutError, SQLAlchemyError) as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
