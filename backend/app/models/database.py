"""Database configuration and session management."""

import asyncio
import logging
from typing import Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

DATABASE_URL = "sqlite+aiosqlite:///./cryptopulse.db"

Base = declarative_base()


def create_session_maker(database_url: str = DATABASE_URL) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Create an engine and a session factory bound to it."""
    engine = create_async_engine(database_url, echo=False)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_maker


async def init_db(engine: AsyncEngine):
    """Initialize the database, creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def connect_database(
    database_url: str,
    timeout_seconds: float = 3.0,
) -> Optional[Tuple[AsyncEngine, async_sessionmaker]]:
    """Connect to the database and create tables, bounded by a timeout.

    Returns:
        (engine, session_maker) on success, None if the database is
        unreachable or too slow.
    """
    engine, session_maker = create_session_maker(database_url)
    try:
        await asyncio.wait_for(init_db(engine), timeout=timeout_seconds)
        async with session_maker() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=timeout_seconds)
    except Exception as e:
        logger.warning(f"Database connection failed, running without cache: {e}")
        await engine.dispose()
        return None

    logger.info("Connected to database")
    return engine, session_maker
