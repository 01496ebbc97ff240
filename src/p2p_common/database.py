"""Async SQLAlchemy engine for the event outbox.

Ledger state is held in memory by the positions manager; the database only
receives the append-only p2p_events stream, one transaction per action.
"""
import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import settings

logger = logging.getLogger(__name__)

engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=5,
)

outbox_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def check_connection() -> None:
    """Fail startup early if the outbox database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Outbox database reachable")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one outbox session per request, closed afterwards."""
    async with outbox_session_factory() as session:
        yield session
