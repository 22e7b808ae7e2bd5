"""Async database engine and session factory."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from telehook.storage.models import Base

logger = logging.getLogger(__name__)


def to_async_url(url: str) -> str:
    """Use the asyncpg driver for plain PostgreSQL URLs."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    return url


def create_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for a database URL.

    Args:
        url: Database URL (``postgresql://`` is switched to asyncpg).
        echo: Log every SQL statement.
    """
    return create_async_engine(to_async_url(url), echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
