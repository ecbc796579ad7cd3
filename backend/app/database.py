# @TEST tests/test_database.py

"""Async engine, session factory and request-scoped sessions.

Every connection is tagged with ``application_name`` so search traffic can
be told apart in ``pg_stat_activity``, and carries a server-side
``statement_timeout`` a little above the per-strategy timeout so a strategy
abandoned by ``asyncio.wait_for`` does not keep running on the server.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)


def engine_options(settings: Settings) -> dict[str, Any]:
    """Keyword arguments for :func:`create_async_engine`."""
    statement_timeout_ms = int((settings.SEARCH_STRATEGY_TIMEOUT_SECONDS + 1.0) * 1000)
    return {
        "echo": settings.DATABASE_ECHO,
        "pool_pre_ping": True,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "connect_args": {
            "server_settings": {
                "application_name": settings.DATABASE_APPLICATION_NAME,
                "statement_timeout": str(statement_timeout_ms),
            }
        },
    }


settings = get_settings()

engine = create_async_engine(settings.async_database_url, **engine_options(settings))

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the inventory tables (households, items, locations, tags)."""


async def create_schema() -> None:
    """Create missing tables and indexes. Existing tables are left untouched."""
    from app import models  # noqa: F401 - registers the tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%d tables)", len(Base.metadata.tables))


async def dispose_engine() -> None:
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request.

    Commits when the handler returns (reindexing writes vectors), rolls
    back and re-raises on any error.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
