"""
Database session management.

The engine is created on first use rather than at import time so that
workers, tests and tooling can import docpipe without a reachable database.

Each Celery task runs its coroutine on a fresh event loop (run_async), and an
asyncpg pool is bound to the loop that created it. Workers therefore build the
engine with NullPool: a connection is opened per session and closed with it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from docpipe.core.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    settings = get_settings()
    logger.info("Creating database engine | echo=%s", settings.db_echo_sql)
    return create_async_engine(
        settings.database_url,
        poolclass=NullPool,
        echo=settings.db_echo_sql,
    )


@lru_cache(maxsize=1)
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction per `async with` block.

    Commits on clean exit, rolls back if the body raises.
    """
    async with get_sessionmaker()() as session:
        async with session.begin():
            yield session
