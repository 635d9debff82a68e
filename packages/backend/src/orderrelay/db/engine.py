"""Async SQLAlchemy engine for the CRUD handlers.

Learn: The order routes use a pooled AsyncSession per request. The relay's
LISTEN connection does NOT come from this pool: a pooled connection is
handed back between requests, and LISTEN only delivers to the session that
issued it. The supervisor opens its own asyncpg connection instead.

Pooled connections carry application_name "orderrelay-api" in
pg_stat_activity, which sets request traffic apart from the listener.
"""

import asyncio
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from orderrelay.config import settings

API_APPLICATION_NAME = "orderrelay-api"

# Handlers are single-statement transactions; a request that can't get a
# connection within query_timeout fails instead of queueing forever.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=5,
    pool_timeout=settings.query_timeout,
    pool_pre_ping=True,
    connect_args={"server_settings": {"application_name": API_APPLICATION_NAME}},
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, closed on exit."""
    async with async_session_factory() as session:
        yield session


async def ping_database() -> None:
    """Round-trip SELECT 1 through the pool. Raises on failure or timeout."""
    async def _ping() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    await asyncio.wait_for(_ping(), timeout=settings.query_timeout)
