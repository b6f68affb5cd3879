# backend/talentloop/db/session.py
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from talentloop.core.config import settings

# asyncpg rejects sslmode/channel_binding, so use the cleaned URL.
engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL_ASYNC_CLEAN,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=300,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one AsyncSession per request, closed afterwards.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def session_scope(factory: async_sessionmaker | None = None) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for work running outside a request (scheduled jobs, seed script).
    Rolls back on error.
    """
    maker = factory or AsyncSessionLocal
    async with maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
