"""API-side engine and session dependency."""

from collections.abc import AsyncGenerator
from functools import cache
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from sos_relay.core.config import settings


def _pool_options() -> dict[str, Any]:
    # DEBUG runs under pytest, where each test has its own event loop
    if settings.DEBUG:
        return {"poolclass": NullPool}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


@cache
def get_engine() -> AsyncEngine:
    """Engine shared by request handlers and the CLI, built on first use."""
    return create_async_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO, **_pool_options())


@cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency: one session per request, closed afterwards."""
    async with get_session_factory()() as session:
        yield session
