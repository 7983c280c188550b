"""Async engine and sessions for the church teams database."""
from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession, async_sessionmaker,
                                    create_async_engine)

from church_teams.core.config import get_settings

# Concurrent token refreshes write the same church row; wait for the lock instead of failing.
SQLITE_BUSY_TIMEOUT = 30

settings = get_settings()


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT}}
    return {"pool_pre_ping": True}


engine: AsyncEngine = create_async_engine(
    settings.async_database_url, future=True, **_engine_options(settings.async_database_url)
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session bound to the church teams database."""
    async with AsyncSessionLocal() as session:
        yield session
