"""Async SQLAlchemy engine and per-request sessions.

Learn: One engine per process; production points it at PostgreSQL via
asyncpg, tests swap in their own in-memory SQLite engine through the
get_db override. Services commit explicitly. get_db only guarantees that
a request which fails halfway leaves no open transaction behind.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from subtracker.config import settings


def _engine_kwargs(url: str) -> dict:
    """Pool options for server databases; SQLite's pools reject them."""
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 5, "max_overflow": 15, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_kwargs(settings.database_url),
)

# expire_on_commit=False: response models read ORM attributes after commit.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: a session per request, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
