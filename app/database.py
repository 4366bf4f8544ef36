"""Async engine and per-request sessions.

Each request runs in one transaction. The import executor and enrollment
gateway open savepoints inside it, one per row written.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async database engine."""
    url = database_url or settings.async_database_url

    engine_kwargs = {
        "echo": settings.app_debug,
        "future": True,
    }

    # Use NullPool in development and for SQLite for easier debugging
    if settings.is_development or url.startswith("sqlite"):
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_size"] = settings.database_pool_size
        engine_kwargs["max_overflow"] = settings.database_max_overflow
        engine_kwargs["pool_pre_ping"] = True

    return create_async_engine(url, **engine_kwargs)


@lru_cache
def get_engine() -> AsyncEngine:
    """Get the process-wide engine, created on first use."""
    return create_engine()


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory bound to the process-wide engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield the request session, committing on success and rolling back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def close_db() -> None:
    """Close database connections."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
