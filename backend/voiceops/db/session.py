"""Database session and engine setup."""

from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from voiceops.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    """Pool options for the configured backend. SQLite gets the driver defaults."""
    if settings.database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=settings.debug, **engine_options(settings))


engine = build_engine(get_settings())

# Services read row attributes after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency to provide an async DB session."""
    async with AsyncSessionLocal() as session:
        yield session
