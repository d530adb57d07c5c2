"""Database module with async SQLAlchemy engine and session management."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .settings import Settings, get_settings

# SQLAlchemy base for models
Base = declarative_base()


def create_engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    """Create the async engine; pooling options apply to server databases only."""
    settings = settings or get_settings()
    kwargs = {"echo": settings.db_echo}
    if not settings.db_url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20)
    return create_async_engine(settings.db_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Async session maker bound to `engine`."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_all(engine: AsyncEngine):
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

