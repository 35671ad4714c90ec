"""Rental Token Service - Async database engine."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from src.core.config import get_settings


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    """Pool options for the configured backend.

    SQLite (local development and tests) does not take pool sizing arguments.
    """
    if url.startswith("sqlite"):
        return {"echo": echo, "connect_args": {"timeout": 30}}
    # Note: pool_pre_ping helps detect stale connections
    return {"echo": echo, "pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


# Create async engine
engine = create_async_engine(
    get_settings().database_url,
    **_engine_options(get_settings().database_url, get_settings().debug),
)

# Async session factory
async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Initialize database - create all tables.

    Call this on application startup.
    """
    import src.models  # noqa: F401  (register tables on the metadata)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close database connections.

    Call this on application shutdown.
    """
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(User))
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Usage in routes:
        @router.get("/balance")
        async def get_balance(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
