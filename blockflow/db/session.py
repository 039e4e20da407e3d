"""Database session management.

This module provides the async database engine and session management
using SQLAlchemy 2.0 async patterns.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from blockflow.core.config import settings
from blockflow.core.logging import get_logger

logger = get_logger(__name__)

# SQLite (the default) does not take pool sizing arguments
engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DATABASE_ECHO,
)

# Create async session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency for FastAPI.

    Yields an async session and ensures proper cleanup after request.
    Commits on success, rolls back on exception.

    Yields:
        AsyncSession: The database session for the request.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_models() -> None:
    """Create all tables that do not exist yet."""
    # Registers every model on Base.metadata
    import blockflow.models  # noqa: F401
    from blockflow.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Database tables ready",
        extra={"context": {"tables": sorted(Base.metadata.tables)}},
    )


__all__ = [
    "async_session",
    "engine",
    "get_db",
    "init_models",
]
