"""
Database configuration and setup
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from gallery_uploads.config import get_database_url, get_settings


class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = MetaData()


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create a new database engine.

    Args:
        database_url: Explicit URL, defaults to the configured one

    Returns:
        AsyncEngine bound to the async driver
    """
    settings = get_settings()
    url = get_database_url(database_url)

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database_echo, future=True)

    return create_async_engine(
        url,
        echo=settings.database_echo,
        future=True,
        pool_pre_ping=True,  # Validate connections before use
        pool_recycle=3600,   # Recycle connections every hour
        connect_args={
            "server_settings": {
                "application_name": "gallery_uploads",
            }
        }
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory shared by repositories."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True
    )


async def init_database(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    # Register mapped tables on the metadata
    from gallery_uploads import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
