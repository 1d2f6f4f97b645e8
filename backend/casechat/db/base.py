"""Database base class and session management.

This module provides:
- SQLAlchemy base class for declarative models
- Engine and session factory for the case chat database
- FastAPI dependency yielding a request-scoped session
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ..core.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


_engine = None
_session_maker = None


def get_engine():
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        settings = get_settings()
        pool_kwargs = {}
        if not settings.is_sqlite:
            pool_kwargs = {
                "pool_size": settings.DB_POOL_SIZE,
                "max_overflow": settings.DB_MAX_OVERFLOW,
                "pool_timeout": settings.DB_POOL_TIMEOUT,
            }
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DEBUG and settings.LOG_LEVEL.upper() == "DEBUG",
            **pool_kwargs,
        )

    return _engine


def get_session_maker() -> async_sessionmaker:
    """Get or create the session maker."""
    global _session_maker

    if _session_maker is None:
        _session_maker = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )

    return _session_maker


@asynccontextmanager
async def get_db_session():
    """Get a database session as an async context manager."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        yield session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_db_session() as session:
        yield session


async def init_database():
    """Create missing tables."""
    from . import catalog, chat  # noqa: F401  (register models on Base.metadata)

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_all():
    """Close all database connections."""
    global _engine, _session_maker

    if _engine:
        await _engine.dispose()
        _engine = None

    _session_maker = None
