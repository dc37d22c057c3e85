"""
Database layer — async SQLAlchemy 2.0 access to the user directory.

Provides:
    • Lazily created async engine and session factory
    • Base model for ORM entities
    • Lifecycle helpers for app startup / shutdown

The directory itself is owned by another service; this process only
reads it. init_db() exists for dev/test databases.

Usage:
    from crowdalert.core.database import get_session_factory

    async with get_session_factory()() as session:
        ...
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from crowdalert.core.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def get_engine() -> AsyncEngine:
    """Create the engine on first use."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            echo=settings.DATABASE_ECHO,
        )
    return _engine


# ── Session Factory ──
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


# ── Lifecycle ──
async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables (dev/test only)."""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db() -> None:
    """Dispose engine connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connections closed")
