"""
Database Connection Module

Async SQLAlchemy engine for the orders, menu and settings tables.
Request handlers receive a session through ``get_db`` and wrap it in a
``SqlStore``; nothing outside ``bistro.services.store`` issues SQL except the
health check.
"""

import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from bistro.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=5,
    max_overflow=10,
    # Drop connections the server closed while idle
    pool_pre_ping=True,
)

# Rows stay readable after commit so stores can return them
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency: one session per request.

    Stores commit or roll back their own units of work; the session is
    closed here whatever happened.
    """
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """Create missing tables. Called once from the application lifespan."""
    # Tables register on Base.metadata when the models module is imported
    import bistro.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({len(Base.metadata.tables)} tables)")
