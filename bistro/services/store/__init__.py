"""
Store Package

Persistence contract plus its SQL and in-memory implementations.

Usage:
    from bistro.services.store import get_store

    @app.get("/api/menu")
    async def list_menu(store: BaseStore = Depends(get_store)):
        return await store.list_menu_items(available_only=True)

Tests override ``get_store`` / ``get_settings_store`` with MemoryStore
instances via ``app.dependency_overrides``.

Author: Bistro Engineering
Version: 1.0.0
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bistro.database import get_db
from bistro.services.store.base import (
    BaseStore,
    BaseSettingsStore,
    NewOrder,
    NewOrderItem,
    StoreError,
)
from bistro.services.store.memory import MemoryStore, MemorySettingsStore
from bistro.services.store.sql import SqlStore, SqlSettingsStore


def get_store(db: AsyncSession = Depends(get_db)) -> BaseStore:
    """FastAPI dependency: request-scoped SQL store."""
    return SqlStore(db)


def get_settings_store(db: AsyncSession = Depends(get_db)) -> BaseSettingsStore:
    """FastAPI dependency: request-scoped settings store."""
    return SqlSettingsStore(db)


__all__ = [
    "get_store",
    "get_settings_store",
    "BaseStore",
    "BaseSettingsStore",
    "NewOrder",
    "NewOrderItem",
    "StoreError",
    "MemoryStore",
    "MemorySettingsStore",
    "SqlStore",
    "SqlSettingsStore",
]
