# src/storage/store_factory.py — v1
"""Factory for engine store instantiation."""

from __future__ import annotations

from qagate.config.settings import Settings
from qagate.storage.base_store import BaseEngineStore


def create_store(settings: Settings | None = None) -> BaseEngineStore:
    """Instantiate the configured store backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
    """
    backend = "memory" if settings is None else settings.store_backend

    if backend == "memory":
        from qagate.storage.memory_store import MemoryEngineStore
        return MemoryEngineStore()

    if backend == "sqlite":
        from qagate.storage.sqlite_store import SqliteEngineStore
        assert settings is not None
        return SqliteEngineStore(db_path=settings.store_path)

    raise ValueError(f"Unsupported store backend: {backend!r}")
