# tests/unit/storage/test_store_factory.py — v1
"""Tests for storage/store_factory.py."""

from __future__ import annotations

import pytest

from qagate.config.settings import Settings
from qagate.core.errors import StorageError
from qagate.storage.memory_store import MemoryEngineStore
from qagate.storage.sqlite_store import SqliteEngineStore
from qagate.storage.store_factory import create_store


class TestCreateStore:
    def test_default_is_memory(self):
        assert isinstance(create_store(), MemoryEngineStore)

    def test_memory_backend(self):
        assert isinstance(create_store(Settings(_env_file=None)), MemoryEngineStore)

    def test_sqlite_backend_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "nested" / "engine.db"
        store = create_store(Settings(_env_file=None, store_backend="sqlite", store_path=path))
        assert isinstance(store, SqliteEngineStore)
        assert path.parent.is_dir()

    @pytest.mark.asyncio
    async def test_sqlite_persists_across_instances(self, tmp_path):
        from qagate.core.models import PipelineRun

        path = tmp_path / "engine.db"
        first = SqliteEngineStore(path)
        await first.create_run(PipelineRun(run_id="r1"))
        await first.close()
        second = SqliteEngineStore(path)
        assert (await second.get_run("r1")).run_id == "r1"
        await second.close()

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises((StorageError, OSError)):
            SqliteEngineStore(blocker / "engine.db")
