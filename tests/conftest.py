# tests/conftest.py — v2
"""Shared test fixtures for all unit tests.

Provides settings without .env, an in-memory store, fake generators and
loaders, and a recording no-op sleep. No external dependencies; every
model call is mocked (see tests/doubles.py).
"""

from __future__ import annotations

import pytest

from doubles import FakeGenerator, FakeLoader
from qagate.config.settings import Settings
from qagate.storage.memory_store import MemoryEngineStore


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, retry_base_delay_s=0.0, retry_max_delay_s=0.0)


@pytest.fixture
def store() -> MemoryEngineStore:
    return MemoryEngineStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def loader() -> FakeLoader:
    return FakeLoader()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def no_sleep(sleeps):
    """Sleep replacement that records requested delays and returns at once."""
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)
    return _sleep
