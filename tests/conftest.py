"""
Pytest fixtures for Omni Memory tests.
"""

from pathlib import Path

import pytest

from omni_memory.memory import MemoryStore
from omni_memory.paths import IN_MEMORY, StoragePaths


@pytest.fixture
def store():
    """Volatile store, isolated per test."""
    with MemoryStore(paths=StoragePaths(data_dir=Path("."), db_path=IN_MEMORY)) as memory_store:
        yield memory_store


@pytest.fixture
def file_store(tmp_path):
    """Store backed by a database file under tmp_path."""
    paths = StoragePaths(data_dir=tmp_path, db_path=str(tmp_path / "data" / "omni-memory.db"))
    with MemoryStore(paths=paths) as memory_store:
        yield memory_store


@pytest.fixture
def clean_env(monkeypatch):
    """Remove storage overrides from the environment."""
    monkeypatch.delenv("OMNI_MEMORY_DIR", raising=False)
    monkeypatch.delenv("OMNI_MEMORY_DB", raising=False)
    return monkeypatch
