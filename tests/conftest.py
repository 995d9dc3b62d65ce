"""
Shared fixtures.

Every test gets its own temporary directory and SQLite file, so tests
never share state.
"""

import tempfile

import pytest

from udb.udb_core.api.crud import UniversalApi
from udb.udb_core.config import ServerConfig, StorageConfig
from udb.udb_core.store.universal_store import UniversalStore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def config(data_dir):
    """Default configuration pointing at the temporary directory."""
    return ServerConfig(storage=StorageConfig(data_dir=data_dir, wal_mode=False))


@pytest.fixture
def store(config):
    """Initialized store."""
    store = UniversalStore.from_config(config.storage)
    store.initialize()
    return store


@pytest.fixture
def api(store, config):
    """UniversalApi over the temporary store."""
    return UniversalApi(store, config)
