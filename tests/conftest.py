"""Common test fixtures for canvasnote-core."""

import tempfile
from pathlib import Path

import pytest

from canvasnote.config import config
from canvasnote.models.db_models import init_db
from canvasnote.observability import metrics
from canvasnote.services.indexing_coordinator import IndexingCoordinator
from canvasnote.services.search_service import SearchService
from canvasnote.storage.asset_store import AssetStore
from canvasnote.storage.search_index import SearchIndex
from tests.fakes import FakeClock


@pytest.fixture
def temp_dirs():
    """Create temporary directories for application data and database."""
    with tempfile.TemporaryDirectory() as data_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(data_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    data_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "data_dir", data_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_search.db")
    yield config


@pytest.fixture
def engine(test_config):
    """SQLite engine with the index table created."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def search_index(engine):
    """Create an empty search index backed by a real database file."""
    yield SearchIndex(engine)


@pytest.fixture
def coordinator(search_index):
    yield IndexingCoordinator(search_index)


@pytest.fixture
def search_service(search_index):
    yield SearchService(search_index)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def asset_store(test_config):
    """Asset store rooted at the temporary data directory."""
    store = AssetStore(test_config.data_dir)
    store.ensure_layout()
    yield store


@pytest.fixture
def fresh_metrics():
    """Reset the global metrics collector around a test."""
    metrics.reset()
    yield metrics
    metrics.reset()

