"""Shared pytest fixtures for scan agent tests.

Provides a temporary SQLite store, CIB documents and node identities for
both nodes of a test pair.
"""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from anvil_cluster.coordination.hysteresis import HysteresisGate
from anvil_cluster.db.store import SQLiteStateStore
from tests.factories import build_cib, make_identity

# =============================================================================
# TEMPORARY DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def temp_db_path():
    """Provide a temporary SQLite database path, cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "scan_cluster.db"


@pytest.fixture
def store(temp_db_path):
    """A fresh SQLiteStateStore with the schema created on first use."""
    return SQLiteStateStore(temp_db_path)


@pytest.fixture
def gate(store):
    return HysteresisGate(store)


# =============================================================================
# IDENTITY FIXTURES
# =============================================================================


@pytest.fixture
def identity():
    """Identity of node A (an-a01n01) with node B as its peer."""
    return make_identity("a")


@pytest.fixture
def peer_identity():
    """Identity of node B (an-a01n02) with node A as its peer."""
    return make_identity("b")


# =============================================================================
# CIB FIXTURES
# =============================================================================


@pytest.fixture
def cib_xml():
    """A healthy two-node CIB: both nodes online and joined."""
    return build_cib()


@pytest.fixture
def mock_collector():
    """Collector stand-in; set .collect.return_value per test."""
    collector = MagicMock()
    collector.collect.return_value = (None, None)
    return collector


@pytest.fixture
def alert_sink():
    sink = MagicMock()
    sink.delivered = []
    sink.notify.side_effect = sink.delivered.append
    return sink
