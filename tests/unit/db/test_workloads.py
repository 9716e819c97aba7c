"""Tests for the workload census."""

from unittest.mock import MagicMock

import pytest

from anvil_cluster.db.workloads import WorkloadRegistry
from anvil_cluster.errors import CensusFailure, PersistenceFailure
from tests.factories import HOST_A, HOST_B, PAIR_ID


class TestWorkloadRegistry:
    def test_empty(self, store):
        census = WorkloadRegistry(store).census(PAIR_ID)
        assert census.nodes == {}
        assert census.for_node(HOST_A).running_workload_count == 0
        assert census.any_migrating is False

    def test_counts_running_states_per_host(self, store):
        store.upsert_server("s1", "web01", PAIR_ID, HOST_A, "running")
        store.upsert_server("s2", "web02", PAIR_ID, HOST_A, "paused")
        store.upsert_server("s3", "db01", PAIR_ID, HOST_B, "shut off")
        store.upsert_server("s4", "db02", PAIR_ID, None, "shut off")
        census = WorkloadRegistry(store).census(PAIR_ID)
        assert census.for_node(HOST_A).running_workload_count == 2
        assert census.for_node(HOST_B).running_workload_count == 0

    def test_migrating_flag(self, store):
        store.upsert_server("s1", "web01", PAIR_ID, HOST_B, "Migrating")
        census = WorkloadRegistry(store).census(PAIR_ID)
        assert census.for_node(HOST_B).any_workload_migrating is True
        assert census.any_migrating is True

    def test_store_failure_becomes_census_failure(self):
        broken = MagicMock()
        broken.list_servers.side_effect = PersistenceFailure("locked")
        with pytest.raises(CensusFailure):
            WorkloadRegistry(broken).census(PAIR_ID)
