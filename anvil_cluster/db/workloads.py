"""Workload registry: per-node census of the pair's servers."""

from __future__ import annotations

import logging

from anvil_cluster.db.store import SQLiteStateStore
from anvil_cluster.errors import CensusFailure, PersistenceFailure
from anvil_cluster.models import NodeWorkload, WorkloadCensus

logger = logging.getLogger(__name__)

RUNNING_STATES = frozenset({"running", "migrating", "paused", "in shutdown"})
MIGRATING_STATES = frozenset({"migrating"})


class WorkloadRegistry:
    """Builds a WorkloadCensus from the servers table.

    A server counts against the host recorded in server_host; servers that are
    off have no host and are ignored.
    """

    def __init__(self, store: SQLiteStateStore):
        self._store = store

    def census(self, pair_id: str) -> WorkloadCensus:
        try:
            servers = self._store.list_servers(pair_id)
        except PersistenceFailure as e:
            raise CensusFailure(f"Cannot read servers for pair {pair_id}: {e}") from e

        counts: dict[str, int] = {}
        migrating: dict[str, bool] = {}
        for server in servers:
            host_id = server["host_id"]
            state = (server["server_state"] or "").strip().lower()
            if not host_id or state not in RUNNING_STATES:
                continue
            counts[host_id] = counts.get(host_id, 0) + 1
            if state in MIGRATING_STATES:
                migrating[host_id] = True

        nodes = {
            host_id: NodeWorkload(
                running_workload_count=count,
                any_workload_migrating=migrating.get(host_id, False),
            )
            for host_id, count in counts.items()
        }
        logger.debug(f"[WorkloadRegistry] Census for {pair_id}: {nodes}")
        return WorkloadCensus(pair_id=pair_id, nodes=nodes)
