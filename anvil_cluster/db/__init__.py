"""Persistence layer: current rows plus append-only history in SQLite.

Usage:
    from anvil_cluster.db import SQLiteStateStore, WorkloadRegistry

    store = SQLiteStateStore("/var/lib/anvil/scan_cluster.db")
    with store.transaction():
        store.save_current_and_history(snapshot)
        store.save_gate(key, True)
"""

from anvil_cluster.db.store import PersistedStateStore, SQLiteStateStore
from anvil_cluster.db.workloads import WorkloadRegistry

__all__ = [
    "PersistedStateStore",
    "SQLiteStateStore",
    "WorkloadRegistry",
]
