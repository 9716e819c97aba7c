"""HysteresisGate - persisted, edge-triggered alert deduplication.

A gate is keyed by (set_by, record_locator, name). raise_alert() reports a
change only when the gate was inactive; clear_alert() only when it was active.
State lives in the persistence store, so two invocations separated by a
process restart see the same gate.

Usage:
    gate = HysteresisGate(store)
    key = GateKey("scan-cluster", host_id, "lost-cluster-membership")
    if gate.raise_alert(key):
        batch.add(Alert(AlertLevel.WARNING, "membership_lost", {...}))
"""

from __future__ import annotations

import logging

from anvil_cluster.db.store import PersistedStateStore
from anvil_cluster.models import GateKey

logger = logging.getLogger(__name__)


class HysteresisGate:
    def __init__(self, store: PersistedStateStore):
        self._store = store

    def is_active(self, key: GateKey) -> bool:
        return self._store.load_gate(key)

    def raise_alert(self, key: GateKey) -> bool:
        """Mark the gate active; True if it was not already (caller notifies)."""
        if self._store.load_gate(key):
            return False
        self._store.save_gate(key, True)
        logger.debug(f"[HysteresisGate] Raised {key}")
        return True

    def clear_alert(self, key: GateKey) -> bool:
        """Mark the gate inactive; True if it was active (caller notifies)."""
        if not self._store.load_gate(key):
            return False
        self._store.save_gate(key, False)
        logger.debug(f"[HysteresisGate] Cleared {key}")
        return True

    def set_state(self, key: GateKey, active: bool) -> bool:
        """Raise or clear depending on active; True if the gate changed."""
        return self.raise_alert(key) if active else self.clear_alert(key)
