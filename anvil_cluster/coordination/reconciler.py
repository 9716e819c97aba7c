"""Reconciler - diff the observed cluster against the persisted snapshot.

One call per pass. The caller opens a store transaction around reconcile()
and dispatches the returned alerts only after it commits.

Decision order:
1. Collection failed: if the local node was recorded as a member, record it
   as having left and raise the membership-loss gate. Nothing else runs.
2. Collection succeeded: clear the membership-loss gate (regained notice).
3. No persisted snapshot: bootstrap the pair, one "new cluster" alert.
4. Otherwise: one alert per changed cluster or node field; a raw config
   change with no structured change gets a single unified-diff alert. The
   snapshot is written only if something changed.
"""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from anvil_cluster.config.node_identity import NodeIdentity
from anvil_cluster.coordination.hysteresis import HysteresisGate
from anvil_cluster.db.store import PersistedStateStore
from anvil_cluster.errors import CollectionFailure, CollectionReason
from anvil_cluster.models import ClusterSnapshot, GateKey, NodeState
from anvil_cluster.monitoring.alerts import Alert
from anvil_cluster.monitoring.levels import AlertLevel

logger = logging.getLogger(__name__)

SET_BY = "scan-cluster"

MEMBERSHIP_GATE = "lost-cluster-membership"
NEW_CLUSTER_GATE = "cluster-new"

# Human-readable field names used in alert text
FIELD_LABELS = {
    "cluster_name": "cluster name",
    "stonith_enabled": "stonith enabled",
    "stonith_max_attempts": "stonith max attempts",
    "node_name": "node name",
    "scheduler_internal_id": "scheduler id",
    "in_membership": "membership",
    "is_daemon_member": "daemon membership",
    "is_cluster_joined": "cluster joined",
    "maintenance_mode": "maintenance mode",
}

# Node flags tracked by a per-node gate; the value is the abnormal state.
NODE_FLAG_ABNORMAL = {
    "in_membership": False,
    "is_daemon_member": False,
    "is_cluster_joined": False,
    "maintenance_mode": True,
}

# Config diffs are truncated to keep alert bodies mailable
MAX_DIFF_LINES = 200


class ReconcileStatus(str, Enum):
    NEW_CLUSTER = "new_cluster"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    NOT_MEMBER = "not_member"


@dataclass
class ReconcileResult:
    status: ReconcileStatus
    snapshot: Optional[ClusterSnapshot] = None
    persisted: bool = False
    changed_fields: list[str] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)

    @property
    def is_member(self) -> bool:
        return self.status != ReconcileStatus.NOT_MEMBER


def config_diff(old: str, new: str, max_lines: int = MAX_DIFF_LINES) -> str:
    lines = list(
        difflib.unified_diff(
            old.splitlines(),
            new.splitlines(),
            fromfile="previous",
            tofile="current",
            lineterm="",
        )
    )
    if len(lines) > max_lines:
        omitted = len(lines) - max_lines
        lines = lines[:max_lines] + [f"... ({omitted} more lines)"]
    return "\n".join(lines)


def _field_level(name: str, new: Any) -> AlertLevel:
    if name == "stonith_enabled" and not new:
        return AlertLevel.WARNING
    if name in NODE_FLAG_ABNORMAL and new == NODE_FLAG_ABNORMAL[name]:
        return AlertLevel.WARNING
    return AlertLevel.NOTICE


class Reconciler:
    def __init__(
        self,
        store: PersistedStateStore,
        gate: HysteresisGate,
        identity: NodeIdentity,
        set_by: str = SET_BY,
    ):
        self.store = store
        self.gate = gate
        self.identity = identity
        self.set_by = set_by

    def _key(self, record_locator: str, name: str) -> GateKey:
        return GateKey(self.set_by, record_locator, name)

    def _alert(
        self, level: AlertLevel, message_key: str, record_locator: str, **variables: Any
    ) -> Alert:
        return Alert(
            level=level,
            message_key=message_key,
            variables=variables,
            set_by=self.set_by,
            record_locator=record_locator,
        )

    def _sync_node_gates(self, node: NodeState) -> None:
        for name, abnormal in NODE_FLAG_ABNORMAL.items():
            self.gate.set_state(
                self._key(node.host_id, f"node-{name}"), getattr(node, name) == abnormal
            )

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        observed: Optional[ClusterSnapshot],
        failure: Optional[CollectionFailure] = None,
    ) -> ReconcileResult:
        if observed is None:
            return self._handle_collection_failure(
                failure or CollectionFailure(CollectionReason.NOT_MEMBER, "no snapshot")
            )

        alerts: list[Alert] = []
        if self.gate.clear_alert(self._key(self.identity.host_id, MEMBERSHIP_GATE)):
            logger.info(f"[Reconciler] {self.identity.node_name} regained cluster membership")
            alerts.append(
                self._alert(
                    AlertLevel.NOTICE,
                    "membership_regained",
                    self.identity.host_id,
                    node_name=self.identity.node_name,
                    host_id=self.identity.host_id,
                )
            )

        persisted = self.store.load_current(observed.pair_id)
        if persisted is None:
            result = self._bootstrap(observed)
        else:
            result = self._diff(persisted, observed)
        result.alerts[:0] = alerts
        return result

    # -------------------------------------------------------------------------
    # Collection failure
    # -------------------------------------------------------------------------

    def _handle_collection_failure(self, failure: CollectionFailure) -> ReconcileResult:
        persisted = self.store.load_current(self.identity.pair_id)
        local = persisted.node(self.identity.host_id) if persisted else None
        result = ReconcileResult(status=ReconcileStatus.NOT_MEMBER, snapshot=persisted)

        if local is None:
            logger.debug("[Reconciler] Not a member and never recorded as one")
            return result
        if not (local.in_membership or local.is_daemon_member or local.is_cluster_joined):
            logger.debug("[Reconciler] Membership loss already recorded")
            return result

        updated_node = local.without_membership()
        updated = persisted.with_node(updated_node)
        self.store.save_current_and_history(updated)
        self._sync_node_gates(updated_node)
        result.snapshot = updated
        result.persisted = True
        result.changed_fields = [
            f"{local.host_id}.{name}" for name in local.diff(updated_node)
        ]

        if self.gate.raise_alert(self._key(self.identity.host_id, MEMBERSHIP_GATE)):
            logger.warning(
                f"[Reconciler] {self.identity.node_name} lost cluster membership: {failure}"
            )
            result.alerts.append(
                self._alert(
                    AlertLevel.WARNING,
                    "membership_lost",
                    self.identity.host_id,
                    node_name=self.identity.node_name,
                    host_id=self.identity.host_id,
                    reason=failure.reason.value,
                )
            )
        return result

    # -------------------------------------------------------------------------
    # New pair
    # -------------------------------------------------------------------------

    def _bootstrap(self, observed: ClusterSnapshot) -> ReconcileResult:
        self.store.save_current_and_history(observed)
        for node in observed.nodes.values():
            self._sync_node_gates(node)

        result = ReconcileResult(
            status=ReconcileStatus.NEW_CLUSTER, snapshot=observed, persisted=True
        )
        if self.gate.raise_alert(self._key(observed.pair_id, NEW_CLUSTER_GATE)):
            logger.info(f"[Reconciler] New cluster '{observed.cluster_name}' discovered")
            result.alerts.append(
                self._alert(
                    AlertLevel.NOTICE,
                    "cluster_new",
                    observed.pair_id,
                    cluster_name=observed.cluster_name,
                    pair_id=observed.pair_id,
                    node_count=len(observed.nodes),
                )
            )
        return result

    # -------------------------------------------------------------------------
    # Field-level diff
    # -------------------------------------------------------------------------

    def _diff(self, persisted: ClusterSnapshot, observed: ClusterSnapshot) -> ReconcileResult:
        alerts: list[Alert] = []
        changed: list[str] = []

        for name, (old, new) in persisted.diff(observed).items():
            changed.append(name)
            alerts.append(
                self._alert(
                    _field_level(name, new),
                    "cluster_field_changed",
                    observed.pair_id,
                    field=name,
                    label=FIELD_LABELS[name],
                    old=old,
                    new=new,
                )
            )

        for host_id, node in sorted(observed.nodes.items()):
            previous = persisted.node(host_id)
            if previous is None:
                changed.append(f"{host_id}.added")
                self._sync_node_gates(node)
                alerts.append(
                    self._alert(AlertLevel.NOTICE, "node_added", host_id, **node.to_dict())
                )
                continue
            for name, (old, new) in previous.diff(node).items():
                changed.append(f"{host_id}.{name}")
                if name in NODE_FLAG_ABNORMAL:
                    self.gate.set_state(
                        self._key(host_id, f"node-{name}"), new == NODE_FLAG_ABNORMAL[name]
                    )
                alerts.append(
                    self._alert(
                        _field_level(name, new),
                        "node_field_changed",
                        host_id,
                        node_name=node.node_name,
                        host_id=host_id,
                        field=name,
                        label=FIELD_LABELS[name],
                        old=old,
                        new=new,
                    )
                )

        for host_id in persisted.nodes.keys() - observed.nodes.keys():
            logger.debug(f"[Reconciler] Recorded node {host_id} absent from CIB, keeping row")

        config_changed = persisted.raw_config_blob != observed.raw_config_blob
        if not changed and config_changed:
            changed.append("raw_config_blob")
            alerts.append(
                self._alert(
                    AlertLevel.NOTICE,
                    "cluster_config_changed",
                    observed.pair_id,
                    cluster_name=observed.cluster_name,
                    diff=config_diff(persisted.raw_config_blob, observed.raw_config_blob),
                )
            )

        if not changed:
            return ReconcileResult(status=ReconcileStatus.UNCHANGED, snapshot=persisted)

        self.store.save_current_and_history(observed)
        logger.info(f"[Reconciler] Recorded changes: {', '.join(changed)}")
        return ReconcileResult(
            status=ReconcileStatus.CHANGED,
            snapshot=observed,
            persisted=True,
            changed_fields=changed,
            alerts=alerts,
        )
