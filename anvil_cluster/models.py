"""Typed records for cluster state, fencing preference and workload census."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class NodeState:
    """One cluster member, keyed by host_id (stable across renames)."""

    host_id: str
    node_name: str
    scheduler_internal_id: str = ""
    in_membership: bool = False
    is_daemon_member: bool = False
    is_cluster_joined: bool = False
    maintenance_mode: bool = False

    # Fields compared between passes; host_id is the identity, not a value.
    DIFF_FIELDS = (
        "node_name",
        "scheduler_internal_id",
        "in_membership",
        "is_daemon_member",
        "is_cluster_joined",
        "maintenance_mode",
    )

    def diff(self, other: NodeState) -> dict[str, tuple[Any, Any]]:
        """Return {field: (self_value, other_value)} for every differing field."""
        return {
            name: (getattr(self, name), getattr(other, name))
            for name in self.DIFF_FIELDS
            if getattr(self, name) != getattr(other, name)
        }

    def without_membership(self) -> NodeState:
        """Copy of this node as recorded after it lost cluster membership."""
        return replace(
            self,
            in_membership=False,
            is_daemon_member=False,
            is_cluster_joined=False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class StonithDevice:
    """A fence device from the resource manager's configuration."""

    name: str
    agent: str
    host_list: tuple[str, ...] = ()
    delay: str = ""

    def targets(self, node_name: str) -> bool:
        return node_name in self.host_list


@dataclass(frozen=True)
class ClusterSnapshot:
    """Cluster-level state of one Anvil! pair plus its members."""

    pair_id: str
    cluster_name: str
    stonith_enabled: bool = True
    stonith_max_attempts: int = 10
    raw_config_blob: str = ""
    nodes: dict[str, NodeState] = field(default_factory=dict)
    stonith_devices: tuple[StonithDevice, ...] = field(default=(), compare=False)
    recorded_at: datetime | None = field(default=None, compare=False)

    DIFF_FIELDS = ("cluster_name", "stonith_enabled", "stonith_max_attempts")

    def node(self, host_id: str) -> NodeState | None:
        return self.nodes.get(host_id)

    def diff(self, other: ClusterSnapshot) -> dict[str, tuple[Any, Any]]:
        """Cluster-level field differences, excluding the raw config blob."""
        return {
            name: (getattr(self, name), getattr(other, name))
            for name in self.DIFF_FIELDS
            if getattr(self, name) != getattr(other, name)
        }

    def with_node(self, node: NodeState) -> ClusterSnapshot:
        nodes = dict(self.nodes)
        nodes[node.host_id] = node
        return replace(self, nodes=nodes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pair_id": self.pair_id,
            "cluster_name": self.cluster_name,
            "stonith_enabled": self.stonith_enabled,
            "stonith_max_attempts": self.stonith_max_attempts,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "nodes": {host_id: n.to_dict() for host_id, n in sorted(self.nodes.items())},
        }


@dataclass(frozen=True)
class FenceDelayPreference:
    """Which node of a pair is preferred when both try to fence each other."""

    pair_id: str
    preferred_node_id: str


@dataclass(frozen=True)
class NodeWorkload:
    running_workload_count: int = 0
    any_workload_migrating: bool = False


@dataclass(frozen=True)
class WorkloadCensus:
    """Read-only per-node workload view from the workload registry."""

    pair_id: str
    nodes: dict[str, NodeWorkload] = field(default_factory=dict)

    def for_node(self, host_id: str) -> NodeWorkload:
        return self.nodes.get(host_id, NodeWorkload())

    @property
    def any_migrating(self) -> bool:
        return any(n.any_workload_migrating for n in self.nodes.values())


@dataclass(frozen=True)
class GateKey:
    """Identity of one hysteresis gate: who set it, about what, and which alert."""

    set_by: str
    record_locator: str
    name: str

    def __str__(self) -> str:
        return f"{self.set_by}/{self.record_locator}/{self.name}"
