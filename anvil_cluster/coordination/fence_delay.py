"""FenceDelayCoordinator - self-assertion of fence-delay preference.

Each node of a pair runs this independently every pass and only ever writes
its own host_id as the preferred node. If both nodes try to fence each other
at the same time, the preferred node's devices wait, so the node hosting the
workloads survives.

Decision table (evaluated in order, first match wins):

    any workload migrating              -> no action
    peer not cluster-joined             -> assert self
    local loaded, peer idle             -> assert self
    anything else                       -> no action

Asserting when already preferred is a no-op, so repeated passes converge
without rewriting the row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from anvil_cluster.config.node_identity import NodeIdentity
from anvil_cluster.coordination.hysteresis import HysteresisGate
from anvil_cluster.db.store import PersistedStateStore
from anvil_cluster.errors import CensusFailure
from anvil_cluster.models import (
    ClusterSnapshot,
    FenceDelayPreference,
    GateKey,
    WorkloadCensus,
)
from anvil_cluster.monitoring.alerts import Alert
from anvil_cluster.monitoring.levels import AlertLevel

logger = logging.getLogger(__name__)

PREFERRED_GATE = "fence-delay-preferred"


class CensusSource(Protocol):
    def census(self, pair_id: str) -> WorkloadCensus: ...


class FenceDecision(str, Enum):
    CENSUS_UNAVAILABLE = "census_unavailable"
    MIGRATION_IN_PROGRESS = "migration_in_progress"
    ASSERTED_PEER_NOT_JOINED = "asserted_peer_not_joined"
    ASSERTED_LOCAL_LOAD = "asserted_local_load"
    ALREADY_PREFERRED = "already_preferred"
    NOTHING_RUNNING = "nothing_running"
    BOTH_LOADED = "both_loaded"
    PEER_LOADED = "peer_loaded"

    @property
    def asserted(self) -> bool:
        return self in (
            FenceDecision.ASSERTED_PEER_NOT_JOINED,
            FenceDecision.ASSERTED_LOCAL_LOAD,
        )


# Reason text used in the "now preferred" alert
_ASSERT_REASONS = {
    FenceDecision.ASSERTED_PEER_NOT_JOINED: "peer is not in the cluster",
    FenceDecision.ASSERTED_LOCAL_LOAD: "only this node is hosting servers",
}


@dataclass
class CoordinationResult:
    decision: FenceDecision
    preference: Optional[FenceDelayPreference] = None
    alerts: list[Alert] = field(default_factory=list)

    @property
    def wrote_preference(self) -> bool:
        return self.decision.asserted

    def is_local_preferred(self, host_id: str) -> bool:
        return self.preference is not None and self.preference.preferred_node_id == host_id


class FenceDelayCoordinator:
    def __init__(
        self,
        store: PersistedStateStore,
        gate: HysteresisGate,
        identity: NodeIdentity,
        census_source: CensusSource,
        set_by: str = "scan-cluster",
    ):
        self.store = store
        self.gate = gate
        self.identity = identity
        self.census_source = census_source
        self.set_by = set_by

    @property
    def _gate_key(self) -> GateKey:
        return GateKey(self.set_by, self.identity.host_id, PREFERRED_GATE)

    def coordinate(self, snapshot: ClusterSnapshot) -> CoordinationResult:
        """Run the decision table once for the local node."""
        host_id = self.identity.host_id
        current = self.store.load_fence_preference(snapshot.pair_id)
        result = CoordinationResult(decision=FenceDecision.NOTHING_RUNNING, preference=current)

        if current is not None and current.preferred_node_id != host_id:
            if self.gate.clear_alert(self._gate_key):
                logger.info(
                    f"[FenceDelay] Preference moved to {current.preferred_node_id}"
                )
                result.alerts.append(
                    self._alert(
                        AlertLevel.NOTICE,
                        "fence_delay_released",
                        preferred_node_id=current.preferred_node_id,
                    )
                )

        try:
            census = self.census_source.census(snapshot.pair_id)
        except CensusFailure as e:
            logger.warning(f"[FenceDelay] Workload census unavailable, skipping: {e}")
            result.decision = FenceDecision.CENSUS_UNAVAILABLE
            return result

        result.decision = self._decide(snapshot, census, current)
        if result.decision.asserted:
            result.preference = self._assert_self(snapshot.pair_id, result)
        logger.debug(f"[FenceDelay] Decision for {self.identity.node_name}: {result.decision.value}")
        return result

    def _decide(
        self,
        snapshot: ClusterSnapshot,
        census: WorkloadCensus,
        current: Optional[FenceDelayPreference],
    ) -> FenceDecision:
        host_id = self.identity.host_id
        already = current is not None and current.preferred_node_id == host_id

        # A live migration has both nodes briefly hosting the same server
        if census.any_migrating:
            return FenceDecision.MIGRATION_IN_PROGRESS

        peer_id = self.identity.peer_host_id
        peer = snapshot.node(peer_id) if peer_id else None
        if peer is None or not peer.is_cluster_joined:
            return FenceDecision.ALREADY_PREFERRED if already else FenceDecision.ASSERTED_PEER_NOT_JOINED

        local_count = census.for_node(host_id).running_workload_count
        peer_count = census.for_node(peer_id).running_workload_count
        if local_count and peer_count:
            return FenceDecision.BOTH_LOADED
        if not local_count and not peer_count:
            return FenceDecision.NOTHING_RUNNING
        if not local_count:
            return FenceDecision.PEER_LOADED
        return FenceDecision.ALREADY_PREFERRED if already else FenceDecision.ASSERTED_LOCAL_LOAD

    def _assert_self(self, pair_id: str, result: CoordinationResult) -> FenceDelayPreference:
        preference = FenceDelayPreference(pair_id=pair_id, preferred_node_id=self.identity.host_id)
        self.store.save_fence_preference(preference)
        logger.info(
            f"[FenceDelay] {self.identity.node_name} asserted fence-delay preference "
            f"({result.decision.value})"
        )
        if self.gate.raise_alert(self._gate_key):
            result.alerts.append(
                self._alert(
                    AlertLevel.NOTICE,
                    "fence_delay_preferred",
                    reason=_ASSERT_REASONS[result.decision],
                )
            )
        return preference

    def _alert(self, level: AlertLevel, message_key: str, **variables) -> Alert:
        variables.setdefault("node_name", self.identity.node_name)
        variables.setdefault("host_id", self.identity.host_id)
        return Alert(
            level=level,
            message_key=message_key,
            variables=variables,
            set_by=self.set_by,
            record_locator=self.identity.host_id,
        )
