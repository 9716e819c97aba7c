"""AgentDriver - one scan pass, start to exit code.

State machine:

    INIT -> COLLECTING -> RECONCILING -> COORDINATING -> DONE
      |          |             |               |
      v          v             v               v
    FATAL   (failure) -> RECONCILING -> NOT_CLUSTER_MEMBER
                               |
                               v
                             FATAL

Exit codes:
    0  pass completed (or, by default, host not a cluster member)
    1  startup or persistence failure
    2  host not a cluster member, when strict membership exit is enabled

Reconciliation and fence-delay coordination share one store transaction.
Alerts are dispatched only after it commits, so an aborted pass neither
persists nor notifies.

Usage:
    driver = AgentDriver.from_config(config, identity)
    outcome = driver.run_pass()
    sys.exit(outcome.exit_code)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Optional

from anvil_cluster.cluster.collector import StateCollector
from anvil_cluster.cluster.fence_delay_applier import FenceDelayApplier
from anvil_cluster.config.base_config import ScanAgentConfig
from anvil_cluster.config.node_identity import NodeIdentity
from anvil_cluster.coordination.fence_delay import (
    CensusSource,
    CoordinationResult,
    FenceDelayCoordinator,
)
from anvil_cluster.coordination.hysteresis import HysteresisGate
from anvil_cluster.coordination.reconciler import SET_BY, ReconcileResult, Reconciler
from anvil_cluster.db.store import SQLiteStateStore
from anvil_cluster.db.workloads import WorkloadRegistry
from anvil_cluster.errors import PersistenceFailure, StartupFailure
from anvil_cluster.monitoring.alerts import (
    AlertBatch,
    AlertSink,
    CompositeAlertSink,
    DatabaseAlertSink,
    LoggingAlertSink,
    WebhookAlertSink,
)

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    INIT = "init"
    COLLECTING = "collecting"
    RECONCILING = "reconciling"
    COORDINATING = "coordinating"
    DONE = "done"
    NOT_CLUSTER_MEMBER = "not_cluster_member"
    FATAL = "fatal"


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1
    NOT_CLUSTER_MEMBER = 2


@dataclass
class PassOutcome:
    state: AgentState
    exit_code: int
    reconcile: Optional[ReconcileResult] = None
    coordination: Optional[CoordinationResult] = None
    alerts_sent: int = 0
    devices_updated: list[str] = field(default_factory=list)
    error: Optional[str] = None
    transitions: list[AgentState] = field(default_factory=list)


def _is_root() -> bool:
    return os.geteuid() == 0


class AgentDriver:
    """Runs the pass state machine against injected collaborators."""

    def __init__(
        self,
        identity: NodeIdentity,
        store: SQLiteStateStore,
        collector: StateCollector,
        census_source: CensusSource,
        alert_sink: AlertSink,
        *,
        strict_membership_exit: bool = False,
        require_root: bool = True,
        fence_delay_applier: Optional[FenceDelayApplier] = None,
        privilege_check: Callable[[], bool] = _is_root,
        set_by: str = SET_BY,
    ):
        self.identity = identity
        self.store = store
        self.collector = collector
        self.alert_sink = alert_sink
        self.strict_membership_exit = strict_membership_exit
        self.require_root = require_root
        self.fence_delay_applier = fence_delay_applier
        self.privilege_check = privilege_check

        self.gate = HysteresisGate(store)
        self.reconciler = Reconciler(store, self.gate, identity, set_by=set_by)
        self.coordinator = FenceDelayCoordinator(
            store, self.gate, identity, census_source, set_by=set_by
        )

        self.state = AgentState.INIT
        self._transitions: list[AgentState] = []

    @classmethod
    def from_config(cls, config: ScanAgentConfig, identity: NodeIdentity) -> AgentDriver:
        store = SQLiteStateStore(config.db_path)
        sinks: list[AlertSink] = [LoggingAlertSink(), DatabaseAlertSink(store, identity.host_id)]
        if config.webhook_url:
            sinks.append(
                WebhookAlertSink(
                    config.webhook_url,
                    timeout=config.webhook_timeout_seconds,
                    source=identity.node_name,
                )
            )
        applier = None
        if config.apply_fence_delay:
            applier = FenceDelayApplier(
                update_command=config.stonith_update_command,
                delay_seconds=config.fence_delay_seconds,
                timeout=config.collect_timeout_seconds,
            )
        return cls(
            identity=identity,
            store=store,
            collector=StateCollector(config.cib_command, timeout=config.collect_timeout_seconds),
            census_source=WorkloadRegistry(store),
            alert_sink=CompositeAlertSink(sinks),
            strict_membership_exit=config.strict_membership_exit,
            require_root=config.require_root,
            fence_delay_applier=applier,
        )

    # -------------------------------------------------------------------------
    # State handling
    # -------------------------------------------------------------------------

    def _enter(self, state: AgentState) -> None:
        logger.debug(f"[AgentDriver] {self.state.value} -> {state.value}")
        self.state = state
        self._transitions.append(state)

    def _outcome(self, exit_code: int, **kwargs) -> PassOutcome:
        return PassOutcome(
            state=self.state,
            exit_code=int(exit_code),
            transitions=list(self._transitions),
            **kwargs,
        )

    def _fatal(self, error: Exception, **kwargs) -> PassOutcome:
        self._enter(AgentState.FATAL)
        logger.error(f"[AgentDriver] Pass aborted: {error}")
        return self._outcome(ExitCode.FAILURE, error=str(error), **kwargs)

    def _check_startup(self) -> None:
        if self.require_root and not self.privilege_check():
            raise StartupFailure("scan-cluster must run as root")
        try:
            self.store.ping()
        except PersistenceFailure as e:
            raise StartupFailure(f"Database unavailable: {e}") from e

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    def run_pass(self) -> PassOutcome:
        self.state = AgentState.INIT
        self._transitions = [AgentState.INIT]

        try:
            self._check_startup()
        except StartupFailure as e:
            return self._fatal(e)

        self._enter(AgentState.COLLECTING)
        snapshot, failure = self.collector.collect(self.identity)

        self._enter(AgentState.RECONCILING)
        batch = AlertBatch()
        coordination: Optional[CoordinationResult] = None
        try:
            with self.store.transaction():
                reconcile = self.reconciler.reconcile(snapshot, failure)
                batch.extend(reconcile.alerts)
                if snapshot is not None:
                    self._enter(AgentState.COORDINATING)
                    coordination = self.coordinator.coordinate(snapshot)
                    batch.extend(coordination.alerts)
        except PersistenceFailure as e:
            dropped = batch.discard()
            if dropped:
                logger.debug(f"[AgentDriver] Dropped {dropped} uncommitted alert(s)")
            return self._fatal(e)
        sent = batch.flush(self.alert_sink)

        if snapshot is None or coordination is None:
            self._enter(AgentState.NOT_CLUSTER_MEMBER)
            code = (
                ExitCode.NOT_CLUSTER_MEMBER if self.strict_membership_exit else ExitCode.OK
            )
            logger.info(
                f"[AgentDriver] {self.identity.node_name} is not a cluster member "
                f"({failure.reason.value if failure else 'unknown'})"
            )
            return self._outcome(code, reconcile=reconcile, alerts_sent=sent)

        devices: list[str] = []
        if self.fence_delay_applier is not None:
            devices = self.fence_delay_applier.apply(
                snapshot.stonith_devices,
                self.identity.node_name,
                preferred=coordination.is_local_preferred(self.identity.host_id),
            )

        self._enter(AgentState.DONE)
        logger.info(
            f"[AgentDriver] Pass complete: {reconcile.status.value}, "
            f"fence delay {coordination.decision.value}, {sent} alert(s)"
        )
        return self._outcome(
            ExitCode.OK,
            reconcile=reconcile,
            coordination=coordination,
            alerts_sent=sent,
            devices_updated=devices,
        )
