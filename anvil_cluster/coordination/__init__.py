"""Per-pass coordination: reconciliation, alert gating and fence-delay preference."""

from anvil_cluster.coordination.agent import AgentDriver, AgentState, ExitCode, PassOutcome
from anvil_cluster.coordination.fence_delay import (
    CoordinationResult,
    FenceDecision,
    FenceDelayCoordinator,
)
from anvil_cluster.coordination.hysteresis import HysteresisGate
from anvil_cluster.coordination.pass_guard import PassGuard
from anvil_cluster.coordination.reconciler import ReconcileResult, ReconcileStatus, Reconciler

__all__ = [
    "AgentDriver",
    "AgentState",
    "CoordinationResult",
    "ExitCode",
    "FenceDecision",
    "FenceDelayCoordinator",
    "HysteresisGate",
    "PassGuard",
    "PassOutcome",
    "ReconcileResult",
    "ReconcileStatus",
    "Reconciler",
]
