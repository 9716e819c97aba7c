"""Resource-manager access: CIB parsing, state collection, fence delay."""

from anvil_cluster.cluster.cib import parse_cib, parse_pacemaker_bool
from anvil_cluster.cluster.collector import StateCollector
from anvil_cluster.cluster.fence_delay_applier import FenceDelayApplier

__all__ = [
    "FenceDelayApplier",
    "StateCollector",
    "parse_cib",
    "parse_pacemaker_bool",
]
