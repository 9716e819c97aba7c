"""Agent configuration and local identity resolution."""

from anvil_cluster.config.base_config import BaseAgentConfig, ScanAgentConfig
from anvil_cluster.config.node_identity import (
    NodeIdentity,
    find_config_path,
    load_config_file,
)

__all__ = [
    "BaseAgentConfig",
    "ScanAgentConfig",
    "NodeIdentity",
    "find_config_path",
    "load_config_file",
]
