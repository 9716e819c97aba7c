"""Local node identity for the scan agent.

Single source of truth for "which host am I, which pair am I in, and who is
my peer". Read once at startup from the YAML config file.

Usage:
    from anvil_cluster.config.node_identity import NodeIdentity, load_config_file

    config = load_config_file()
    identity = NodeIdentity.resolve(config)
    print(f"This node is: {identity.host_id} in pair {identity.pair_id}")

Priority Order:
    1. ANVIL_HOST_ID environment variable (explicit override)
    2. Full hostname match against a host's node_name
    3. Short hostname match against a host's node_name

Config file layout:
    hosts:
      4c4c4544-0043-5a10-804b-b4c04f4d4e31:
        node_name: an-a01n01.alteeve.com
        pair_id: 1c8d6f8a-2d1e-4b3a-9b55-0d7c1c3c9e21
        role: node
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from anvil_cluster.errors import IdentityError, StartupFailure

__all__ = [
    "NodeIdentity",
    "find_config_path",
    "load_config_file",
    "short_name",
]

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ANVIL_SCAN_CONFIG_PATH"
HOST_ID_ENV_VAR = "ANVIL_HOST_ID"
DEFAULT_CONFIG_PATHS = (
    Path("/etc/anvil/anvil_cluster.yaml"),
    Path.cwd() / "config" / "anvil_cluster.yaml",
)

# Hosts with this role take part in fencing; DR hosts do not.
NODE_ROLE = "node"


def short_name(name: str) -> str:
    return name.split(".", 1)[0]


@dataclass
class NodeIdentity:
    """Canonical identity of the local host and its peer.

    Attributes:
        host_id: Stable host identifier (config key)
        node_name: Name the resource manager knows this node by
        pair_id: The Anvil! pair this host belongs to
        peer_host_id: The other node of the pair, if configured
        peer_node_name: The peer's resource-manager node name
        node_names: resource-manager node name -> host_id for the pair
        hostname: System hostname from socket.gethostname()
        resolution_method: How the identity was resolved
    """

    host_id: str
    node_name: str
    pair_id: str
    peer_host_id: str | None = None
    peer_node_name: str | None = None
    node_names: dict[str, str] = field(default_factory=dict)
    hostname: str = field(default_factory=socket.gethostname)
    resolution_method: str = "unknown"

    @classmethod
    def resolve(cls, config: dict[str, Any]) -> NodeIdentity:
        """Resolve identity with fail-fast validation.

        Raises:
            IdentityError: If the local host cannot be found in the config
        """
        hosts = config.get("hosts") or {}
        if not isinstance(hosts, dict) or not hosts:
            raise IdentityError("Config has no 'hosts' section")

        hostname = socket.gethostname()

        env_id = os.environ.get(HOST_ID_ENV_VAR)
        if env_id:
            if env_id in hosts:
                return cls._from_config(env_id, hosts, hostname, "env_var")
            logger.warning(
                f"{HOST_ID_ENV_VAR}={env_id} not in config, trying hostname resolution"
            )

        for host_id, host_cfg in hosts.items():
            if isinstance(host_cfg, dict) and host_cfg.get("node_name") == hostname:
                return cls._from_config(host_id, hosts, hostname, "hostname")

        for host_id, host_cfg in hosts.items():
            if isinstance(host_cfg, dict) and host_cfg.get("node_name"):
                if short_name(host_cfg["node_name"]) == short_name(hostname):
                    return cls._from_config(host_id, hosts, hostname, "short_hostname")

        known = sorted(
            h.get("node_name", "?") for h in hosts.values() if isinstance(h, dict)
        )
        raise IdentityError(
            f"Cannot resolve node identity.\n"
            f"Hostname: {hostname}\n"
            f"Known nodes: {known[:10]}{'...' if len(known) > 10 else ''}\n\n"
            f"Fix: Set {HOST_ID_ENV_VAR} to one of the configured host ids,\n"
            f"or add this host to the 'hosts' section of the config file"
        )

    @classmethod
    def _from_config(
        cls, host_id: str, hosts: dict[str, Any], hostname: str, method: str
    ) -> NodeIdentity:
        host_cfg = hosts[host_id] if isinstance(hosts[host_id], dict) else {}
        pair_id = host_cfg.get("pair_id")
        node_name = host_cfg.get("node_name")
        if not pair_id or not node_name:
            raise IdentityError(f"Host {host_id} needs both 'node_name' and 'pair_id'")

        node_names: dict[str, str] = {}
        peer_host_id = None
        peer_node_name = None
        for other_id, other_cfg in hosts.items():
            if not isinstance(other_cfg, dict) or other_cfg.get("pair_id") != pair_id:
                continue
            if other_cfg.get("role", NODE_ROLE) != NODE_ROLE:
                continue
            other_name = other_cfg.get("node_name")
            if not other_name:
                logger.warning(f"Host {other_id} in pair {pair_id} has no node_name")
                continue
            node_names[other_name] = other_id
            if other_id != host_id:
                if peer_host_id is not None:
                    raise IdentityError(
                        f"Pair {pair_id} has more than two nodes: "
                        f"{peer_host_id}, {other_id}, {host_id}"
                    )
                peer_host_id = other_id
                peer_node_name = other_name

        if peer_host_id is None:
            logger.warning(f"No peer configured for {host_id} in pair {pair_id}")

        return cls(
            host_id=host_id,
            node_name=node_name,
            pair_id=str(pair_id),
            peer_host_id=peer_host_id,
            peer_node_name=peer_node_name,
            node_names=node_names,
            hostname=hostname,
            resolution_method=method,
        )

    def host_id_for(self, node_name: str) -> str | None:
        """Map a resource-manager node name (full or short) to a host_id."""
        if node_name in self.node_names:
            return self.node_names[node_name]
        wanted = short_name(node_name)
        for name, host_id in self.node_names.items():
            if short_name(name) == wanted:
                return host_id
        return None


def find_config_path(explicit: Path | str | None = None) -> Path | None:
    """Locate the config file: explicit path, env var, then default locations."""
    if explicit:
        return Path(explicit)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path
    return None


def load_config_file(path: Path | str | None = None) -> dict[str, Any]:
    """Load the YAML config file.

    Raises:
        StartupFailure: If no config file is found or it cannot be parsed
    """
    config_path = find_config_path(path)
    if config_path is None:
        raise StartupFailure(
            f"No config file found (looked in {[str(p) for p in DEFAULT_CONFIG_PATHS]}; "
            f"set {CONFIG_ENV_VAR} or pass --config)"
        )
    try:
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise StartupFailure(f"Failed to load config from {config_path}: {e}") from e
    if not isinstance(loaded, dict):
        raise StartupFailure(f"Config file {config_path} must contain a mapping")
    logger.debug(f"Loaded config from {config_path}")
    return loaded
