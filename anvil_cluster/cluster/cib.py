"""Cluster Information Base (CIB) parser.

Turns the XML document returned by ``pcs cluster cib`` into a
ClusterSnapshot. Only the ``<configuration>`` section is kept as the raw
config blob; the root element's epoch/num_updates counters and the
``<status>`` section change on every cluster event and are not configuration.

Key concepts:
- crm_config nvpairs carry cluster-wide properties (cluster-name,
  stonith-enabled, stonith-max-attempts, maintenance-mode)
- <nodes><node id uname> lists configured members; <status><node_state>
  carries their live membership (in_ccm, crmd, join)
- Pacemaker writes booleans as true/false, yes/no, on/off, 1/0; since
  2.1.7 in_ccm and crmd may also be timestamps (non-zero == true)
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Callable, Optional

from anvil_cluster.errors import InconsistentPeerData
from anvil_cluster.models import ClusterSnapshot, NodeState, StonithDevice

logger = logging.getLogger(__name__)

PACEMAKER_INFINITY = 1000000
DEFAULT_STONITH_MAX_ATTEMPTS = 10

_TRUE = frozenset({"true", "yes", "on", "y", "1"})
_FALSE = frozenset({"false", "no", "off", "n", "0", ""})


def parse_pacemaker_bool(value: Optional[str], default: bool = False) -> bool:
    """Convert a Pacemaker boolean (or timestamp-as-boolean) to bool."""
    if value is None:
        return default
    text = value.strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    if text.isdigit():
        return int(text) > 0
    return default


def parse_pacemaker_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    text = value.strip().upper()
    if text in ("INFINITY", "+INFINITY"):
        return PACEMAKER_INFINITY
    if text == "-INFINITY":
        return -PACEMAKER_INFINITY
    return int(text)


def _nvpairs(element: ET.Element) -> dict[str, str]:
    """All nvpairs below element, later sets overriding earlier ones."""
    return {
        nv.get("name", ""): nv.get("value", "")
        for nv in element.iter("nvpair")
        if nv.get("name")
    }


def _split_hosts(value: str) -> tuple[str, ...]:
    return tuple(h for h in re.split(r"[\s,;]+", value.strip()) if h)


def _parse_stonith_devices(configuration: ET.Element) -> tuple[StonithDevice, ...]:
    devices = []
    for primitive in configuration.iter("primitive"):
        if primitive.get("class") != "stonith":
            continue
        attrs = _nvpairs(primitive)
        hosts = _split_hosts(attrs.get("pcmk_host_list", ""))
        if not hosts and attrs.get("pcmk_host_map"):
            # "node1:port1;node2:port2"
            hosts = tuple(
                entry.split(":", 1)[0]
                for entry in _split_hosts(attrs["pcmk_host_map"])
            )
        devices.append(
            StonithDevice(
                name=primitive.get("id", ""),
                agent=primitive.get("type", ""),
                host_list=hosts,
                delay=attrs.get("pcmk_delay_base", attrs.get("delay", "")),
            )
        )
    return tuple(devices)


def _parse_node(
    node: ET.Element,
    node_states: dict[str, ET.Element],
    cluster_maintenance: bool,
    resolve_host_id: Callable[[str], Optional[str]],
) -> NodeState:
    node_name = node.get("uname") or ""
    host_id = resolve_host_id(node_name) if node_name else None
    if not host_id:
        raise InconsistentPeerData(
            f"Node id={node.get('id')!r} uname={node_name!r} has no known host id"
        )

    attrs = _nvpairs(node)
    state = node_states.get(node.get("id", "")) or node_states.get(node_name)
    if state is not None:
        in_ccm = parse_pacemaker_bool(state.get("in_ccm"))
        crmd = state.get("crmd", "")
        daemon = crmd.lower() == "online" or (crmd.isdigit() and int(crmd) > 0)
        joined = state.get("join", "").lower() == "member"
    else:
        in_ccm = daemon = joined = False

    return NodeState(
        host_id=host_id,
        node_name=node_name,
        scheduler_internal_id=node.get("id", ""),
        in_membership=in_ccm,
        is_daemon_member=daemon,
        is_cluster_joined=joined,
        maintenance_mode=cluster_maintenance
        or parse_pacemaker_bool(attrs.get("maintenance")),
    )


def parse_cib(
    xml_text: str,
    pair_id: str,
    resolve_host_id: Callable[[str], Optional[str]],
) -> ClusterSnapshot:
    """Parse CIB XML into a ClusterSnapshot.

    Args:
        xml_text: Output of the resource-manager query
        pair_id: Pair the snapshot belongs to
        resolve_host_id: Maps a node name to a host_id (None if unknown)

    Returns:
        ClusterSnapshot with every resolvable node

    Raises:
        ET.ParseError: Malformed XML
        ValueError: Well-formed XML that is not a CIB
    """
    root = ET.fromstring(xml_text)
    configuration = root.find("configuration")
    if root.tag != "cib" or configuration is None:
        raise ValueError(f"Not a CIB document (root element <{root.tag}>)")

    crm_config = configuration.find("crm_config")
    properties = _nvpairs(crm_config) if crm_config is not None else {}
    cluster_maintenance = parse_pacemaker_bool(properties.get("maintenance-mode"))

    node_states: dict[str, ET.Element] = {}
    status = root.find("status")
    if status is not None:
        for state in status.findall("node_state"):
            if state.get("id"):
                node_states[state.get("id")] = state
            if state.get("uname"):
                node_states[state.get("uname")] = state

    nodes: dict[str, NodeState] = {}
    nodes_element = configuration.find("nodes")
    for node in nodes_element.findall("node") if nodes_element is not None else []:
        try:
            parsed = _parse_node(node, node_states, cluster_maintenance, resolve_host_id)
        except InconsistentPeerData as e:
            logger.warning(f"[CIB] Skipping node: {e}")
            continue
        nodes[parsed.host_id] = parsed

    return ClusterSnapshot(
        pair_id=pair_id,
        cluster_name=properties.get("cluster-name", ""),
        stonith_enabled=parse_pacemaker_bool(properties.get("stonith-enabled"), default=True),
        stonith_max_attempts=parse_pacemaker_int(
            properties.get("stonith-max-attempts"), DEFAULT_STONITH_MAX_ATTEMPTS
        ),
        raw_config_blob=_serialize(configuration),
        nodes=nodes,
        stonith_devices=_parse_stonith_devices(configuration),
    )


def _serialize(configuration: ET.Element) -> str:
    # tostring() includes the element's tail; whitespace after </configuration>
    # is not configuration.
    tail, configuration.tail = configuration.tail, None
    try:
        return ET.tostring(configuration, encoding="unicode")
    finally:
        configuration.tail = tail
