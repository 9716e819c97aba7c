"""Builders for CIB documents, snapshots and identities used across tests."""

from __future__ import annotations

from dataclasses import dataclass

from anvil_cluster.config.node_identity import NodeIdentity
from anvil_cluster.models import ClusterSnapshot, NodeState

PAIR_ID = "1c8d6f8a-2d1e-4b3a-9b55-0d7c1c3c9e21"
HOST_A = "4c4c4544-0043-5a10-804b-b4c04f4d4e31"
HOST_B = "4c4c4544-0043-5a10-804b-b4c04f4d4e32"
NODE_A = "an-a01n01.alteeve.com"
NODE_B = "an-a01n02.alteeve.com"


@dataclass
class CibNode:
    node_id: str
    uname: str
    online: bool = True
    joined: bool = True
    maintenance: bool = False
    fence_delay: str = ""


def default_cib_nodes() -> list[CibNode]:
    return [CibNode("1", NODE_A), CibNode("2", NODE_B)]


def build_cib(
    cluster_name: str = "prod-pair",
    stonith_enabled: str = "true",
    stonith_max_attempts: str | None = None,
    nodes: list[CibNode] | None = None,
    extra_config: str = "",
    epoch: int = 12,
) -> str:
    """Render a minimal but realistic `pcs cluster cib` document."""
    nodes = default_cib_nodes() if nodes is None else nodes
    properties = [
        f'<nvpair id="opt-name" name="cluster-name" value="{cluster_name}"/>',
        f'<nvpair id="opt-stonith" name="stonith-enabled" value="{stonith_enabled}"/>',
    ]
    if stonith_max_attempts is not None:
        properties.append(
            f'<nvpair id="opt-max" name="stonith-max-attempts" value="{stonith_max_attempts}"/>'
        )

    node_xml = []
    device_xml = []
    state_xml = []
    for node in nodes:
        attrs = ""
        if node.maintenance:
            attrs = (
                f'<instance_attributes id="nodes-{node.node_id}">'
                f'<nvpair id="nodes-{node.node_id}-maint" name="maintenance" value="on"/>'
                f"</instance_attributes>"
            )
        node_xml.append(f'<node id="{node.node_id}" uname="{node.uname}">{attrs}</node>')

        delay = (
            f'<nvpair id="ipmi{node.node_id}-delay" name="pcmk_delay_base" '
            f'value="{node.fence_delay}"/>'
            if node.fence_delay
            else ""
        )
        device_xml.append(
            f'<primitive class="stonith" id="ipmilan_node{node.node_id}" type="fence_ipmilan">'
            f'<instance_attributes id="ipmi{node.node_id}-ia">'
            f'<nvpair id="ipmi{node.node_id}-hosts" name="pcmk_host_list" value="{node.uname}"/>'
            f"{delay}"
            f"</instance_attributes></primitive>"
        )

        in_ccm = "true" if node.online else "false"
        crmd = "online" if node.online else "offline"
        join = "member" if node.joined else "down"
        state_xml.append(
            f'<node_state id="{node.node_id}" uname="{node.uname}" in_ccm="{in_ccm}" '
            f'crmd="{crmd}" join="{join}" expected="member"/>'
        )

    nl = "\n      "
    return f"""<cib epoch="{epoch}" num_updates="3" admin_epoch="0" validate-with="pacemaker-3.9">
  <configuration>
    <crm_config>
      <cluster_property_set id="cib-bootstrap-options">
        {nl.join(properties)}
      </cluster_property_set>
    </crm_config>
    <nodes>
      {nl.join(node_xml)}
    </nodes>
    <resources>
      {nl.join(device_xml)}
    </resources>
    {extra_config}
  </configuration>
  <status>
    {nl.join(state_xml)}
  </status>
</cib>
"""


def make_identity(local: str = "a") -> NodeIdentity:
    names = {NODE_A: HOST_A, NODE_B: HOST_B}
    if local == "a":
        return NodeIdentity(
            host_id=HOST_A,
            node_name=NODE_A,
            pair_id=PAIR_ID,
            peer_host_id=HOST_B,
            peer_node_name=NODE_B,
            node_names=names,
            hostname=NODE_A,
            resolution_method="test",
        )
    return NodeIdentity(
        host_id=HOST_B,
        node_name=NODE_B,
        pair_id=PAIR_ID,
        peer_host_id=HOST_A,
        peer_node_name=NODE_A,
        node_names=names,
        hostname=NODE_B,
        resolution_method="test",
    )


def make_node(host_id: str = HOST_A, **overrides) -> NodeState:
    values = {
        "host_id": host_id,
        "node_name": NODE_A if host_id == HOST_A else NODE_B,
        "scheduler_internal_id": "1" if host_id == HOST_A else "2",
        "in_membership": True,
        "is_daemon_member": True,
        "is_cluster_joined": True,
        "maintenance_mode": False,
    }
    values.update(overrides)
    return NodeState(**values)


def make_snapshot(
    cluster_name: str = "prod-pair",
    nodes: list[NodeState] | None = None,
    raw_config_blob: str = "<configuration/>",
    **overrides,
) -> ClusterSnapshot:
    nodes = [make_node(HOST_A), make_node(HOST_B)] if nodes is None else nodes
    return ClusterSnapshot(
        pair_id=overrides.pop("pair_id", PAIR_ID),
        cluster_name=cluster_name,
        raw_config_blob=raw_config_blob,
        nodes={n.host_id: n for n in nodes},
        **overrides,
    )
