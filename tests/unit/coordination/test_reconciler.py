"""Tests for the Reconciler."""

from dataclasses import replace

import pytest

from anvil_cluster.coordination.reconciler import (
    MEMBERSHIP_GATE,
    ReconcileStatus,
    Reconciler,
    config_diff,
)
from anvil_cluster.errors import CollectionFailure, CollectionReason
from anvil_cluster.models import ClusterSnapshot, GateKey, NodeState
from anvil_cluster.monitoring.levels import AlertLevel
from tests.factories import HOST_A, HOST_B, NODE_B, PAIR_ID, make_node, make_snapshot

FAILURE = CollectionFailure(CollectionReason.NOT_MEMBER, "exit 1")


@pytest.fixture
def reconciler(store, gate, identity):
    return Reconciler(store, gate, identity)


def _reconcile(store, reconciler, observed, failure=None):
    with store.transaction():
        return reconciler.reconcile(observed, failure)


# =============================================================================
# First observation
# =============================================================================


class TestBootstrap:
    def test_new_cluster(self, store, reconciler):
        result = _reconcile(store, reconciler, make_snapshot())
        assert result.status == ReconcileStatus.NEW_CLUSTER
        assert result.persisted
        assert [a.message_key for a in result.alerts] == ["cluster_new"]
        assert "prod-pair" in result.alerts[0].message
        assert store.history_count(PAIR_ID) == 1

    def test_second_identical_pass_is_silent(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        result = _reconcile(store, reconciler, make_snapshot())
        assert result.status == ReconcileStatus.UNCHANGED
        assert result.alerts == []
        assert not result.persisted
        assert store.history_count(PAIR_ID) == 1

    def test_bootstrap_syncs_node_gates(self, store, gate, reconciler):
        peer_down = make_node(HOST_B, is_cluster_joined=False)
        _reconcile(store, reconciler, make_snapshot(nodes=[make_node(HOST_A), peer_down]))
        assert gate.is_active(GateKey("scan-cluster", HOST_B, "node-is_cluster_joined"))
        assert not gate.is_active(GateKey("scan-cluster", HOST_A, "node-is_cluster_joined"))


# =============================================================================
# Field-level changes
# =============================================================================


class TestFieldChanges:
    def test_cluster_rename(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        result = _reconcile(store, reconciler, make_snapshot(cluster_name="prod-pair-2"))
        assert result.status == ReconcileStatus.CHANGED
        assert len(result.alerts) == 1
        assert result.alerts[0].message == "cluster name changed: prod-pair -> prod-pair-2"
        assert store.load_current(PAIR_ID).cluster_name == "prod-pair-2"
        assert store.history_count(PAIR_ID) == 2

    def test_one_alert_per_field(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        changed = make_snapshot(
            cluster_name="renamed",
            stonith_enabled=False,
            nodes=[make_node(HOST_A), make_node(HOST_B, maintenance_mode=True)],
        )
        result = _reconcile(store, reconciler, changed)
        fields = sorted(a.variables["field"] for a in result.alerts)
        assert fields == ["cluster_name", "maintenance_mode", "stonith_enabled"]

    def test_peer_leaves(self, store, gate, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        peer_down = make_node(HOST_B, is_cluster_joined=False)
        result = _reconcile(store, reconciler, make_snapshot(nodes=[make_node(HOST_A), peer_down]))
        assert len(result.alerts) == 1
        alert = result.alerts[0]
        assert alert.message_key == "node_field_changed"
        assert alert.level == AlertLevel.WARNING
        assert alert.record_locator == HOST_B
        assert alert.message == f"Node {NODE_B}: cluster joined changed: True -> False"
        assert gate.is_active(GateKey("scan-cluster", HOST_B, "node-is_cluster_joined"))

    def test_peer_rejoins_is_notice(self, store, reconciler):
        peer_down = make_node(HOST_B, is_cluster_joined=False)
        _reconcile(store, reconciler, make_snapshot(nodes=[make_node(HOST_A), peer_down]))
        result = _reconcile(store, reconciler, make_snapshot())
        assert result.alerts[0].level == AlertLevel.NOTICE

    def test_node_added(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot(nodes=[make_node(HOST_A)]))
        result = _reconcile(store, reconciler, make_snapshot())
        assert [a.message_key for a in result.alerts] == ["node_added"]
        assert result.alerts[0].record_locator == HOST_B

    def test_missing_node_is_kept(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        result = _reconcile(store, reconciler, make_snapshot(nodes=[make_node(HOST_A)]))
        assert result.status == ReconcileStatus.UNCHANGED
        assert set(store.load_current(PAIR_ID).nodes) == {HOST_A, HOST_B}

    def test_raw_config_only_change(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot(raw_config_blob="<configuration>\n<a/>\n</configuration>"))
        result = _reconcile(
            store, reconciler, make_snapshot(raw_config_blob="<configuration>\n<b/>\n</configuration>")
        )
        assert [a.message_key for a in result.alerts] == ["cluster_config_changed"]
        assert "-<a/>" in result.alerts[0].message
        assert "+<b/>" in result.alerts[0].message
        assert store.history_count(PAIR_ID) == 2

    def test_raw_config_change_with_field_change_single_path(self, store, reconciler):
        _reconcile(store, reconciler, make_snapshot(raw_config_blob="<configuration>1</configuration>"))
        result = _reconcile(
            store,
            reconciler,
            make_snapshot(cluster_name="renamed", raw_config_blob="<configuration>2</configuration>"),
        )
        assert [a.message_key for a in result.alerts] == ["cluster_field_changed"]
        assert store.load_current(PAIR_ID).raw_config_blob == "<configuration>2</configuration>"


def _changed_value(old):
    if isinstance(old, bool):
        return not old
    if isinstance(old, int):
        return old + 1
    return f"{old}-x"


class TestEveryFieldDiffed:
    @pytest.mark.parametrize("name", ClusterSnapshot.DIFF_FIELDS)
    def test_cluster_field(self, store, reconciler, name):
        baseline = make_snapshot()
        _reconcile(store, reconciler, baseline)
        old = getattr(baseline, name)
        observed = replace(baseline, **{name: _changed_value(old)})

        result = _reconcile(store, reconciler, observed)
        assert result.status == ReconcileStatus.CHANGED
        assert len(result.alerts) == 1
        variables = result.alerts[0].variables
        assert variables["field"] == name
        assert (variables["old"], variables["new"]) == (old, getattr(observed, name))
        assert store.load_current(PAIR_ID) == observed

    @pytest.mark.parametrize("name", NodeState.DIFF_FIELDS)
    def test_node_field(self, store, reconciler, name):
        baseline = make_snapshot()
        _reconcile(store, reconciler, baseline)
        peer = baseline.node(HOST_B)
        old = getattr(peer, name)
        observed = baseline.with_node(replace(peer, **{name: _changed_value(old)}))

        result = _reconcile(store, reconciler, observed)
        assert result.status == ReconcileStatus.CHANGED
        assert len(result.alerts) == 1
        variables = result.alerts[0].variables
        assert variables["field"] == name
        assert variables["host_id"] == HOST_B
        assert (variables["old"], variables["new"]) == (old, getattr(observed.node(HOST_B), name))
        assert store.load_current(PAIR_ID) == observed


# =============================================================================
# Membership loss
# =============================================================================


class TestMembership:
    def test_failure_without_history_is_noop(self, store, reconciler):
        result = _reconcile(store, reconciler, None, FAILURE)
        assert result.status == ReconcileStatus.NOT_MEMBER
        assert result.alerts == []
        assert store.load_current(PAIR_ID) is None

    def test_loss_flips_local_node_and_alerts_once(self, store, gate, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        first = _reconcile(store, reconciler, None, FAILURE)
        assert [a.message_key for a in first.alerts] == ["membership_lost"]
        assert first.alerts[0].variables["reason"] == "not_member"
        local = store.load_current(PAIR_ID).node(HOST_A)
        assert (local.in_membership, local.is_daemon_member, local.is_cluster_joined) == (
            False,
            False,
            False,
        )
        assert store.load_current(PAIR_ID).node(HOST_B).is_cluster_joined is True
        assert gate.is_active(GateKey("scan-cluster", HOST_A, MEMBERSHIP_GATE))

        second = _reconcile(store, reconciler, None, FAILURE)
        assert second.alerts == []
        assert not second.persisted
        assert store.history_count(PAIR_ID) == 2

    def test_regain_clears_gate(self, store, gate, reconciler):
        _reconcile(store, reconciler, make_snapshot())
        _reconcile(store, reconciler, None, FAILURE)
        result = _reconcile(store, reconciler, make_snapshot())
        keys = [a.message_key for a in result.alerts]
        assert keys[0] == "membership_regained"
        assert "node_field_changed" in keys
        assert not gate.is_active(GateKey("scan-cluster", HOST_A, MEMBERSHIP_GATE))

        again = _reconcile(store, reconciler, make_snapshot())
        assert again.alerts == []


class TestConfigDiff:
    def test_truncates(self):
        old = "\n".join(f"line {i}" for i in range(50))
        new = "\n".join(f"row {i}" for i in range(50))
        text = config_diff(old, new, max_lines=10)
        assert len(text.splitlines()) == 11
        assert text.endswith("more lines)")
