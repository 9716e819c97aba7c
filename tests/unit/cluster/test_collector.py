"""Tests for StateCollector failure classification."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from anvil_cluster.cluster.collector import StateCollector
from anvil_cluster.errors import CollectionReason
from tests.factories import HOST_A, HOST_B, NODE_B, CibNode, build_cib

RUN = "anvil_cluster.cluster.collector.subprocess.run"


def _completed(stdout="", returncode=0, stderr=""):
    result = MagicMock()
    result.stdout = stdout
    result.returncode = returncode
    result.stderr = stderr
    return result


class TestStateCollector:
    def test_success(self, identity):
        with patch(RUN, return_value=_completed(build_cib())) as mock_run:
            snapshot, failure = StateCollector(timeout=5).collect(identity)
        assert failure is None
        assert set(snapshot.nodes) == {HOST_A, HOST_B}
        args, kwargs = mock_run.call_args
        assert args[0] == ["pcs", "cluster", "cib"]
        assert kwargs["timeout"] == 5

    def test_custom_command(self, identity):
        with patch(RUN, return_value=_completed(build_cib())) as mock_run:
            StateCollector(["cibadmin", "--query"]).collect(identity)
        assert mock_run.call_args[0][0] == ["cibadmin", "--query"]

    @pytest.mark.parametrize(
        "error, reason",
        [
            (FileNotFoundError("pcs"), CollectionReason.NOT_INSTALLED),
            (PermissionError("denied"), CollectionReason.NOT_INSTALLED),
            (subprocess.TimeoutExpired("pcs", 30), CollectionReason.TIMEOUT),
        ],
    )
    def test_query_errors(self, identity, error, reason):
        with patch(RUN, side_effect=error):
            snapshot, failure = StateCollector().collect(identity)
        assert snapshot is None
        assert failure.reason == reason

    def test_nonzero_exit_is_not_member(self, identity):
        result = _completed(returncode=1, stderr="Error: unable to get cib")
        with patch(RUN, return_value=result):
            snapshot, failure = StateCollector().collect(identity)
        assert snapshot is None
        assert failure.reason == CollectionReason.NOT_MEMBER
        assert "unable to get cib" in failure.detail

    def test_unparseable_output(self, identity):
        with patch(RUN, return_value=_completed("<cib><configuration>")):
            snapshot, failure = StateCollector().collect(identity)
        assert snapshot is None
        assert failure.reason == CollectionReason.PARSE_ERROR

    def test_local_node_absent(self, identity):
        xml_text = build_cib(nodes=[CibNode("2", NODE_B)])
        with patch(RUN, return_value=_completed(xml_text)):
            snapshot, failure = StateCollector().collect(identity)
        assert snapshot is None
        assert failure.reason == CollectionReason.NOT_MEMBER
