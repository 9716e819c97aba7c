"""Tests for pushing the fence-delay preference into stonith devices."""

import subprocess
from unittest.mock import MagicMock, patch

from anvil_cluster.cluster.fence_delay_applier import FenceDelayApplier
from anvil_cluster.models import StonithDevice
from tests.factories import NODE_A, NODE_B

RUN = "anvil_cluster.cluster.fence_delay_applier.subprocess.run"

LOCAL = StonithDevice("ipmilan_node1", "fence_ipmilan", (NODE_A,))
PEER = StonithDevice("ipmilan_node2", "fence_ipmilan", (NODE_B,))


def _ok():
    result = MagicMock()
    result.returncode = 0
    result.stderr = ""
    return result


class TestFenceDelayApplier:
    def test_sets_delay_on_local_device_only(self):
        with patch(RUN, return_value=_ok()) as mock_run:
            updated = FenceDelayApplier(delay_seconds=15).apply([LOCAL, PEER], NODE_A, True)
        assert updated == ["ipmilan_node1"]
        mock_run.assert_called_once()
        assert mock_run.call_args[0][0] == [
            "pcs", "stonith", "update", "ipmilan_node1", "pcmk_delay_base=15s",
        ]

    def test_removes_delay_when_not_preferred(self):
        device = StonithDevice("ipmilan_node1", "fence_ipmilan", (NODE_A,), delay="15s")
        with patch(RUN, return_value=_ok()) as mock_run:
            updated = FenceDelayApplier().apply([device], NODE_A, False)
        assert updated == ["ipmilan_node1"]
        assert mock_run.call_args[0][0][-1] == "pcmk_delay_base=0s"

    def test_already_correct_is_skipped(self):
        device = StonithDevice("ipmilan_node1", "fence_ipmilan", (NODE_A,), delay="15")
        with patch(RUN) as mock_run:
            assert FenceDelayApplier(delay_seconds=15).apply([device], NODE_A, True) == []
        mock_run.assert_not_called()

    def test_command_failure_is_logged_not_raised(self):
        failed = MagicMock(returncode=1, stderr="Error: unknown device")
        with patch(RUN, return_value=failed):
            assert FenceDelayApplier().apply([LOCAL], NODE_A, True) == []

    def test_process_error_is_logged_not_raised(self):
        with patch(RUN, side_effect=subprocess.TimeoutExpired("pcs", 30)):
            assert FenceDelayApplier().apply([LOCAL], NODE_A, True) == []
