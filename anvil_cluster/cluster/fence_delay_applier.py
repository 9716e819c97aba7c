"""Push the fence-delay preference into the fencing layer.

Only stonith devices that fence the *local* node are touched: a delay on the
device that shoots this node gives it the head start in a fence race. The
peer's devices belong to the peer's own agent.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Sequence

from anvil_cluster.models import StonithDevice
from anvil_cluster.utils.exceptions import PROCESS_ERRORS, log_and_continue

logger = logging.getLogger(__name__)


def _delay_seconds(value: str) -> int:
    text = value.strip().lower().rstrip("s")
    return int(text) if text.isdigit() else 0


class FenceDelayApplier:
    """Sets pcmk_delay_base on the local node's stonith devices."""

    def __init__(
        self,
        update_command: Sequence[str] = ("pcs", "stonith", "update"),
        delay_seconds: int = 15,
        timeout: float = 30.0,
    ):
        self.update_command = list(update_command)
        self.delay_seconds = delay_seconds
        self.timeout = timeout

    def apply(
        self,
        devices: Sequence[StonithDevice],
        local_node_name: str,
        preferred: bool,
    ) -> list[str]:
        """Make the local devices' delay match the preference.

        Returns:
            Names of the devices that were updated
        """
        wanted = self.delay_seconds if preferred else 0
        updated = []
        for device in devices:
            if not device.targets(local_node_name):
                continue
            if _delay_seconds(device.delay) == wanted:
                continue
            cmd = [*self.update_command, device.name, f"pcmk_delay_base={wanted}s"]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except PROCESS_ERRORS as e:
                log_and_continue(e, "fence_delay_apply", logger)
                continue
            if result.returncode != 0:
                logger.warning(
                    f"[FenceDelayApplier] {' '.join(cmd)} failed: {result.stderr.strip()}"
                )
                continue
            logger.info(f"[FenceDelayApplier] Set {device.name} delay to {wanted}s")
            updated.append(device.name)
        return updated
