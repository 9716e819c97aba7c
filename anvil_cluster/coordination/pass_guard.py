"""Pass Guard - keeps two scan passes from overlapping on one host.

The agent is started periodically by the host's scan scheduler. If a pass
is still running when the next one starts, the newcomer logs and exits
cleanly instead of racing the first one.

Usage:
    from anvil_cluster.coordination.pass_guard import PassGuard

    guard = PassGuard(Path("/run/anvil/scan-cluster.pid"))
    if not guard.acquire():
        return 0
    try:
        ...
    finally:
        guard.release()
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def read_pid(pid_file: Path) -> int | None:
    try:
        with open(pid_file, "r") as f:
            return int(f.read().strip())
    except (ValueError, OSError):
        return None


def is_pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)  # Signal 0 doesn't kill, just checks existence
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    except OSError:
        return False
    return True


class PassGuard:
    def __init__(self, pid_file: Path | str):
        self.pid_file = Path(pid_file)
        self._held = False

    def holder(self) -> int | None:
        """PID of a live pass holding the guard, or None."""
        if not self.pid_file.exists():
            return None
        pid = read_pid(self.pid_file)
        if pid is None or pid == os.getpid() or not is_pid_alive(pid):
            return None
        return pid

    def _create(self) -> None:
        """Create the PID file; raises FileExistsError if it is already there."""
        fd = os.open(self.pid_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")

    def acquire(self) -> bool:
        """Take the guard; False if another live pass already holds it."""
        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"[PassGuard] Cannot create {self.pid_file.parent}: {e}")
            return True

        for attempt in range(2):
            try:
                self._create()
            except FileExistsError:
                pid = self.holder()
                if pid is not None:
                    logger.info(f"[PassGuard] Previous pass (pid {pid}) still running, skipping")
                    return False
                if attempt:
                    logger.info("[PassGuard] Lost the PID file race to another pass, skipping")
                    return False
                logger.debug(f"[PassGuard] Replacing stale PID file {self.pid_file}")
                try:
                    self.pid_file.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"[PassGuard] Cannot remove {self.pid_file}: {e}")
                    return True
            except OSError as e:
                # Unwritable run dir should not block the scan itself
                logger.warning(f"[PassGuard] Cannot write {self.pid_file}: {e}")
                return True
            else:
                self._held = True
                return True
        return False

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if read_pid(self.pid_file) != os.getpid():
            return
        try:
            self.pid_file.unlink()
        except OSError as e:
            logger.debug(f"[PassGuard] Could not remove {self.pid_file}: {e}")

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, *exc_info) -> None:
        self.release()
