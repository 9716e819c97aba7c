"""Alert severity levels.

Levels are stored as integers so the mail dispatcher can sort and filter
them; recipients subscribe to "this level and more severe".
"""

from __future__ import annotations

import logging
from enum import IntEnum


class AlertLevel(IntEnum):
    """Alert severity, lower is more severe."""

    CRITICAL = 1
    WARNING = 2
    NOTICE = 3
    INFO = 4

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    AlertLevel.CRITICAL: logging.CRITICAL,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.NOTICE: logging.INFO,
    AlertLevel.INFO: logging.INFO,
}
