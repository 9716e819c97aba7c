"""Alert levels, the message catalog and alert sinks."""

from anvil_cluster.monitoring.alerts import (
    MESSAGES,
    Alert,
    AlertBatch,
    AlertSink,
    CompositeAlertSink,
    DatabaseAlertSink,
    LoggingAlertSink,
    WebhookAlertSink,
    render_message,
)
from anvil_cluster.monitoring.levels import AlertLevel

__all__ = [
    "MESSAGES",
    "Alert",
    "AlertBatch",
    "AlertLevel",
    "AlertSink",
    "CompositeAlertSink",
    "DatabaseAlertSink",
    "LoggingAlertSink",
    "WebhookAlertSink",
    "render_message",
]
