"""Alert records, message catalog and delivery sinks.

Alerts are fire-and-forget: a sink that cannot deliver logs the problem and
returns. Nothing in the reconciliation or fencing logic depends on delivery.

Usage:
    from anvil_cluster.monitoring.alerts import Alert, AlertBatch, LoggingAlertSink

    batch = AlertBatch()
    batch.add(Alert(AlertLevel.WARNING, "membership_lost", {"node_name": "an-a01n01"}))
    ...
    batch.flush(LoggingAlertSink())
"""

from __future__ import annotations

import http.client
import json
import logging
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Protocol

from anvil_cluster.errors import PersistenceFailure
from anvil_cluster.monitoring.levels import AlertLevel
from anvil_cluster.utils.exceptions import NETWORK_ERRORS, log_and_continue

if TYPE_CHECKING:
    from anvil_cluster.db.store import SQLiteStateStore

logger = logging.getLogger(__name__)

# Message catalog: key -> template rendered with the alert's variables.
MESSAGES: dict[str, str] = {
    "cluster_new": (
        "New cluster discovered: '{cluster_name}' (pair {pair_id}) "
        "with {node_count} node(s)."
    ),
    "cluster_field_changed": "{label} changed: {old} -> {new}",
    "cluster_config_changed": "The cluster configuration changed:\n{diff}",
    "node_added": (
        "Node {node_name} ({host_id}) added to the cluster: "
        "member={in_membership}, daemon={is_daemon_member}, "
        "joined={is_cluster_joined}, maintenance={maintenance_mode}."
    ),
    "node_field_changed": "Node {node_name}: {label} changed: {old} -> {new}",
    "membership_lost": "Node {node_name} lost cluster membership ({reason}).",
    "membership_regained": "Node {node_name} regained cluster membership.",
    "fence_delay_preferred": (
        "Node {node_name} is now preferred for fence delay ({reason})."
    ),
    "fence_delay_released": (
        "Node {node_name} is no longer preferred for fence delay; "
        "{preferred_node_id} asserted itself."
    ),
}


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_message(message_key: str, variables: dict[str, Any]) -> str:
    """Render a catalog message; unknown keys fall back to key + variables."""
    template = MESSAGES.get(message_key)
    if template is None:
        return f"{message_key}: {json.dumps(variables, sort_keys=True, default=str)}"
    return template.format_map(_KeepMissing(variables))


@dataclass
class Alert:
    """One notification raised by the agent."""

    level: AlertLevel
    message_key: str
    variables: dict[str, Any] = field(default_factory=dict)
    set_by: str = "scan-cluster"
    record_locator: str = ""
    sort_position: int = 9999
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def message(self) -> str:
        return render_message(self.message_key, self.variables)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.name.lower(),
            "level_value": int(self.level),
            "message_key": self.message_key,
            "message": self.message,
            "variables": self.variables,
            "set_by": self.set_by,
            "record_locator": self.record_locator,
            "sort_position": self.sort_position,
            "created_at": self.created_at.isoformat(),
        }

    def __str__(self) -> str:
        return f"[{self.level.name}] {self.message}"


class AlertSink(Protocol):
    def notify(self, alert: Alert) -> None: ...


class LoggingAlertSink:
    """Writes every alert to the agent log."""

    def __init__(self, logger_instance: logging.Logger | None = None):
        self._logger = logger_instance or logger

    def notify(self, alert: Alert) -> None:
        self._logger.log(alert.level.log_level, f"[Alert] {alert}")


class DatabaseAlertSink:
    """Queues alerts in the store's alerts table for the mail dispatcher."""

    def __init__(self, store: SQLiteStateStore, host_id: str):
        self._store = store
        self._host_id = host_id

    def notify(self, alert: Alert) -> None:
        try:
            self._store.record_alert(self._host_id, alert)
        except PersistenceFailure as e:
            log_and_continue(e, "alert_db", logger)


class WebhookAlertSink:
    """POSTs alerts as JSON to a webhook (Slack/Discord-compatible 'text')."""

    def __init__(self, url: str, timeout: float = 10.0, source: str = ""):
        self.url = url
        self.timeout = timeout
        self.source = source

    def _payload(self, alert: Alert) -> bytes:
        body = alert.to_dict()
        body["text"] = f"{self.source}: {alert}" if self.source else str(alert)
        return json.dumps(body, default=str).encode()

    def notify(self, alert: Alert) -> None:
        try:
            req = urllib.request.Request(
                self.url,
                data=self._payload(alert),
                headers={"Content-Type": "application/json", "User-Agent": "scan-cluster/1.0"},
                method="POST",
            )
            with urllib.request.urlopen(req, timeout=self.timeout):
                pass
        except (*NETWORK_ERRORS, http.client.HTTPException, ValueError) as e:
            log_and_continue(e, "alert_webhook", logger)


class CompositeAlertSink:
    """Fans an alert out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[AlertSink]):
        self.sinks = list(sinks)

    def notify(self, alert: Alert) -> None:
        for sink in self.sinks:
            try:
                sink.notify(alert)
            except Exception as e:
                log_and_continue(e, f"alert_sink:{type(sink).__name__}", logger)


class AlertBatch:
    """Alerts raised during one pass step, held until the step commits."""

    def __init__(self) -> None:
        self._alerts: list[Alert] = []

    def add(self, alert: Alert) -> None:
        self._alerts.append(alert)

    def extend(self, alerts: Iterable[Alert]) -> None:
        self._alerts.extend(alerts)

    def __len__(self) -> int:
        return len(self._alerts)

    def __iter__(self) -> Iterator[Alert]:
        return iter(self._alerts)

    def flush(self, sink: AlertSink) -> int:
        """Deliver all pending alerts in sort order and empty the batch."""
        pending = sorted(self._alerts, key=lambda a: a.sort_position)
        self._alerts = []
        for alert in pending:
            sink.notify(alert)
        return len(pending)

    def discard(self) -> int:
        dropped = len(self._alerts)
        self._alerts = []
        return dropped
