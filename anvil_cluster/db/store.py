"""SQLite backend for cluster snapshots, fence preference and alert gates.

Architecture:
- One database shared by every agent writing to it (WAL mode)
- Each record type has a current table and a history table; the history
  row is written in the same transaction as the current row
- Alert gate state lives in alert_sent; a missing row means inactive
- transaction() groups the writes of one pass step so a failure leaves the
  store exactly as it was before the step
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, ContextManager, Iterator, Optional, Protocol

from anvil_cluster.errors import PersistenceFailure
from anvil_cluster.models import ClusterSnapshot, FenceDelayPreference, GateKey, NodeState
from anvil_cluster.utils.exceptions import DB_ERRORS
from anvil_cluster.utils.sqlite_utils import connect_safe

if TYPE_CHECKING:
    from anvil_cluster.monitoring.alerts import Alert

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    name TEXT PRIMARY KEY,
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS scan_cluster (
    pair_id TEXT PRIMARY KEY,
    cluster_name TEXT NOT NULL,
    stonith_enabled INTEGER NOT NULL,
    stonith_max_attempts INTEGER NOT NULL,
    raw_config TEXT NOT NULL,
    modified_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS history_scan_cluster (
    history_id INTEGER PRIMARY KEY AUTOINCREMENT,
    pair_id TEXT NOT NULL,
    cluster_name TEXT NOT NULL,
    stonith_enabled INTEGER NOT NULL,
    stonith_max_attempts INTEGER NOT NULL,
    raw_config TEXT NOT NULL,
    modified_date TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_history_scan_cluster_pair
    ON history_scan_cluster(pair_id, modified_date);

CREATE TABLE IF NOT EXISTS scan_cluster_nodes (
    host_id TEXT PRIMARY KEY,
    pair_id TEXT NOT NULL REFERENCES scan_cluster(pair_id),
    node_name TEXT NOT NULL,
    scheduler_internal_id TEXT NOT NULL,
    in_membership INTEGER NOT NULL,
    is_daemon_member INTEGER NOT NULL,
    is_cluster_joined INTEGER NOT NULL,
    maintenance_mode INTEGER NOT NULL,
    modified_date TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scan_cluster_nodes_pair
    ON scan_cluster_nodes(pair_id);

CREATE TABLE IF NOT EXISTS history_scan_cluster_nodes (
    history_id INTEGER PRIMARY KEY AUTOINCREMENT,
    host_id TEXT NOT NULL,
    pair_id TEXT NOT NULL,
    node_name TEXT NOT NULL,
    scheduler_internal_id TEXT NOT NULL,
    in_membership INTEGER NOT NULL,
    is_daemon_member INTEGER NOT NULL,
    is_cluster_joined INTEGER NOT NULL,
    maintenance_mode INTEGER NOT NULL,
    modified_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS fence_preferences (
    pair_id TEXT PRIMARY KEY,
    preferred_node_id TEXT NOT NULL,
    modified_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS history_fence_preferences (
    history_id INTEGER PRIMARY KEY AUTOINCREMENT,
    pair_id TEXT NOT NULL,
    preferred_node_id TEXT NOT NULL,
    modified_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alert_sent (
    set_by TEXT NOT NULL,
    record_locator TEXT NOT NULL,
    name TEXT NOT NULL,
    modified_date TEXT NOT NULL,
    PRIMARY KEY (set_by, record_locator, name)
);

CREATE TABLE IF NOT EXISTS alerts (
    alert_id INTEGER PRIMARY KEY AUTOINCREMENT,
    host_id TEXT NOT NULL,
    set_by TEXT NOT NULL,
    level INTEGER NOT NULL,
    message_key TEXT NOT NULL,
    message TEXT NOT NULL,
    variables TEXT NOT NULL,
    sort_position INTEGER NOT NULL DEFAULT 9999,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS servers (
    server_uuid TEXT PRIMARY KEY,
    server_name TEXT NOT NULL,
    pair_id TEXT NOT NULL,
    host_id TEXT,
    server_state TEXT NOT NULL DEFAULT 'shut off',
    modified_date TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_servers_pair ON servers(pair_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PersistedStateStore(Protocol):
    """What the reconciler, gate and coordinator need from persistence."""

    def load_current(self, pair_id: str) -> Optional[ClusterSnapshot]: ...

    def save_current_and_history(self, snapshot: ClusterSnapshot) -> None: ...

    def load_fence_preference(self, pair_id: str) -> Optional[FenceDelayPreference]: ...

    def save_fence_preference(self, preference: FenceDelayPreference) -> None: ...

    def load_gate(self, key: GateKey) -> bool: ...

    def save_gate(self, key: GateKey, active: bool) -> None: ...

    def transaction(self) -> ContextManager[Any]: ...


class SQLiteStateStore:
    """SQLite-backed PersistedStateStore.

    Connections are opened per call (or per transaction) so two agents, or an
    agent and the dashboard, never hold a handle across passes.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._schema_ready = False

    # -------------------------------------------------------------------------
    # Connection / transaction handling
    # -------------------------------------------------------------------------

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (name, version) VALUES ('scan_cluster', ?)",
            (self.SCHEMA_VERSION,),
        )
        self._schema_ready = True

    def _open(self):
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = connect_safe(self.db_path)
        except (*DB_ERRORS, OSError) as e:
            raise PersistenceFailure(f"Cannot open {self.db_path}: {e}") from e
        if not self._schema_ready:
            try:
                self._init_schema(conn)
            except DB_ERRORS as e:
                conn.close()
                raise PersistenceFailure(f"Cannot initialize schema in {self.db_path}: {e}") from e
        return conn

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group writes; nested calls join the outermost transaction."""
        if self.in_transaction:
            yield self._local.conn
            return

        safe = self._open()
        conn = safe._conn
        try:
            conn.execute("BEGIN IMMEDIATE")
        except DB_ERRORS as e:
            safe.close()
            raise PersistenceFailure(f"Cannot begin transaction: {e}") from e

        self._local.conn = conn
        try:
            yield conn
        except BaseException:
            self._local.conn = None
            try:
                conn.rollback()
            finally:
                safe.close()
            raise
        self._local.conn = None
        try:
            conn.commit()
        except DB_ERRORS as e:
            raise PersistenceFailure(f"Commit failed: {e}") from e
        finally:
            safe.close()

    def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run one statement, inside the open transaction if there is one."""
        try:
            if self.in_transaction:
                return self._local.conn.execute(sql, params).fetchall()
            with self._open() as conn:
                return conn.execute(sql, params).fetchall()
        except DB_ERRORS as e:
            raise PersistenceFailure(f"Query failed: {e}") from e

    def ping(self) -> None:
        """Raise PersistenceFailure unless the database is reachable."""
        self._execute("SELECT 1")

    # -------------------------------------------------------------------------
    # Cluster snapshots
    # -------------------------------------------------------------------------

    def load_current(self, pair_id: str) -> Optional[ClusterSnapshot]:
        rows = self._execute("SELECT * FROM scan_cluster WHERE pair_id = ?", (pair_id,))
        if not rows:
            return None
        row = rows[0]
        node_rows = self._execute(
            "SELECT * FROM scan_cluster_nodes WHERE pair_id = ?", (pair_id,)
        )
        nodes = {r["host_id"]: self._row_to_node(r) for r in node_rows}
        return ClusterSnapshot(
            pair_id=row["pair_id"],
            cluster_name=row["cluster_name"],
            stonith_enabled=bool(row["stonith_enabled"]),
            stonith_max_attempts=int(row["stonith_max_attempts"]),
            raw_config_blob=row["raw_config"],
            nodes=nodes,
            recorded_at=datetime.fromisoformat(row["modified_date"]),
        )

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> NodeState:
        return NodeState(
            host_id=row["host_id"],
            node_name=row["node_name"],
            scheduler_internal_id=row["scheduler_internal_id"],
            in_membership=bool(row["in_membership"]),
            is_daemon_member=bool(row["is_daemon_member"]),
            is_cluster_joined=bool(row["is_cluster_joined"]),
            maintenance_mode=bool(row["maintenance_mode"]),
        )

    def save_current_and_history(self, snapshot: ClusterSnapshot) -> None:
        """Upsert the current rows and append history rows, atomically."""
        now = _now()
        cluster_values = (
            snapshot.pair_id,
            snapshot.cluster_name,
            int(snapshot.stonith_enabled),
            int(snapshot.stonith_max_attempts),
            snapshot.raw_config_blob,
            now,
        )
        with self.transaction():
            self._execute(
                """
                INSERT INTO scan_cluster (
                    pair_id, cluster_name, stonith_enabled, stonith_max_attempts,
                    raw_config, modified_date
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(pair_id) DO UPDATE SET
                    cluster_name = excluded.cluster_name,
                    stonith_enabled = excluded.stonith_enabled,
                    stonith_max_attempts = excluded.stonith_max_attempts,
                    raw_config = excluded.raw_config,
                    modified_date = excluded.modified_date
                """,
                cluster_values,
            )
            self._execute(
                """
                INSERT INTO history_scan_cluster (
                    pair_id, cluster_name, stonith_enabled, stonith_max_attempts,
                    raw_config, modified_date
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                cluster_values,
            )
            for node in snapshot.nodes.values():
                node_values = (
                    node.host_id,
                    snapshot.pair_id,
                    node.node_name,
                    node.scheduler_internal_id,
                    int(node.in_membership),
                    int(node.is_daemon_member),
                    int(node.is_cluster_joined),
                    int(node.maintenance_mode),
                    now,
                )
                self._execute(
                    """
                    INSERT INTO scan_cluster_nodes (
                        host_id, pair_id, node_name, scheduler_internal_id,
                        in_membership, is_daemon_member, is_cluster_joined,
                        maintenance_mode, modified_date
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(host_id) DO UPDATE SET
                        pair_id = excluded.pair_id,
                        node_name = excluded.node_name,
                        scheduler_internal_id = excluded.scheduler_internal_id,
                        in_membership = excluded.in_membership,
                        is_daemon_member = excluded.is_daemon_member,
                        is_cluster_joined = excluded.is_cluster_joined,
                        maintenance_mode = excluded.maintenance_mode,
                        modified_date = excluded.modified_date
                    """,
                    node_values,
                )
                self._execute(
                    """
                    INSERT INTO history_scan_cluster_nodes (
                        host_id, pair_id, node_name, scheduler_internal_id,
                        in_membership, is_daemon_member, is_cluster_joined,
                        maintenance_mode, modified_date
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    node_values,
                )
        logger.debug(f"[Store] Saved snapshot for pair {snapshot.pair_id}")

    def history_count(self, pair_id: str) -> int:
        rows = self._execute(
            "SELECT COUNT(*) AS n FROM history_scan_cluster WHERE pair_id = ?", (pair_id,)
        )
        return int(rows[0]["n"])

    def node_history(self, host_id: str) -> list[NodeState]:
        rows = self._execute(
            "SELECT * FROM history_scan_cluster_nodes WHERE host_id = ? ORDER BY history_id",
            (host_id,),
        )
        return [self._row_to_node(r) for r in rows]

    # -------------------------------------------------------------------------
    # Fence-delay preference
    # -------------------------------------------------------------------------

    def load_fence_preference(self, pair_id: str) -> Optional[FenceDelayPreference]:
        rows = self._execute(
            "SELECT pair_id, preferred_node_id FROM fence_preferences WHERE pair_id = ?",
            (pair_id,),
        )
        if not rows:
            return None
        return FenceDelayPreference(
            pair_id=rows[0]["pair_id"],
            preferred_node_id=rows[0]["preferred_node_id"],
        )

    def save_fence_preference(self, preference: FenceDelayPreference) -> None:
        now = _now()
        with self.transaction():
            self._execute(
                """
                INSERT INTO fence_preferences (pair_id, preferred_node_id, modified_date)
                VALUES (?, ?, ?)
                ON CONFLICT(pair_id) DO UPDATE SET
                    preferred_node_id = excluded.preferred_node_id,
                    modified_date = excluded.modified_date
                """,
                (preference.pair_id, preference.preferred_node_id, now),
            )
            self._execute(
                """
                INSERT INTO history_fence_preferences (pair_id, preferred_node_id, modified_date)
                VALUES (?, ?, ?)
                """,
                (preference.pair_id, preference.preferred_node_id, now),
            )

    def fence_preference_writes(self, pair_id: str) -> int:
        rows = self._execute(
            "SELECT COUNT(*) AS n FROM history_fence_preferences WHERE pair_id = ?",
            (pair_id,),
        )
        return int(rows[0]["n"])

    # -------------------------------------------------------------------------
    # Alert gates
    # -------------------------------------------------------------------------

    def load_gate(self, key: GateKey) -> bool:
        rows = self._execute(
            "SELECT 1 FROM alert_sent WHERE set_by = ? AND record_locator = ? AND name = ?",
            (key.set_by, key.record_locator, key.name),
        )
        return bool(rows)

    def save_gate(self, key: GateKey, active: bool) -> None:
        if active:
            self._execute(
                """
                INSERT INTO alert_sent (set_by, record_locator, name, modified_date)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(set_by, record_locator, name) DO UPDATE SET
                    modified_date = excluded.modified_date
                """,
                (key.set_by, key.record_locator, key.name, _now()),
            )
        else:
            self._execute(
                "DELETE FROM alert_sent WHERE set_by = ? AND record_locator = ? AND name = ?",
                (key.set_by, key.record_locator, key.name),
            )

    def active_gates(self, set_by: str | None = None) -> list[GateKey]:
        if set_by is None:
            rows = self._execute("SELECT * FROM alert_sent ORDER BY modified_date")
        else:
            rows = self._execute(
                "SELECT * FROM alert_sent WHERE set_by = ? ORDER BY modified_date", (set_by,)
            )
        return [GateKey(r["set_by"], r["record_locator"], r["name"]) for r in rows]

    # -------------------------------------------------------------------------
    # Alerts queue
    # -------------------------------------------------------------------------

    def record_alert(self, host_id: str, alert: Alert) -> None:
        self._execute(
            """
            INSERT INTO alerts (
                host_id, set_by, level, message_key, message, variables,
                sort_position, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                host_id,
                alert.set_by,
                int(alert.level),
                alert.message_key,
                alert.message,
                json.dumps(alert.variables, sort_keys=True, default=str),
                alert.sort_position,
                alert.created_at.isoformat(),
            ),
        )

    def queued_alerts(self, host_id: str | None = None) -> list[dict[str, Any]]:
        if host_id is None:
            rows = self._execute("SELECT * FROM alerts ORDER BY alert_id")
        else:
            rows = self._execute(
                "SELECT * FROM alerts WHERE host_id = ? ORDER BY alert_id", (host_id,)
            )
        result = []
        for r in rows:
            item = dict(r)
            item["variables"] = json.loads(item["variables"])
            result.append(item)
        return result

    # -------------------------------------------------------------------------
    # Servers (workload registry source)
    # -------------------------------------------------------------------------

    def upsert_server(
        self,
        server_uuid: str,
        server_name: str,
        pair_id: str,
        host_id: str | None,
        server_state: str,
    ) -> None:
        self._execute(
            """
            INSERT INTO servers (
                server_uuid, server_name, pair_id, host_id, server_state, modified_date
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(server_uuid) DO UPDATE SET
                server_name = excluded.server_name,
                pair_id = excluded.pair_id,
                host_id = excluded.host_id,
                server_state = excluded.server_state,
                modified_date = excluded.modified_date
            """,
            (server_uuid, server_name, pair_id, host_id, server_state, _now()),
        )

    def list_servers(self, pair_id: str) -> list[dict[str, Any]]:
        rows = self._execute(
            "SELECT server_uuid, server_name, host_id, server_state FROM servers WHERE pair_id = ?",
            (pair_id,),
        )
        return [dict(r) for r in rows]
