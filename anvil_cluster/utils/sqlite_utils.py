"""SQLite connection utilities.

In Python < 3.12, ``sqlite3.Connection`` used as a context manager
(``with conn:``) only commits/rolls back but does NOT close the connection.
The scan agent is re-invoked every pass by the scheduler, so leaked handles
add up quickly on long-lived nodes. _SafeConnection wraps the connection to
auto-close on context exit.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Union


class _SafeConnection:
    """Wrapper around sqlite3.Connection that closes on context manager exit."""

    __slots__ = ("_conn",)

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # Proxy attribute access to the underlying connection
    def __getattr__(self, name: str):
        return getattr(self._conn, name)

    def __enter__(self) -> sqlite3.Connection:
        return self._conn

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if exc_type is None:
                self._conn.commit()
            else:
                self._conn.rollback()
        finally:
            self._conn.close()

    def close(self) -> None:
        self._conn.close()


def connect_safe(
    db_path: Union[str, Path],
    *,
    timeout: float = 30.0,
    busy_timeout_ms: int = 10000,
    wal_mode: bool = True,
    row_factory: Optional[type] = sqlite3.Row,
) -> _SafeConnection:
    """Open a SQLite connection with the pragmas the agent relies on.

    Returns a _SafeConnection wrapper that auto-closes on context manager exit.
    Can also be used without ``with`` - call ``.close()`` explicitly.

    - journal_mode=WAL so the dashboard can read while a pass writes
    - busy_timeout so both peers' passes wait on each other instead of failing
    - foreign_keys=ON
    - isolation_level=None: transactions are opened explicitly with BEGIN
      by the store, so one pass step commits or rolls back as a unit

    Args:
        db_path: Path to the SQLite database file.
        timeout: Connection timeout in seconds.
        busy_timeout_ms: How long a locked database is retried.
        wal_mode: Whether to enable WAL journal mode.
        row_factory: Row factory for the connection (default: sqlite3.Row).

    Returns:
        _SafeConnection wrapping configured sqlite3.Connection.
    """
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    if row_factory is not None:
        conn.row_factory = row_factory
    if wal_mode:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
    conn.execute("PRAGMA foreign_keys=ON")
    return _SafeConnection(conn)
