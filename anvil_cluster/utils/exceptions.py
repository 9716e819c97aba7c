"""Exception utilities for narrow exception catching.

This module provides exception type tuples for use in narrow exception
handlers, replacing broad `except Exception:` with specific exception types.
Programming errors (NameError, AttributeError, etc.) bubble up immediately
while expected operational errors are handled where they occur.

Usage:
    from anvil_cluster.utils.exceptions import DB_ERRORS, PROCESS_ERRORS

    try:
        conn.execute(sql)
    except DB_ERRORS as e:
        raise PersistenceFailure(...) from e
"""

from __future__ import annotations

import json
import logging
import sqlite3
import subprocess
import xml.etree.ElementTree as ET

# =============================================================================
# Exception Type Tuples
# =============================================================================

# Use for: HTTP webhooks, socket operations
NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)

# Use for: CIB XML, JSON variables, YAML values
PARSE_ERRORS: tuple[type[BaseException], ...] = (
    ET.ParseError,
    json.JSONDecodeError,
    KeyError,
    TypeError,
    ValueError,
)

# Use for: Database queries, connections, transactions
DB_ERRORS: tuple[type[BaseException], ...] = (
    sqlite3.Error,
)

# Use for: pcs / crm_mon / stonith invocations
PROCESS_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    subprocess.SubprocessError,
)


def log_and_continue(
    e: BaseException,
    context: str,
    logger_instance: logging.Logger,
    level: int = logging.WARNING,
) -> None:
    """Log exception with context, allowing the caller to continue.

    Use this for expected errors that should not abort the pass.

    Args:
        e: The exception that was caught
        context: Short description of the operation (e.g., "alert_webhook")
        logger_instance: Logger to use for logging
        level: Logging level (default: WARNING)
    """
    logger_instance.log(
        level,
        f"[{context}] Caught {type(e).__name__}: {e}",
    )
