#!/usr/bin/env python3
"""scan-cluster - record the pair's cluster state and assert fence-delay preference.

Usage:
    scan-cluster --once                 # one pass, exit with its code
    scan-cluster                        # pass every check_interval_seconds
    scan-cluster --status               # show what is recorded, run nothing
    scan-cluster --once --strict-membership
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

from anvil_cluster.config.base_config import ScanAgentConfig
from anvil_cluster.config.node_identity import NodeIdentity, load_config_file
from anvil_cluster.coordination.agent import AgentDriver, ExitCode
from anvil_cluster.coordination.pass_guard import PassGuard
from anvil_cluster.db.store import SQLiteStateStore
from anvil_cluster.errors import PersistenceFailure, StartupFailure

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scan-cluster",
        description="Scan the Anvil! pair's cluster state and coordinate fence delay",
    )
    parser.add_argument("--config", type=Path, help="Path to anvil_cluster.yaml")
    parser.add_argument("--db", type=Path, help="Override the database path")
    parser.add_argument(
        "--strict-membership",
        action="store_true",
        help="Exit 2 when this host is not a cluster member",
    )
    parser.add_argument("--once", action="store_true", help="Run one pass and exit")
    parser.add_argument("--status", action="store_true", help="Show recorded state and exit")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only")
    return parser


def load_agent_config(raw: dict[str, Any], args: argparse.Namespace) -> ScanAgentConfig:
    """Defaults, then the YAML 'agent' section, then environment, then flags."""
    config = ScanAgentConfig.from_env(ScanAgentConfig.from_mapping(raw.get("agent")))
    if args.db is not None:
        config.db_path = args.db
    if args.strict_membership:
        config.strict_membership_exit = True
    return config


def configure_logging(args: argparse.Namespace, config: ScanAgentConfig | None = None) -> None:
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    elif config is not None:
        level = getattr(logging, config.log_level.upper(), logging.INFO)
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )


def show_status(config: ScanAgentConfig, identity: NodeIdentity) -> int:
    store = SQLiteStateStore(config.db_path)
    try:
        snapshot = store.load_current(identity.pair_id)
        preference = store.load_fence_preference(identity.pair_id)
        gates = store.active_gates()
    except PersistenceFailure as e:
        logger.error(f"Cannot read {config.db_path}: {e}")
        return ExitCode.FAILURE

    status = {
        "host_id": identity.host_id,
        "node_name": identity.node_name,
        "pair_id": identity.pair_id,
        "peer_host_id": identity.peer_host_id,
        "snapshot": snapshot.to_dict() if snapshot else None,
        "fence_delay_preferred": preference.preferred_node_id if preference else None,
        "active_alerts": [str(key) for key in gates],
    }
    print(json.dumps(status, indent=2))
    return ExitCode.OK


def run(args: argparse.Namespace) -> int:
    configure_logging(args)
    try:
        raw = load_config_file(args.config)
        config = load_agent_config(raw, args)
        configure_logging(args, config)
        identity = NodeIdentity.resolve(raw)
    except StartupFailure as e:
        logger.error(str(e))
        return ExitCode.FAILURE

    logger.debug(f"Agent config: {config.to_dict()}")
    if args.status:
        return show_status(config, identity)

    if not config.is_enabled():
        logger.info("scan-cluster is disabled in config, nothing to do")
        return ExitCode.OK

    driver = AgentDriver.from_config(config, identity)
    guard = PassGuard(config.pid_file)
    if not guard.acquire():
        return ExitCode.OK
    try:
        if args.once:
            return driver.run_pass().exit_code
        while True:
            outcome = driver.run_pass()
            if outcome.exit_code != ExitCode.OK:
                logger.warning(f"Pass ended in {outcome.state.value} ({outcome.exit_code})")
            time.sleep(config.check_interval_seconds)
    except KeyboardInterrupt:
        logger.info("scan-cluster stopped by user")
        return ExitCode.OK
    finally:
        guard.release()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    sys.exit(int(run(args)))


if __name__ == "__main__":
    main()
