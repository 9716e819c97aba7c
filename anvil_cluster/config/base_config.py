"""Typed configuration for the scan agent.

Values are layered: dataclass defaults, then the ``agent:`` section of the
YAML config file, then ``ANVIL_SCAN_*`` environment variables. Command-line
flags are applied last by the CLI.

Usage:
    from anvil_cluster.config.base_config import ScanAgentConfig

    config = ScanAgentConfig.from_mapping(yaml_config.get("agent", {}))
    config = ScanAgentConfig.from_env(base=config)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, ClassVar, Mapping, TypeVar

from anvil_cluster.errors import StartupFailure

T = TypeVar("T", bound="BaseAgentConfig")

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class BaseAgentConfig:
    """Fields and env-var helpers shared by periodically scheduled agents.

    Subclasses should:
    1. Override `_env_prefix` for their specific env var namespace
    2. Add agent-specific fields as dataclass fields
    3. Implement `from_env()` using the helper methods
    """

    _env_prefix: ClassVar[str] = "ANVIL"

    # Whether the agent runs at all (a disabled agent exits 0 immediately)
    enabled: bool = True

    # Seconds between passes when not run with --once
    check_interval_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Environment Variable Helpers
    # -------------------------------------------------------------------------

    @classmethod
    def _make_env_key(cls, suffix: str) -> str:
        return f"{cls._env_prefix}_{suffix}"

    @classmethod
    def _get_env_bool(cls, suffix: str, default: bool) -> bool:
        """Get boolean from environment variable.

        Recognizes: "true", "1", "yes", "on" as True (case-insensitive).
        All other values → False.
        """
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        return value.lower() in _TRUE_VALUES

    @classmethod
    def _get_env_int(cls, suffix: str, default: int) -> int:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        try:
            return int(value)
        except (ValueError, TypeError):
            return default

    @classmethod
    def _get_env_float(cls, suffix: str, default: float) -> float:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        try:
            return float(value)
        except (ValueError, TypeError):
            return default

    @classmethod
    def _get_env_str(cls, suffix: str, default: str) -> str:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        return value.strip()

    @classmethod
    def _get_env_list(
        cls,
        suffix: str,
        default: list[str] | None = None,
        separator: str = " ",
    ) -> list[str]:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return list(default) if default is not None else []
        return [item.strip() for item in value.split(separator) if item.strip()]

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_mapping(cls: type[T], values: Mapping[str, Any] | None) -> T:
        """Build a config from a mapping (e.g. a YAML section).

        Unknown keys are ignored; values are coerced to the default's type.

        Raises:
            StartupFailure: If a value cannot be coerced.
        """
        config = cls()
        if not values:
            return config
        updates = {}
        for f in fields(cls):
            if f.name.startswith("_") or f.name not in values:
                continue
            try:
                updates[f.name] = _coerce(getattr(config, f.name), values[f.name])
            except (ValueError, TypeError) as e:
                raise StartupFailure(
                    f"Invalid value for agent.{f.name}: {values[f.name]!r} ({e})"
                ) from e
        return replace(config, **updates)

    @classmethod
    def from_env(cls: type[T], base: T | None = None) -> T:
        base = base if base is not None else cls()
        return replace(
            base,
            enabled=cls._get_env_bool("ENABLED", base.enabled),
            check_interval_seconds=cls._get_env_float(
                "CHECK_INTERVAL", base.check_interval_seconds
            ),
        )

    # -------------------------------------------------------------------------
    # Utility Methods
    # -------------------------------------------------------------------------

    def is_enabled(self) -> bool:
        return self.enabled

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for logging/serialization."""
        result = {}
        for f in fields(self):
            if not f.name.startswith("_"):
                value = getattr(self, f.name)
                result[f.name] = str(value) if isinstance(value, Path) else value
        return result


def _coerce(default: Any, value: Any) -> Any:
    if value is None:
        return default
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.lower() in _TRUE_VALUES
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, Path):
        return Path(value)
    if isinstance(default, list):
        return value.split() if isinstance(value, str) else list(value)
    return value


@dataclass
class ScanAgentConfig(BaseAgentConfig):
    """Configuration for the cluster scan agent."""

    _env_prefix: ClassVar[str] = "ANVIL_SCAN"

    db_path: Path = Path("/var/lib/anvil/scan_cluster.db")

    # Resource-manager query returning the CIB as XML
    cib_command: list[str] = field(default_factory=lambda: ["pcs", "cluster", "cib"])
    collect_timeout_seconds: float = 30.0

    # Optional JSON webhook for alerts (in addition to the alerts table)
    webhook_url: str = ""
    webhook_timeout_seconds: float = 10.0

    require_root: bool = True

    # Exit 2 instead of 0 when this host is not a cluster member
    strict_membership_exit: bool = False

    # Push the preference into the stonith devices that fence the local node
    apply_fence_delay: bool = False
    fence_delay_seconds: int = 15
    stonith_update_command: list[str] = field(
        default_factory=lambda: ["pcs", "stonith", "update"]
    )

    pid_file: Path = Path("/run/anvil/scan-cluster.pid")
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, base: ScanAgentConfig | None = None) -> ScanAgentConfig:
        base = super().from_env(base)
        return replace(
            base,
            db_path=Path(cls._get_env_str("DB_PATH", str(base.db_path))),
            cib_command=cls._get_env_list("CIB_COMMAND", base.cib_command),
            collect_timeout_seconds=cls._get_env_float(
                "COLLECT_TIMEOUT", base.collect_timeout_seconds
            ),
            webhook_url=cls._get_env_str("WEBHOOK_URL", base.webhook_url),
            webhook_timeout_seconds=cls._get_env_float(
                "WEBHOOK_TIMEOUT", base.webhook_timeout_seconds
            ),
            require_root=cls._get_env_bool("REQUIRE_ROOT", base.require_root),
            strict_membership_exit=cls._get_env_bool(
                "STRICT_MEMBERSHIP", base.strict_membership_exit
            ),
            apply_fence_delay=cls._get_env_bool("APPLY_FENCE_DELAY", base.apply_fence_delay),
            fence_delay_seconds=cls._get_env_int("FENCE_DELAY", base.fence_delay_seconds),
            pid_file=Path(cls._get_env_str("PID_FILE", str(base.pid_file))),
            log_level=cls._get_env_str("LOG_LEVEL", base.log_level).upper(),
        )
