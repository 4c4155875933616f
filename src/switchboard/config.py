"""Settings loaded from <data_dir>/config.toml with SWITCHBOARD_* env overrides."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from switchboard.delegation.aggregator import STRATEGIES

DEFAULT_DATA_DIR = Path.home() / ".switchboard"

AGGREGATION_STRATEGIES = tuple(STRATEGIES)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


@dataclass
class Settings:
    """Runtime settings for the delegation engine and its adapters."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    max_delegation_depth: int = 10
    max_parallel_queries: int = 3
    enable_parallel_routing: bool = False
    aggregation_strategy: str = "best-confidence"
    default_timeout_ms: float | None = None
    enable_circuit_breaker: bool = True
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout_ms: float = 30000.0
    log_level: str = "INFO"
    log_format: str = "text"

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.max_delegation_depth < 1:
            raise ValueError(
                f"max_delegation_depth must be >= 1, got {self.max_delegation_depth}"
            )
        if self.max_parallel_queries < 1:
            raise ValueError(
                f"max_parallel_queries must be >= 1, got {self.max_parallel_queries}"
            )
        if self.aggregation_strategy not in AGGREGATION_STRATEGIES:
            raise ValueError(
                f"aggregation_strategy must be one of {AGGREGATION_STRATEGIES}, "
                f"got {self.aggregation_strategy!r}"
            )
        if self.default_timeout_ms is not None and self.default_timeout_ms <= 0:
            raise ValueError(
                f"default_timeout_ms must be positive, got {self.default_timeout_ms}"
            )
        if self.circuit_failure_threshold < 1:
            raise ValueError(
                f"circuit_failure_threshold must be >= 1, got {self.circuit_failure_threshold}"
            )
        if self.circuit_recovery_timeout_ms < 0:
            raise ValueError(
                "circuit_recovery_timeout_ms must be >= 0, "
                f"got {self.circuit_recovery_timeout_ms}"
            )
        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["data_dir"] = str(self.data_dir)
        return data


# env var -> (field, converter)
_ENV_MAP = {
    "SWITCHBOARD_MAX_DELEGATION_DEPTH": ("max_delegation_depth", int),
    "SWITCHBOARD_MAX_PARALLEL_QUERIES": ("max_parallel_queries", int),
    "SWITCHBOARD_ENABLE_PARALLEL_ROUTING": ("enable_parallel_routing", _parse_bool),
    "SWITCHBOARD_AGGREGATION_STRATEGY": ("aggregation_strategy", str),
    "SWITCHBOARD_DEFAULT_TIMEOUT_MS": ("default_timeout_ms", float),
    "SWITCHBOARD_ENABLE_CIRCUIT_BREAKER": ("enable_circuit_breaker", _parse_bool),
    "SWITCHBOARD_CIRCUIT_FAILURE_THRESHOLD": ("circuit_failure_threshold", int),
    "SWITCHBOARD_CIRCUIT_RECOVERY_TIMEOUT_MS": ("circuit_recovery_timeout_ms", float),
    "SWITCHBOARD_LOG_LEVEL": ("log_level", str),
    "SWITCHBOARD_LOG_FORMAT": ("log_format", str),
}


def load_settings(
    config_path: Path | None = None, env: dict[str, str] | None = None
) -> Settings:
    """
    Build Settings from defaults, config.toml and environment overrides.

    Args:
        config_path: Explicit TOML file; defaults to <data_dir>/config.toml
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings
    """
    env = dict(os.environ) if env is None else env
    values: dict[str, Any] = {}

    data_dir = env.get("SWITCHBOARD_DATA_DIR")
    if data_dir:
        values["data_dir"] = Path(data_dir)

    toml_path = config_path or Path(values.get("data_dir", DEFAULT_DATA_DIR)) / "config.toml"
    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        known = {f.name for f in fields(Settings)}
        for key, val in data.items():
            if key not in known:
                raise ValueError(f"Unknown setting in {toml_path}: {key}")
            values.setdefault(key, val)

    for env_key, (attr, convert) in _ENV_MAP.items():
        raw = env.get(env_key)
        if raw:
            values[attr] = convert(raw)

    return Settings(**values)
