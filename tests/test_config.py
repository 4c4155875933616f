"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from switchboard.config import AGGREGATION_STRATEGIES, Settings, load_settings
from switchboard.delegation import STRATEGIES


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.max_delegation_depth == 10
        assert settings.max_parallel_queries == 3
        assert settings.enable_parallel_routing is False
        assert settings.aggregation_strategy == "best-confidence"
        assert settings.default_timeout_ms is None
        assert settings.enable_circuit_breaker is True
        assert settings.circuit_failure_threshold == 5
        assert settings.circuit_recovery_timeout_ms == 30000.0
        assert settings.config_path == settings.data_dir / "config.toml"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_delegation_depth": 0},
            {"max_parallel_queries": 0},
            {"aggregation_strategy": "majority-vote"},
            {"default_timeout_ms": -5},
            {"log_format": "xml"},
            {"circuit_failure_threshold": 0},
            {"circuit_recovery_timeout_ms": -1},
        ],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            Settings(**kwargs)

    def test_to_dict(self, tmp_path: Path) -> None:
        data = Settings(data_dir=tmp_path).to_dict()
        assert data["data_dir"] == str(tmp_path)
        assert data["aggregation_strategy"] == "best-confidence"

    def test_strategy_names_follow_registered_aggregators(self) -> None:
        assert AGGREGATION_STRATEGIES == tuple(STRATEGIES)
        for name in STRATEGIES:
            assert Settings(aggregation_strategy=name).aggregation_strategy == name


class TestLoadSettings:
    def test_no_file_gives_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(env={"SWITCHBOARD_DATA_DIR": str(tmp_path)})
        assert settings.data_dir == tmp_path
        assert settings.max_parallel_queries == 3

    def test_reads_config_toml(self, tmp_path: Path) -> None:
        (tmp_path / "config.toml").write_text(
            'enable_parallel_routing = true\n'
            'aggregation_strategy = "combine-answers"\n'
            "default_timeout_ms = 1500\n"
        )
        settings = load_settings(env={"SWITCHBOARD_DATA_DIR": str(tmp_path)})
        assert settings.enable_parallel_routing is True
        assert settings.aggregation_strategy == "combine-answers"
        assert settings.default_timeout_ms == 1500

    def test_explicit_path(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.toml"
        path.write_text("max_delegation_depth = 4\n")
        settings = load_settings(path, env={})
        assert settings.max_delegation_depth == 4

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        (tmp_path / "config.toml").write_text("max_parallel_queries = 2\n")
        settings = load_settings(
            env={
                "SWITCHBOARD_DATA_DIR": str(tmp_path),
                "SWITCHBOARD_MAX_PARALLEL_QUERIES": "5",
                "SWITCHBOARD_ENABLE_PARALLEL_ROUTING": "yes",
                "SWITCHBOARD_LOG_LEVEL": "DEBUG",
            }
        )
        assert settings.max_parallel_queries == 5
        assert settings.enable_parallel_routing is True
        assert settings.log_level == "DEBUG"

    def test_circuit_breaker_env(self, tmp_path: Path) -> None:
        settings = load_settings(
            env={
                "SWITCHBOARD_DATA_DIR": str(tmp_path),
                "SWITCHBOARD_ENABLE_CIRCUIT_BREAKER": "off",
                "SWITCHBOARD_CIRCUIT_FAILURE_THRESHOLD": "3",
                "SWITCHBOARD_CIRCUIT_RECOVERY_TIMEOUT_MS": "1500",
            }
        )
        assert settings.enable_circuit_breaker is False
        assert settings.circuit_failure_threshold == 3
        assert settings.circuit_recovery_timeout_ms == 1500.0

    def test_unknown_key_rejected(self, tmp_path: Path) -> None:
        (tmp_path / "config.toml").write_text("max_hops = 3\n")
        with pytest.raises(ValueError, match="Unknown setting"):
            load_settings(env={"SWITCHBOARD_DATA_DIR": str(tmp_path)})

    def test_invalid_env_value(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            load_settings(
                env={
                    "SWITCHBOARD_DATA_DIR": str(tmp_path),
                    "SWITCHBOARD_ENABLE_PARALLEL_ROUTING": "maybe",
                }
            )
