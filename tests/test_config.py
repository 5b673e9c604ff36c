"""Tests for bridge configuration loading and overrides."""

from pathlib import Path

import pytest

from stakedrop.config import BridgeConfig, EpochParams, RetryParams


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


class TestConfigFile:
    def test_loads_shipped_params(self) -> None:
        config = BridgeConfig.from_config_dir(CONFIG_DIR)
        assert config.epoch.max_participants == 100
        assert config.epoch.min_deposit == 10_000_000
        assert config.epoch.duration_seconds == 5 * 24 * 3600
        assert config.epoch.min_participants == 2
        assert config.retry.max_attempts >= 1
        assert config.event_log_path is None

    def test_summary_round_trips_key_values(self) -> None:
        summary = BridgeConfig.from_config_dir(CONFIG_DIR).summary()
        assert summary["epoch"]["max_participants"] == 100
        assert summary["event_log"] is None

    def test_from_dict_defaults(self) -> None:
        config = BridgeConfig.from_dict({})
        assert config == BridgeConfig()


class TestValidation:
    def test_min_participants_below_two(self) -> None:
        with pytest.raises(ValueError):
            EpochParams(min_participants=1)

    def test_max_below_min(self) -> None:
        with pytest.raises(ValueError):
            EpochParams(max_participants=1)

    def test_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryParams(max_attempts=0)

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError):
            BridgeConfig(adapter_timeout_seconds=0)


class TestEnvironmentOverrides:
    def test_overrides_apply(self, tmp_path: Path) -> None:
        config = BridgeConfig.from_config_dir(CONFIG_DIR, environ={
            "STAKEDROP_ADMIN_IDENTITY": "ops-team",
            "STAKEDROP_EVENT_LOG": str(tmp_path / "events.jsonl"),
            "STAKEDROP_ADAPTER_TIMEOUT": "12.5",
            "STAKEDROP_POLL_INTERVAL": "5",
        })
        assert config.admin_identity == "ops-team"
        assert config.event_log_path == tmp_path / "events.jsonl"
        assert config.adapter_timeout_seconds == 12.5
        assert config.poll_interval_seconds == 5.0

    def test_bad_number_rejected(self) -> None:
        with pytest.raises(ValueError, match="STAKEDROP_ADAPTER_TIMEOUT"):
            BridgeConfig().with_env_overrides({"STAKEDROP_ADAPTER_TIMEOUT": "soon"})

    def test_dotenv_file_loaded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        # Register the variable with monkeypatch so teardown removes it.
        monkeypatch.setenv("STAKEDROP_ADMIN_IDENTITY", "placeholder")
        monkeypatch.delenv("STAKEDROP_ADMIN_IDENTITY")
        env_file = tmp_path / ".env"
        env_file.write_text("STAKEDROP_ADMIN_IDENTITY=from-dotenv\n", encoding="utf-8")

        config = BridgeConfig.load(CONFIG_DIR, dotenv_path=env_file)
        assert config.admin_identity == "from-dotenv"
