"""Bridge configuration.

Parameters live in ``config/bridge_params.json``; a handful of operational
values can be overridden from the environment (or a ``.env`` file loaded
with python-dotenv):

    STAKEDROP_ADMIN_IDENTITY   admin identity passed to initialize_pool
    STAKEDROP_EVENT_LOG        path of the JSONL event log
    STAKEDROP_ADAPTER_TIMEOUT  per-call adapter timeout, seconds
    STAKEDROP_POLL_INTERVAL    background polling interval, seconds

Invalid values fail at load time with ValueError.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv


DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
CONFIG_FILENAME = "bridge_params.json"


@dataclass(frozen=True)
class EpochParams:
    """Defaults for new epochs."""
    max_participants: int = 100
    min_deposit: int = 10_000_000
    duration_seconds: int = 5 * 24 * 3600
    min_participants: int = 2

    def __post_init__(self) -> None:
        if self.min_participants < 2:
            raise ValueError("epoch.min_participants must be at least 2")
        if self.max_participants < self.min_participants:
            raise ValueError("epoch.max_participants must be >= min_participants")
        if self.min_deposit <= 0:
            raise ValueError("epoch.min_deposit must be positive")
        if self.duration_seconds <= 0:
            raise ValueError("epoch.duration_seconds must be positive")


@dataclass(frozen=True)
class RetryParams:
    """Bounded exponential backoff for transient adapter failures."""
    max_attempts: int = 4
    backoff_multiplier: float = 0.5
    backoff_max_seconds: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("retry.max_attempts must be at least 1")
        if self.backoff_multiplier < 0 or self.backoff_max_seconds < 0:
            raise ValueError("retry backoff values must be non-negative")


@dataclass(frozen=True)
class BridgeConfig:
    """Complete coordinator configuration."""
    admin_identity: str = "stakedrop-admin"
    epoch: EpochParams = EpochParams()
    retry: RetryParams = RetryParams()
    adapter_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 60.0
    event_log_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if not self.admin_identity:
            raise ValueError("admin_identity must not be empty")
        if self.adapter_timeout_seconds <= 0:
            raise ValueError("adapter_timeout_seconds must be positive")
        if self.poll_interval_seconds <= 0:
            raise ValueError("polling.interval_seconds must be positive")

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> BridgeConfig:
        epoch = params.get("epoch", {})
        retry = params.get("retry", {})
        polling = params.get("polling", {})
        event_log = params.get("event_log")
        return cls(
            admin_identity=params.get("admin_identity", cls.admin_identity),
            epoch=EpochParams(**epoch),
            retry=RetryParams(**retry),
            adapter_timeout_seconds=float(
                params.get("adapter_timeout_seconds", cls.adapter_timeout_seconds)
            ),
            poll_interval_seconds=float(
                polling.get("interval_seconds", cls.poll_interval_seconds)
            ),
            event_log_path=Path(event_log) if event_log else None,
        )

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> BridgeConfig:
        """Load bridge_params.json from a directory, then apply env overrides."""
        config_path = config_dir / CONFIG_FILENAME
        params = json.loads(config_path.read_text(encoding="utf-8"))
        return cls.from_dict(params).with_env_overrides(environ)

    @classmethod
    def load(
        cls,
        config_dir: Optional[Path] = None,
        dotenv_path: Optional[Path] = None,
    ) -> BridgeConfig:
        """Load the default (or given) config dir after reading a .env file."""
        load_dotenv(dotenv_path)
        return cls.from_config_dir(config_dir or DEFAULT_CONFIG_DIR, os.environ)

    def with_env_overrides(
        self,
        environ: Optional[Mapping[str, str]] = None,
    ) -> BridgeConfig:
        if environ is None:
            return self
        overrides: dict[str, Any] = {}
        if environ.get("STAKEDROP_ADMIN_IDENTITY"):
            overrides["admin_identity"] = environ["STAKEDROP_ADMIN_IDENTITY"]
        if environ.get("STAKEDROP_EVENT_LOG"):
            overrides["event_log_path"] = Path(environ["STAKEDROP_EVENT_LOG"])
        if environ.get("STAKEDROP_ADAPTER_TIMEOUT"):
            overrides["adapter_timeout_seconds"] = _parse_float(
                environ["STAKEDROP_ADAPTER_TIMEOUT"], "STAKEDROP_ADAPTER_TIMEOUT",
            )
        if environ.get("STAKEDROP_POLL_INTERVAL"):
            overrides["poll_interval_seconds"] = _parse_float(
                environ["STAKEDROP_POLL_INTERVAL"], "STAKEDROP_POLL_INTERVAL",
            )
        return replace(self, **overrides) if overrides else self

    def summary(self) -> dict[str, Any]:
        return {
            "admin_identity": self.admin_identity,
            "epoch": {
                "max_participants": self.epoch.max_participants,
                "min_deposit": self.epoch.min_deposit,
                "duration_seconds": self.epoch.duration_seconds,
                "min_participants": self.epoch.min_participants,
            },
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "backoff_multiplier": self.retry.backoff_multiplier,
                "backoff_max_seconds": self.retry.backoff_max_seconds,
            },
            "adapter_timeout_seconds": self.adapter_timeout_seconds,
            "poll_interval_seconds": self.poll_interval_seconds,
            "event_log": str(self.event_log_path) if self.event_log_path else None,
        }


def _parse_float(raw: str, name: str) -> float:
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
