"""Tests for structured logging: epoch/stage context and the JSON audit file."""

import json
import logging
from pathlib import Path
from typing import Iterator

import pytest

from stakedrop.logging_utils import (
    ConsoleFormatter,
    EpochContextFilter,
    StructuredJsonFormatter,
    configure_logging,
    current_context,
    log_context,
)

from conftest import Harness


def _record(message: str = "hello", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("stakedrop.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    EpochContextFilter().filter(record)
    return record


@pytest.fixture
def audit_file(tmp_path: Path) -> Iterator[Path]:
    path = tmp_path / "logs" / "audit.jsonl"
    logger = configure_logging(path, level=logging.DEBUG)
    yield path
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


def _lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestLogContext:
    def test_nested_blocks_extend_and_restore(self) -> None:
        assert current_context() == {}
        with log_context(epoch_id=3):
            with log_context(stage="lock_pool", epoch_id=None):
                assert current_context() == {"epoch_id": 3, "stage": "lock_pool"}
            assert current_context() == {"epoch_id": 3}
        assert current_context() == {}

    def test_filter_fills_missing_fields(self) -> None:
        with log_context(epoch_id=7, stage="poll"):
            record = _record()
        assert (record.epoch_id, record.stage) == (7, "poll")
        assert _record().epoch_id is None


class TestFormatters:
    def test_json_data_starts_from_context(self) -> None:
        with log_context(epoch_id=2, stage="finalize_epoch"):
            record = _record("winner", event="winner_selected", data={"index": 1})
        line = json.loads(StructuredJsonFormatter().format(record))
        assert line["event"] == "winner_selected"
        assert line["message"] == "winner"
        assert line["data"] == {"epoch_id": 2, "stage": "finalize_epoch", "index": 1}
        assert line["ts"].endswith("+00:00")

    def test_record_data_wins_over_context(self) -> None:
        with log_context(stage="poll"):
            record = _record(data={"stage": "read_privacy_state"})
        line = json.loads(StructuredJsonFormatter().format(record))
        assert line["data"]["stage"] == "read_privacy_state"

    def test_console_prefix(self) -> None:
        formatter = ConsoleFormatter("%(message)s")
        with log_context(epoch_id=1, stage="lock_pool"):
            assert formatter.format(_record("locked")) == "[1/lock_pool] locked"
        assert formatter.format(_record("idle")) == "idle"


class TestConfigureLogging:
    def test_reconfigure_replaces_handlers(self, tmp_path: Path) -> None:
        logger = configure_logging(level=logging.INFO)
        logger = configure_logging(tmp_path / "a.jsonl", level=logging.INFO)
        assert len(logger.handlers) == 2
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_coordinator_stages_are_tagged(self, audit_file: Path, harness: Harness) -> None:
        people = harness.run_to_distributing()
        harness.coordinator.process_withdrawal(people[0].commitment, people[0].secret)
        for handler in logging.getLogger("stakedrop").handlers:
            handler.flush()

        lines = _lines(audit_file)
        finalizing = [l for l in lines if l["message"].startswith("Finalizing epoch")]
        assert finalizing and finalizing[0]["data"]["stage"] == "finalize_epoch"
        assert finalizing[0]["data"]["epoch_id"] == 1
        assert any(l["data"].get("stage") == "lock_pool" for l in lines)
