"""Tests for the append-only event log: ordering, replay protection, integrity."""

import json
from pathlib import Path

import pytest

from stakedrop.models.events import BridgeEvent, BridgeEventKind
from stakedrop.persistence.event_log import EventLog


def _event(n: int, kind: BridgeEventKind = BridgeEventKind.DEPOSIT_DETECTED, epoch_id: int = 1) -> BridgeEvent:
    return BridgeEvent.create(
        event_id=f"EVT-{n:08d}",
        kind=kind,
        epoch_id=epoch_id,
        payload={"n": n, "commitment": f"{n:064x}"},
    )


class TestEventRecord:
    def test_hash_is_stable(self) -> None:
        event = _event(1)
        assert event.event_hash.startswith("sha256:")
        again = BridgeEvent(**{**event.__dict__})
        assert again.event_hash == event.event_hash

    def test_to_dict_uses_kind_value(self) -> None:
        assert _event(1).to_dict()["kind"] == "deposit_detected"


class TestInMemoryLog:
    def test_append_and_order(self) -> None:
        log = EventLog()
        for n in range(1, 4):
            log.append(_event(n))
        assert [e.event_id for e in log.events()] == ["EVT-00000001", "EVT-00000002", "EVT-00000003"]
        assert log.count == 3
        assert log.last_event.event_id == "EVT-00000003"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event(1))

    def test_filters(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2, BridgeEventKind.POOL_LOCKED))
        log.append(_event(3, epoch_id=2))
        assert len(log.events(BridgeEventKind.DEPOSIT_DETECTED)) == 2
        assert len(log.events_for_epoch(1)) == 2
        assert len(log.events_for_epoch(1, BridgeEventKind.POOL_LOCKED)) == 1


class TestPersistence:
    def test_reload_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2, BridgeEventKind.POOL_LOCKED))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[1].kind == BridgeEventKind.POOL_LOCKED

    def test_tampered_record_detected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))

        record = json.loads(path.read_text(encoding="utf-8").strip())
        record["payload"]["n"] = 99
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_on_reload_detected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)
