"""Append-only bridge event log, the audit trail of every epoch.

Every completed lifecycle milestone produces a BridgeEvent that is
appended here. Events are immutable once written. The log serves as:
1. The ordered feed delivered to observers.
2. The audit trail for reconstructing what the coordinator did and when.

The log can be persisted to a JSONL file (one JSON object per line) and
loaded back. Loading is fail-closed: a record whose stored hash does not
match its recomputed canonical hash, or a duplicate event id, aborts the
load.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Optional

from stakedrop.models.events import BridgeEvent, BridgeEventKind, canonical_event_hash


class EventLog:
    """Append-only event log with optional file persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[BridgeEvent] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: BridgeEvent) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        with self._lock:
            if event.event_id in self._event_ids:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            if self._storage_path:
                self._append_to_file(event)
            self._events.append(event)
            self._event_ids.add(event.event_id)

    def events(self, kind: Optional[BridgeEventKind] = None) -> list[BridgeEvent]:
        """Return events, optionally filtered by kind."""
        with self._lock:
            if kind is None:
                return list(self._events)
            return [e for e in self._events if e.kind == kind]

    def events_for_epoch(
        self,
        epoch_id: int,
        kind: Optional[BridgeEventKind] = None,
    ) -> list[BridgeEvent]:
        return [e for e in self.events(kind) if e.epoch_id == epoch_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[BridgeEvent]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: BridgeEvent) -> None:
        """Append a single event to the JSONL file."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = canonical_event_hash(
                    data["event_id"],
                    data["kind"],
                    data["epoch_id"],
                    data["timestamp_utc"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = BridgeEvent(
                    event_id=event_id,
                    kind=BridgeEventKind(data["kind"]),
                    epoch_id=data["epoch_id"],
                    timestamp_utc=data["timestamp_utc"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)
