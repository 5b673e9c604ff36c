"""Bridge lifecycle events.

A BridgeEvent is an immutable fact recorded when a lifecycle milestone
completes. Observers (UI, logging, audit) learn about state changes from
events rather than by polling coordinator internals.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


class BridgeEventKind(str, enum.Enum):
    """Classification of bridge lifecycle events."""
    EPOCH_INITIALIZED = "epoch_initialized"
    DEPOSIT_DETECTED = "deposit_detected"
    POOL_LOCKED = "pool_locked"
    STAKING_INITIATED = "staking_initiated"
    STAKING_CONFIRMED = "staking_confirmed"
    YIELD_UPDATED = "yield_updated"
    RANDOMNESS_PUBLISHED = "randomness_published"
    WINNER_SELECTED = "winner_selected"
    EPOCH_FINALIZED = "epoch_finalized"
    WITHDRAWAL_PROCESSED = "withdrawal_processed"
    EPOCH_COMPLETED = "epoch_completed"


def canonical_event_hash(
    event_id: str,
    kind: str,
    epoch_id: int,
    timestamp_utc: str,
    payload: dict[str, Any],
) -> str:
    """SHA-256 over the canonical JSON form of an event's fields."""
    canonical = json.dumps(
        {
            "event_id": event_id,
            "kind": kind,
            "epoch_id": epoch_id,
            "timestamp_utc": timestamp_utc,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class BridgeEvent:
    """A single immutable lifecycle event.

    Payload values must be JSON-serializable (amounts are ints, commitments
    and transaction references are strings).
    """
    event_id: str
    kind: BridgeEventKind
    epoch_id: int
    timestamp_utc: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        kind: BridgeEventKind,
        epoch_id: int,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> BridgeEvent:
        """Create a new event with its canonical hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return BridgeEvent(
            event_id=event_id,
            kind=kind,
            epoch_id=epoch_id,
            timestamp_utc=ts_str,
            payload=payload,
            event_hash=canonical_event_hash(
                event_id, kind.value, epoch_id, ts_str, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "epoch_id": self.epoch_id,
            "timestamp_utc": self.timestamp_utc,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }
