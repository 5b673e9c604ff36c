"""Background chain poller.

Calls ``Coordinator.poll()`` on a fixed interval so staking confirmation
and reward accrual are picked up without an operator in the loop. A poll
that fails is logged and remembered; the loop keeps running.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from stakedrop.bridge.coordinator import Coordinator
from stakedrop.errors import BridgeError
from stakedrop.models.results import ChainSnapshot

LOGGER = logging.getLogger(__name__)


class EpochPoller:
    """Periodic ``poll()`` driver on a daemon thread."""

    def __init__(self, coordinator: Coordinator, interval_seconds: Optional[float] = None) -> None:
        self._coordinator = coordinator
        self._interval = interval_seconds or coordinator.config.poll_interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.poll_count = 0
        self.last_snapshot: Optional[ChainSnapshot] = None
        self.last_error: Optional[BridgeError] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="stakedrop-poller")
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self._execute_once()
            self._stop_event.wait(self._interval)

    def _execute_once(self) -> None:
        try:
            snapshot = self._coordinator.poll()
        except BridgeError as exc:
            self.last_error = exc
            LOGGER.warning(
                "Chain poll failed: %s", exc,
                extra={"event": "poll_failed", "data": {"error": str(exc)}},
            )
            return
        finally:
            self.poll_count += 1
        self.last_error = None
        if snapshot is not None:
            self.last_snapshot = snapshot
            if snapshot.changes:
                LOGGER.info(
                    "Chain poll adopted: %s", ", ".join(snapshot.changes),
                    extra={"event": "poll_changes", "data": {"changes": snapshot.changes}},
                )
