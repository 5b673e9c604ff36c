"""Tests for the background chain poller."""

import time

from stakedrop.bridge.poller import EpochPoller
from stakedrop.errors import InconsistentState

from conftest import Harness


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestExecuteOnce:
    def test_no_epoch_is_quiet(self, harness: Harness) -> None:
        poller = EpochPoller(harness.coordinator, interval_seconds=1)
        poller._execute_once()
        assert poller.poll_count == 1
        assert poller.last_error is None
        assert poller.last_snapshot is None

    def test_records_snapshot(self, harness: Harness) -> None:
        harness.coordinator.start_epoch(min_deposit=100)
        harness.deposit(0)
        poller = EpochPoller(harness.coordinator, interval_seconds=1)
        poller._execute_once()
        assert poller.last_snapshot is not None
        assert poller.last_snapshot.privacy.participant_count == 1

    def test_remembers_errors(self, harness: Harness) -> None:
        harness.coordinator.start_epoch(min_deposit=100)
        harness.deposit(0)
        harness.privacy.lock_pool()
        poller = EpochPoller(harness.coordinator, interval_seconds=1)
        poller._execute_once()
        assert isinstance(poller.last_error, InconsistentState)
        assert poller.poll_count == 1


class TestThread:
    def test_start_and_stop(self, harness: Harness) -> None:
        harness.coordinator.start_epoch(min_deposit=100)
        harness.deposit(0)
        harness.deposit(1)
        harness.coordinator.lock_and_stake(admin_lock=True)
        harness.settlement.accrue_rewards(6)
        harness.settlement.claim_rewards()

        poller = EpochPoller(harness.coordinator, interval_seconds=0.01)
        poller.start()
        try:
            assert poller.running
            assert _wait_for(lambda: harness.coordinator.epoch.yield_amount == 6)
            assert _wait_for(lambda: poller.poll_count >= 2)
        finally:
            poller.stop()
        assert not poller.running

    def test_defaults_to_configured_interval(self, harness: Harness) -> None:
        poller = EpochPoller(harness.coordinator)
        assert poller._interval == harness.coordinator.config.poll_interval_seconds
