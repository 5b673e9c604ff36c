"""Shared fixtures: a coordinator wired to in-memory ledgers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Sequence

import pytest

from stakedrop.adapters.memory import InMemoryPrivacyChain, InMemorySettlementChain
from stakedrop.bridge.coordinator import Coordinator
from stakedrop.config import BridgeConfig, RetryParams
from stakedrop.crypto.commitment import commit
from stakedrop.models.events import BridgeEvent


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

# No backoff in tests; three attempts per adapter call.
FAST_RETRY = RetryParams(max_attempts=3, backoff_multiplier=0, backoff_max_seconds=0)


def make_config(**overrides) -> BridgeConfig:
    params = {"retry": FAST_RETRY, "adapter_timeout_seconds": 2.0}
    params.update(overrides)
    return BridgeConfig(**params)


def secret_for(index: int) -> str:
    return f"{index + 1:064x}"


@dataclass
class Participant:
    commitment: str
    secret: str
    amount: int


@dataclass
class Harness:
    coordinator: Coordinator
    settlement: InMemorySettlementChain
    privacy: InMemoryPrivacyChain
    journal: list[str]
    events: list[BridgeEvent] = field(default_factory=list)

    def deposit(self, index: int, amount: int = 100, fund: bool = True) -> Participant:
        secret = secret_for(index)
        commitment = commit(secret, amount)
        if fund:
            self.settlement.fund(commitment, amount)
        self.coordinator.register_deposit(commitment, amount, proof=f"deposit:{commitment}")
        return Participant(commitment, secret, amount)

    def run_to_distributing(
        self,
        amounts: Sequence[int] = (100, 100, 100),
        rewards: int = 5,
        beacon: str = "round:1",
    ) -> list[Participant]:
        self.coordinator.start_epoch(min_deposit=min(amounts))
        people = [self.deposit(i, amount) for i, amount in enumerate(amounts)]
        self.coordinator.lock_and_stake(admin_lock=True)
        if rewards:
            self.settlement.accrue_rewards(rewards)
            self.coordinator.claim_rewards()
        self.coordinator.publish_randomness(beacon)
        self.coordinator.finalize_epoch()
        return people

    def winner(self, people: Sequence[Participant]) -> Participant:
        epoch = self.coordinator.epoch
        return next(p for p in people if p.commitment == epoch.winner_commitment)

    def losers(self, people: Sequence[Participant]) -> list[Participant]:
        epoch = self.coordinator.epoch
        return [p for p in people if p.commitment != epoch.winner_commitment]


def build_harness(
    config: Optional[BridgeConfig] = None,
    auto_confirm_staking: bool = True,
) -> Harness:
    journal: list[str] = []
    settlement = InMemorySettlementChain(journal, auto_confirm_staking=auto_confirm_staking)
    privacy = InMemoryPrivacyChain(journal)
    coordinator = Coordinator(settlement, privacy, config or make_config())
    harness = Harness(coordinator, settlement, privacy, journal)
    coordinator.on_event(harness.events.append)
    return harness


@pytest.fixture
def harness() -> Iterator[Harness]:
    h = build_harness()
    yield h
    h.coordinator.close()
