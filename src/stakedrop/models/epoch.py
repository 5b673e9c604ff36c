"""Epoch and deposit models.

An epoch is one full collect -> stake -> select -> distribute cycle of the
lottery. All monetary values are integers in the smallest settlement-chain
unit. No floats in finance.

Invariants enforced by these models:
- Status follows the EPOCH_TRANSITIONS map (no skipped states, no going back).
- Commitments are unique within an epoch and kept in registration order.
- total_deposited and yield_amount never decrease and freeze once
  distribution begins.
- winner_commitment and randomness_seed are write-once.
- Deposit.withdrawn flips exactly once, from False to True.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from stakedrop.errors import DuplicateCommitment, InvalidTransition


class EpochStatus(str, enum.Enum):
    """Lifecycle state of an epoch.

    State machine:
        COLLECTING -> STAKING -> SELECTING_WINNER -> DISTRIBUTING -> COMPLETED
    """
    COLLECTING = "collecting"
    STAKING = "staking"
    SELECTING_WINNER = "selecting_winner"
    DISTRIBUTING = "distributing"
    COMPLETED = "completed"


EPOCH_TRANSITIONS: Dict[EpochStatus, frozenset] = {
    EpochStatus.COLLECTING: frozenset({EpochStatus.STAKING}),
    EpochStatus.STAKING: frozenset({EpochStatus.SELECTING_WINNER}),
    EpochStatus.SELECTING_WINNER: frozenset({EpochStatus.DISTRIBUTING}),
    EpochStatus.DISTRIBUTING: frozenset({EpochStatus.COMPLETED}),
    EpochStatus.COMPLETED: frozenset(),
}

# Amounts freeze once the pool starts paying out.
FROZEN_STATUSES = frozenset({EpochStatus.DISTRIBUTING, EpochStatus.COMPLETED})


@dataclass
class Deposit:
    """One participant's private position.

    The amount is sealed at deposit time and never revealed on the
    privacy chain; the coordinator needs it only for payout accounting.
    """
    commitment: str
    amount: int
    deposited_utc: Optional[datetime] = None
    withdrawn: bool = False
    is_winner: Optional[bool] = None
    claim_tx: Optional[str] = None
    claim_token: Optional[str] = None
    proof: Optional[str] = None
    payout_tx: Optional[str] = None
    paid_amount: int = 0

    @property
    def settled(self) -> bool:
        """Withdrawn and the settlement-chain payout is recorded."""
        return self.withdrawn and self.payout_tx is not None

    @property
    def payout_pending(self) -> bool:
        """Withdrawal flag set but the payout has not been confirmed yet."""
        return self.withdrawn and self.payout_tx is None

    def mark_withdrawn(self) -> None:
        if self.withdrawn:
            raise ValueError(f"Deposit {self.commitment} already marked withdrawn")
        self.withdrawn = True


@dataclass
class Epoch:
    """The coordinator's in-memory view of one epoch.

    Mutable, but status changes only through the EpochStateMachine and
    amounts only through the helper methods below.
    """
    epoch_id: int
    deadline: datetime
    max_participants: int
    min_deposit: int
    created_utc: Optional[datetime] = None
    status: EpochStatus = EpochStatus.COLLECTING
    participants: Dict[str, Deposit] = field(default_factory=dict)
    total_deposited: int = 0
    yield_amount: int = 0
    winner_commitment: Optional[str] = None
    winner_index: Optional[int] = None
    randomness_seed: Optional[str] = None
    beacon_round: Optional[str] = None
    staking_tx: Optional[str] = None
    staked_amount: int = 0
    staking_confirmed: bool = False
    finalize_tx: Optional[str] = None
    total_paid: int = 0
    privacy_init_tx: Optional[str] = None
    settlement_init_tx: Optional[str] = None

    def __post_init__(self) -> None:
        if self.epoch_id < 0:
            raise ValueError("epoch_id must be non-negative")
        if self.max_participants < 2:
            raise ValueError("max_participants must be at least 2")
        if self.min_deposit <= 0:
            raise ValueError("min_deposit must be positive")

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def commitments(self) -> List[str]:
        """Commitments in registration order (dicts preserve insertion)."""
        return list(self.participants.keys())

    def deposits(self) -> Iterator[Deposit]:
        return iter(self.participants.values())

    def get_deposit(self, commitment: str) -> Optional[Deposit]:
        return self.participants.get(commitment)

    def add_deposit(self, deposit: Deposit) -> None:
        if deposit.commitment in self.participants:
            raise DuplicateCommitment(
                f"Commitment already registered: {deposit.commitment}",
                self.status,
            )
        self._require_unfrozen("add deposit")
        self.participants[deposit.commitment] = deposit
        self.total_deposited += deposit.amount

    # ------------------------------------------------------------------
    # Amounts
    # ------------------------------------------------------------------

    def add_yield(self, amount: int) -> None:
        if amount < 0:
            raise ValueError("yield increments must be non-negative")
        self._require_unfrozen("update yield")
        self.yield_amount += amount

    def raise_yield_to(self, observed: int) -> int:
        """Adopt a chain-reported cumulative yield if it is higher.

        Returns the increase (0 when the observed value is not higher).
        """
        if observed <= self.yield_amount:
            return 0
        self._require_unfrozen("update yield")
        increase = observed - self.yield_amount
        self.yield_amount = observed
        return increase

    def record_payout(self, amount: int) -> None:
        self.total_paid += amount

    @property
    def pool_total(self) -> int:
        """What the closed pool owes its participants in total."""
        return self.total_deposited + self.yield_amount

    # ------------------------------------------------------------------
    # Write-once selection facts
    # ------------------------------------------------------------------

    def record_winner(self, commitment: str, index: int, randomness: str) -> None:
        if self.winner_commitment is not None and self.winner_commitment != commitment:
            raise InvalidTransition(
                f"Winner already recorded as {self.winner_commitment}; "
                "re-selection is not allowed",
                self.status,
            )
        if self.randomness_seed is not None and self.randomness_seed != randomness:
            raise InvalidTransition(
                "Randomness seed already recorded; it is immutable",
                self.status,
            )
        self.winner_commitment = commitment
        self.winner_index = index
        self.randomness_seed = randomness

    def _require_unfrozen(self, action: str) -> None:
        if self.status in FROZEN_STATUSES:
            raise InvalidTransition(
                f"Cannot {action}: amounts are frozen", self.status,
            )
