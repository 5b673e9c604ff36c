"""Settlement-chain adapter contract.

The settlement chain holds and moves the pooled funds: custody, staking
delegation, reward claiming and payouts. The coordinator never touches
ledger-specific transaction construction; it talks to this Protocol only.

Contract requirements for implementations:
- Every call is safely retriable: idempotent at the ledger level or
  deduplicated adapter-side. The coordinator retries on AdapterFailure.
- Transient trouble (network, congestion, timeouts) raises AdapterFailure
  with transient=True. Permanent rejections raise AdapterFailure with
  transient=False.
- Calls return only after the chain has accepted the submission.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable


class SettlementStatus(str, enum.Enum):
    """Pool status as persisted by the settlement chain.

    The settlement chain has no selecting-winner phase of its own; it moves
    straight from STAKING to DISTRIBUTING when the epoch is finalized.
    """
    COLLECTING = "collecting"
    STAKING = "staking"
    DISTRIBUTING = "distributing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SettlementPoolState:
    """Snapshot of the pool as the settlement chain reports it."""
    total_deposited: int
    participant_count: int
    yield_amount: int
    winner_commitment: Optional[str]
    status: SettlementStatus


@dataclass(frozen=True)
class StakingReceipt:
    tx_ref: str
    staked_amount: int


@dataclass(frozen=True)
class RewardReceipt:
    tx_ref: str
    reward_amount: int


@runtime_checkable
class SettlementChainAdapter(Protocol):
    """Abstract contract for settlement-chain implementations."""

    def read_pool_state(self) -> SettlementPoolState:
        """Current pool state, as durably recorded on chain."""
        ...

    def initialize_pool(self, deadline: datetime, admin_identity: str) -> str:
        """Create the pool for a new epoch. Returns a transaction reference."""
        ...

    def initiate_staking(self, amount: int) -> StakingReceipt:
        """Delegate the pooled amount for staking."""
        ...

    def claim_rewards(self) -> RewardReceipt:
        """Withdraw accrued staking rewards into the pool."""
        ...

    def finalize_epoch(
        self,
        winner_commitment: str,
        winner_proof: str,
        yield_amount: int,
    ) -> str:
        """Record the winner and final yield; opens the pool for payouts."""
        ...

    def pay_winner(
        self,
        commitment: str,
        proof: str,
        principal: int,
        yield_amount: int,
    ) -> str:
        """Pay principal plus the epoch yield to the winning commitment."""
        ...

    def pay_loser(self, commitment: str, proof: str, principal: int) -> str:
        """Return the principal to a non-winning commitment."""
        ...
