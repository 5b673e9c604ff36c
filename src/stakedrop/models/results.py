"""Typed results returned by coordinator operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from stakedrop.adapters.privacy import PrivacyPoolState
from stakedrop.adapters.settlement import SettlementPoolState


@dataclass(frozen=True)
class FinalizationResult:
    """Outcome of winner selection plus settlement-chain finalization."""
    epoch_id: int
    winner_commitment: str
    winner_index: int
    randomness: str
    yield_amount: int
    finalize_tx: str
    declare_tx: Optional[str] = None


@dataclass(frozen=True)
class Settlement:
    """One participant's completed withdrawal.

    ``total`` is principal for a loser and principal plus the whole epoch
    yield for the winner.
    """
    commitment: str
    is_winner: bool
    principal: int
    yield_amount: int
    claim_tx: Optional[str]
    claim_token: Optional[str]
    payout_tx: str

    @property
    def total(self) -> int:
        return self.principal + self.yield_amount


@dataclass(frozen=True)
class ChainSnapshot:
    """Both chains' pool state as read in one poll."""
    privacy: PrivacyPoolState
    settlement: SettlementPoolState
    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "privacy": {
                "locked": self.privacy.locked,
                "winner_selected": self.privacy.winner_selected,
                "participant_count": self.privacy.participant_count,
                "winner_commitment": self.privacy.winner_commitment,
                "randomness": self.privacy.randomness,
            },
            "settlement": {
                "status": self.settlement.status.value,
                "total_deposited": self.settlement.total_deposited,
                "participant_count": self.settlement.participant_count,
                "yield_amount": self.settlement.yield_amount,
                "winner_commitment": self.settlement.winner_commitment,
            },
            "changes": list(self.changes),
        }
