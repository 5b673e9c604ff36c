"""Privacy-chain adapter contract.

The privacy chain records commitments, pool locking, the published
randomness, the declared winner, and proof-gated claims without revealing
deposit amounts. Proof generation is an opaque capability of this adapter:
the coordinator asks for a winner or loser proof and must treat a refusal
(ProofRejected) as blocking.

Same retry contract as the settlement adapter: calls are idempotent or
deduplicated, transient trouble raises AdapterFailure(transient=True).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable


class ProofKind(str, enum.Enum):
    """The two zero-knowledge statements a participant can prove."""
    WINNER = "winner"
    """I know the secret behind the declared winning commitment."""

    LOSER = "loser"
    """I know the secret behind a registered, non-winning commitment."""


@dataclass(frozen=True)
class PrivacyPoolState:
    """Snapshot of the pool as the privacy chain reports it."""
    locked: bool
    winner_selected: bool
    participant_count: int
    commitments: tuple[str, ...] = field(default_factory=tuple)
    winner_commitment: Optional[str] = None
    randomness: Optional[str] = None


@dataclass(frozen=True)
class ClaimReceipt:
    tx_ref: str
    claim_token: str


@runtime_checkable
class PrivacyChainAdapter(Protocol):
    """Abstract contract for privacy-chain implementations."""

    def read_pool_state(self) -> PrivacyPoolState:
        """Current pool state; commitments in registration order."""
        ...

    def initialize_epoch(
        self,
        max_participants: int,
        min_deposit: int,
        duration_seconds: int,
    ) -> str:
        ...

    def register_deposit(self, commitment: str, proof: str) -> str:
        ...

    def lock_pool(self) -> str:
        ...

    def publish_randomness(self, randomness: str) -> str:
        """Publish the selection randomness. Write-once on chain."""
        ...

    def declare_winner(self, commitment: str) -> str:
        ...

    def generate_proof(
        self,
        kind: ProofKind,
        secret: str,
        commitment: str,
        winner_commitment: str,
    ) -> str:
        """Produce a proof of the given kind, or raise ProofRejected."""
        ...

    def claim(self, commitment: str, proof: str, is_winner: bool) -> ClaimReceipt:
        """Submit a proof-gated claim; raises ProofRejected if it fails to verify."""
        ...
