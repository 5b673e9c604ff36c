"""In-memory reference ledgers for both chains.

These implement the adapter Protocols against plain Python state so the
coordinator can be exercised without a network: tests, the CLI
``simulate`` command, and operator dry runs. They honour the adapter
contract (idempotent calls, AdapterFailure for transient trouble,
ProofRejected for bad proofs) and add test hooks:

- ``fail_next(operation, times)`` makes the next calls of an operation
  raise a transient AdapterFailure.
- ``set_latency(operation, seconds)`` delays an operation (timeout tests).
- ``journal`` records every successful call as "<chain>.<operation>"; pass
  the same list to both ledgers to observe cross-chain ordering.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from stakedrop.adapters.privacy import ClaimReceipt, PrivacyPoolState, ProofKind
from stakedrop.adapters.settlement import (
    RewardReceipt,
    SettlementPoolState,
    SettlementStatus,
    StakingReceipt,
)
from stakedrop.errors import AdapterFailure, ProofRejected


class _LedgerBase:
    """Shared fault injection, latency and journaling."""

    chain_name = "ledger"

    def __init__(self, journal: Optional[List[str]] = None) -> None:
        self._lock = threading.RLock()
        self._failures: Dict[str, int] = {}
        self._latency: Dict[str, float] = {}
        self._tx_counter = 0
        self.journal: List[str] = journal if journal is not None else []

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` fail transiently."""
        with self._lock:
            self._failures[operation] = self._failures.get(operation, 0) + times

    def set_latency(self, operation: str, seconds: float) -> None:
        with self._lock:
            self._latency[operation] = seconds

    def calls(self, operation: str) -> int:
        """How many successful calls of an operation were journaled."""
        key = f"{self.chain_name}.{operation}"
        return sum(1 for entry in self.journal if entry == key)

    def _enter(self, operation: str) -> None:
        delay = self._latency.get(operation, 0.0)
        if delay:
            time.sleep(delay)
        with self._lock:
            remaining = self._failures.get(operation, 0)
            if remaining:
                self._failures[operation] = remaining - 1
                raise AdapterFailure(
                    f"{self.chain_name}.{operation}: simulated transient failure"
                )

    def _record(self, operation: str) -> None:
        self.journal.append(f"{self.chain_name}.{operation}")

    def _next_tx(self, operation: str) -> str:
        self._tx_counter += 1
        data = f"{self.chain_name}:{operation}:{self._tx_counter}".encode("utf-8")
        return hashlib.sha256(data).hexdigest()


# ----------------------------------------------------------------------
# Settlement chain
# ----------------------------------------------------------------------


@dataclass
class _SettlementPool:
    deadline: Optional[datetime] = None
    admin_identity: str = ""
    status: SettlementStatus = SettlementStatus.COLLECTING
    total_deposited: int = 0
    participant_count: int = 0
    yield_amount: int = 0
    pending_rewards: int = 0
    winner_commitment: Optional[str] = None
    staking_receipt: Optional[StakingReceipt] = None
    staking_recorded: bool = False
    finalize_tx: Optional[str] = None
    payouts: Dict[str, int] = field(default_factory=dict)
    payout_txs: Dict[str, str] = field(default_factory=dict)


class InMemorySettlementChain(_LedgerBase):
    """Settlement ledger simulation.

    Participants fund the pool directly from their wallets; tests and the
    simulator model that with ``fund(commitment, amount)``. Staking rewards
    accrue through ``accrue_rewards(amount)``.

    With ``auto_confirm_staking=False`` a staking submission stays
    unrecorded until ``record_staking()`` is called, which models the gap
    between "submitted" and "durably recorded".
    """

    chain_name = "settlement"

    def __init__(
        self,
        journal: Optional[List[str]] = None,
        auto_confirm_staking: bool = True,
    ) -> None:
        super().__init__(journal)
        self._auto_confirm = auto_confirm_staking
        self._pool = _SettlementPool()

    # -- simulation hooks ------------------------------------------------

    def fund(self, commitment: str, amount: int) -> None:
        with self._lock:
            if self._pool.status != SettlementStatus.COLLECTING:
                raise AdapterFailure("settlement: pool no longer accepts funds", transient=False)
            self._pool.total_deposited += amount
            self._pool.participant_count += 1

    def accrue_rewards(self, amount: int) -> None:
        with self._lock:
            self._pool.pending_rewards += amount

    def record_staking(self) -> None:
        with self._lock:
            if self._pool.staking_receipt is not None:
                self._pool.staking_recorded = True
                self._pool.status = SettlementStatus.STAKING

    @property
    def payouts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._pool.payouts)

    # -- adapter contract -------------------------------------------------

    def read_pool_state(self) -> SettlementPoolState:
        self._enter("read_pool_state")
        with self._lock:
            pool = self._pool
            return SettlementPoolState(
                total_deposited=pool.total_deposited,
                participant_count=pool.participant_count,
                yield_amount=pool.yield_amount,
                winner_commitment=pool.winner_commitment,
                status=pool.status,
            )

    def initialize_pool(self, deadline: datetime, admin_identity: str) -> str:
        self._enter("initialize_pool")
        with self._lock:
            if not admin_identity:
                raise AdapterFailure("settlement: admin identity required", transient=False)
            self._pool = _SettlementPool(deadline=deadline, admin_identity=admin_identity)
            self._record("initialize_pool")
            return self._next_tx("initialize_pool")

    def initiate_staking(self, amount: int) -> StakingReceipt:
        self._enter("initiate_staking")
        with self._lock:
            pool = self._pool
            if pool.staking_receipt is not None:
                return pool.staking_receipt
            if amount <= 0 or amount > pool.total_deposited:
                raise AdapterFailure(
                    f"settlement: cannot stake {amount}, pool holds {pool.total_deposited}",
                    transient=False,
                )
            receipt = StakingReceipt(tx_ref=self._next_tx("initiate_staking"), staked_amount=amount)
            pool.staking_receipt = receipt
            if self._auto_confirm:
                pool.staking_recorded = True
                pool.status = SettlementStatus.STAKING
            self._record("initiate_staking")
            return receipt

    def claim_rewards(self) -> RewardReceipt:
        self._enter("claim_rewards")
        with self._lock:
            pool = self._pool
            if not pool.staking_recorded:
                raise AdapterFailure("settlement: no recorded stake to claim from", transient=False)
            reward = pool.pending_rewards
            pool.pending_rewards = 0
            pool.yield_amount += reward
            self._record("claim_rewards")
            return RewardReceipt(tx_ref=self._next_tx("claim_rewards"), reward_amount=reward)

    def finalize_epoch(
        self,
        winner_commitment: str,
        winner_proof: str,
        yield_amount: int,
    ) -> str:
        self._enter("finalize_epoch")
        with self._lock:
            pool = self._pool
            if pool.finalize_tx is not None:
                if pool.winner_commitment != winner_commitment:
                    raise AdapterFailure(
                        "settlement: epoch already finalized with a different winner",
                        transient=False,
                    )
                return pool.finalize_tx
            if not winner_proof:
                raise ProofRejected("settlement: finalization requires a winner proof")
            if not pool.staking_recorded:
                raise AdapterFailure("settlement: cannot finalize before staking", transient=False)
            if yield_amount != pool.yield_amount:
                raise AdapterFailure(
                    f"settlement: yield mismatch ({yield_amount} != {pool.yield_amount})",
                    transient=False,
                )
            pool.winner_commitment = winner_commitment
            pool.status = SettlementStatus.DISTRIBUTING
            pool.finalize_tx = self._next_tx("finalize_epoch")
            self._record("finalize_epoch")
            return pool.finalize_tx

    def pay_winner(
        self,
        commitment: str,
        proof: str,
        principal: int,
        yield_amount: int,
    ) -> str:
        self._enter("pay_winner")
        with self._lock:
            if commitment != self._pool.winner_commitment:
                raise ProofRejected(f"settlement: {commitment} is not the winner")
            return self._pay("pay_winner", commitment, proof, principal + yield_amount)

    def pay_loser(self, commitment: str, proof: str, principal: int) -> str:
        self._enter("pay_loser")
        with self._lock:
            if commitment == self._pool.winner_commitment:
                raise ProofRejected(f"settlement: {commitment} is the winner")
            return self._pay("pay_loser", commitment, proof, principal)

    def _pay(self, operation: str, commitment: str, proof: str, amount: int) -> str:
        pool = self._pool
        if commitment in pool.payout_txs:
            return pool.payout_txs[commitment]
        if pool.status != SettlementStatus.DISTRIBUTING:
            raise AdapterFailure(
                f"settlement: pool is {pool.status.value}, not distributing",
                transient=False,
            )
        if not proof:
            raise ProofRejected("settlement: payout requires a proof")
        paid = sum(pool.payouts.values())
        if paid + amount > pool.total_deposited + pool.yield_amount:
            raise AdapterFailure("settlement: payout exceeds pool balance", transient=False)
        tx = self._next_tx(operation)
        pool.payouts[commitment] = amount
        pool.payout_txs[commitment] = tx
        if len(pool.payouts) == pool.participant_count:
            pool.status = SettlementStatus.COMPLETED
        self._record(operation)
        return tx


# ----------------------------------------------------------------------
# Privacy chain
# ----------------------------------------------------------------------


@dataclass
class _PrivacyPool:
    max_participants: int = 0
    min_deposit: int = 0
    duration_seconds: int = 0
    commitments: List[str] = field(default_factory=list)
    register_txs: Dict[str, str] = field(default_factory=dict)
    locked: bool = False
    lock_tx: Optional[str] = None
    randomness: Optional[str] = None
    randomness_tx: Optional[str] = None
    winner_commitment: Optional[str] = None
    declare_tx: Optional[str] = None
    claims: Dict[str, ClaimReceipt] = field(default_factory=dict)


class InMemoryPrivacyChain(_LedgerBase):
    """Privacy ledger simulation with a stand-in proof server.

    Proofs here are digests over (kind, commitment, winner); they are
    accepted only when the statement they claim is true. ``reject_proofs``
    simulates an unavailable proof server.
    """

    chain_name = "privacy"

    def __init__(self, journal: Optional[List[str]] = None) -> None:
        super().__init__(journal)
        self._pool = _PrivacyPool()
        self.reject_proofs = False

    def register_external_deposit(self, commitment: str) -> None:
        """Simulate a registration submitted by someone other than the coordinator."""
        with self._lock:
            self._pool.commitments.append(commitment)

    # -- adapter contract -------------------------------------------------

    def read_pool_state(self) -> PrivacyPoolState:
        self._enter("read_pool_state")
        with self._lock:
            pool = self._pool
            return PrivacyPoolState(
                locked=pool.locked,
                winner_selected=pool.winner_commitment is not None,
                participant_count=len(pool.commitments),
                commitments=tuple(pool.commitments),
                winner_commitment=pool.winner_commitment,
                randomness=pool.randomness,
            )

    def initialize_epoch(
        self,
        max_participants: int,
        min_deposit: int,
        duration_seconds: int,
    ) -> str:
        self._enter("initialize_epoch")
        with self._lock:
            self._pool = _PrivacyPool(
                max_participants=max_participants,
                min_deposit=min_deposit,
                duration_seconds=duration_seconds,
            )
            self._record("initialize_epoch")
            return self._next_tx("initialize_epoch")

    def register_deposit(self, commitment: str, proof: str) -> str:
        self._enter("register_deposit")
        with self._lock:
            pool = self._pool
            if commitment in pool.register_txs:
                return pool.register_txs[commitment]
            if pool.locked:
                raise AdapterFailure("privacy: pool is locked", transient=False)
            if not proof:
                raise ProofRejected("privacy: deposit registration requires a proof")
            if len(pool.commitments) >= pool.max_participants:
                raise AdapterFailure("privacy: pool is full", transient=False)
            tx = self._next_tx("register_deposit")
            pool.commitments.append(commitment)
            pool.register_txs[commitment] = tx
            self._record("register_deposit")
            return tx

    def lock_pool(self) -> str:
        self._enter("lock_pool")
        with self._lock:
            pool = self._pool
            if pool.lock_tx is None:
                pool.locked = True
                pool.lock_tx = self._next_tx("lock_pool")
                self._record("lock_pool")
            return pool.lock_tx

    def publish_randomness(self, randomness: str) -> str:
        self._enter("publish_randomness")
        with self._lock:
            pool = self._pool
            if not pool.locked:
                raise AdapterFailure("privacy: randomness before lock", transient=False)
            if pool.randomness is not None:
                if pool.randomness != randomness:
                    raise AdapterFailure("privacy: randomness already published", transient=False)
                return pool.randomness_tx or ""
            pool.randomness = randomness
            pool.randomness_tx = self._next_tx("publish_randomness")
            self._record("publish_randomness")
            return pool.randomness_tx

    def declare_winner(self, commitment: str) -> str:
        self._enter("declare_winner")
        with self._lock:
            pool = self._pool
            if pool.winner_commitment is not None:
                if pool.winner_commitment != commitment:
                    raise AdapterFailure("privacy: a different winner is declared", transient=False)
                return pool.declare_tx or ""
            if pool.randomness is None:
                raise AdapterFailure("privacy: no randomness published", transient=False)
            if commitment not in pool.commitments:
                raise AdapterFailure("privacy: winner is not registered", transient=False)
            pool.winner_commitment = commitment
            pool.declare_tx = self._next_tx("declare_winner")
            self._record("declare_winner")
            return pool.declare_tx

    def generate_proof(
        self,
        kind: ProofKind,
        secret: str,
        commitment: str,
        winner_commitment: str,
    ) -> str:
        self._enter("generate_proof")
        with self._lock:
            pool = self._pool
            if self.reject_proofs:
                raise ProofRejected("privacy: proof server unavailable")
            if commitment not in pool.commitments:
                raise ProofRejected(f"privacy: {commitment} is not registered")
            if pool.winner_commitment is None or pool.winner_commitment != winner_commitment:
                raise ProofRejected("privacy: winner commitment does not match chain")
            is_winner = commitment == pool.winner_commitment
            if (kind == ProofKind.WINNER) != is_winner:
                raise ProofRejected(
                    f"privacy: cannot prove {kind.value} statement for {commitment}"
                )
            self._record("generate_proof")
            return self._proof_for(kind, commitment, winner_commitment)

    def claim(self, commitment: str, proof: str, is_winner: bool) -> ClaimReceipt:
        self._enter("claim")
        with self._lock:
            pool = self._pool
            if commitment in pool.claims:
                return pool.claims[commitment]
            kind = ProofKind.WINNER if is_winner else ProofKind.LOSER
            winner = pool.winner_commitment or ""
            if proof != self._proof_for(kind, commitment, winner):
                raise ProofRejected(f"privacy: {kind.value} proof rejected for {commitment}")
            token = json.dumps(
                {"commitment": commitment, "isWinner": is_winner},
                sort_keys=True,
            ).encode("utf-8").hex()
            receipt = ClaimReceipt(tx_ref=self._next_tx("claim"), claim_token=token)
            pool.claims[commitment] = receipt
            self._record("claim")
            return receipt

    @staticmethod
    def _proof_for(kind: ProofKind, commitment: str, winner_commitment: str) -> str:
        data = f"{kind.value}|{commitment}|{winner_commitment}".encode("utf-8")
        return "zkp:" + hashlib.sha256(data).hexdigest()
