"""Bridge coordinator: drives one epoch across both chains.

The coordinator owns the only mutable epoch state. It sequences every
lifecycle stage against the privacy chain (commitments, lock, randomness,
winner, claims) and the settlement chain (custody, staking, rewards,
payouts), and records each completed milestone as a BridgeEvent.

Concurrency model:
- ``_lock`` (re-entrant) guards the epoch and is held only for short,
  in-memory critical sections. It is never held across an adapter call.
- ``_stage_lock`` serializes lifecycle stages (start, lock, stake, claim,
  randomness, finalize, poll) against each other. Stages do hold it
  across adapter calls.
- Withdrawals take neither stage lock. Each commitment has its own lock,
  so different commitments settle in parallel and the same commitment
  settles at most once.

Ordering rules:
- Privacy-chain facts (lock, winner declaration, claim) are established
  before the settlement chain moves any funds.
- A commitment is registered on the privacy chain only once the
  settlement pool holds funds for it.
- A deposit is marked withdrawn before its payout is submitted. A payout
  that fails after that point is resumed, never re-claimed.

Usage:
    coordinator = Coordinator(settlement_adapter, privacy_adapter, config)
    coordinator.on_event(print)
    coordinator.start_epoch()
    coordinator.register_deposit(commitment, amount, proof)
    coordinator.lock_and_stake()
    coordinator.publish_randomness(beacon)
    coordinator.finalize_epoch()
    coordinator.process_withdrawal(commitment, secret)
"""

from __future__ import annotations

import copy
import functools
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from stakedrop.adapters.privacy import (
    ClaimReceipt,
    PrivacyChainAdapter,
    PrivacyPoolState,
    ProofKind,
)
from stakedrop.adapters.settlement import (
    RewardReceipt,
    SettlementChainAdapter,
    SettlementPoolState,
    SettlementStatus,
    StakingReceipt,
)
from stakedrop.bridge.retry import AdapterCaller
from stakedrop.config import BridgeConfig
from stakedrop.crypto import commitment as commitment_engine
from stakedrop.crypto.selection import derive_randomness, select
from stakedrop.engine.consistency import check_consistency
from stakedrop.engine.state_machine import EpochStateMachine
from stakedrop.errors import (
    AlreadyWithdrawn,
    BridgeError,
    DuplicateCommitment,
    InconsistentState,
    InvalidInput,
    InvalidTransition,
    ProofRejected,
    StageFailed,
)
from stakedrop.logging_utils import log_context
from stakedrop.models.epoch import Deposit, Epoch, EpochStatus, FROZEN_STATUSES
from stakedrop.models.events import BridgeEvent, BridgeEventKind
from stakedrop.models.results import ChainSnapshot, FinalizationResult, Settlement
from stakedrop.persistence.event_log import EventLog

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[BridgeEvent], None]

_CONFIRMED_SETTLEMENT = frozenset({
    SettlementStatus.STAKING,
    SettlementStatus.DISTRIBUTING,
    SettlementStatus.COMPLETED,
})


def _stage(name: str) -> Callable:
    """Run a coordinator method inside a log context naming the stage."""
    def decorate(method: Callable) -> Callable:
        @functools.wraps(method)
        def wrapper(self: "Coordinator", *args: Any, **kwargs: Any) -> Any:
            with self._lock:
                epoch_id = self._epoch.epoch_id if self._epoch else None
            with log_context(epoch_id=epoch_id, stage=name):
                return method(self, *args, **kwargs)
        return wrapper
    return decorate


class Coordinator:
    """Cross-chain epoch coordinator."""

    def __init__(
        self,
        settlement: SettlementChainAdapter,
        privacy: PrivacyChainAdapter,
        config: Optional[BridgeConfig] = None,
        event_log: Optional[EventLog] = None,
        caller: Optional[AdapterCaller] = None,
    ) -> None:
        if not isinstance(settlement, SettlementChainAdapter):
            raise TypeError("settlement adapter does not implement SettlementChainAdapter")
        if not isinstance(privacy, PrivacyChainAdapter):
            raise TypeError("privacy adapter does not implement PrivacyChainAdapter")

        self._settlement = settlement
        self._privacy = privacy
        self._config = config or BridgeConfig()
        self._machine = EpochStateMachine(self._config.epoch.min_participants)
        self._caller = caller or AdapterCaller(
            self._config.retry, self._config.adapter_timeout_seconds,
        )
        self._event_log = event_log or EventLog(self._config.event_log_path)

        self._lock = threading.RLock()
        self._stage_lock = threading.RLock()
        self._claim_locks: dict[str, threading.Lock] = {}
        self._claim_locks_guard = threading.Lock()

        self._epoch: Optional[Epoch] = None
        self._pending: set[str] = set()
        # Registrations that passed the funding check and await the privacy chain.
        self._backed: dict[str, int] = {}
        # Highest (total_deposited, participant_count) the settlement chain has reported.
        self._funded_seen = (0, 0)
        self._closing = False
        self._handlers: list[EventHandler] = []

        # Resume numbering after a reloaded event log.
        last = self._event_log.last_event
        self._next_epoch_id = last.epoch_id + 1 if last else 1
        self._event_seq = self._event_log.count

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def on_event(self, handler: EventHandler) -> None:
        """Register a handler called synchronously for every event, in order.

        A handler that raises is logged and skipped; it never aborts the
        operation that emitted the event. Handlers run under the epoch lock
        and must not call lifecycle operations.
        """
        with self._lock:
            self._handlers.append(handler)

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def epoch(self) -> Optional[Epoch]:
        """A point-in-time copy of the current epoch (None before the first)."""
        with self._lock:
            return copy.deepcopy(self._epoch)

    @property
    def current_status(self) -> Optional[EpochStatus]:
        with self._lock:
            return self._epoch.status if self._epoch else None

    def close(self) -> None:
        self._caller.shutdown()

    # ------------------------------------------------------------------
    # Collecting
    # ------------------------------------------------------------------

    def start_epoch(
        self,
        max_participants: Optional[int] = None,
        min_deposit: Optional[int] = None,
        duration_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Open a new epoch on both chains. Returns the epoch id."""
        params = self._config.epoch
        max_participants = params.max_participants if max_participants is None else max_participants
        min_deposit = params.min_deposit if min_deposit is None else min_deposit
        duration_seconds = params.duration_seconds if duration_seconds is None else duration_seconds
        if max_participants < self._machine.min_participants:
            raise InvalidInput(
                f"max_participants must be at least {self._machine.min_participants}",
                self.current_status,
            )
        if min_deposit <= 0 or duration_seconds <= 0:
            raise InvalidInput(
                "min_deposit and duration_seconds must be positive", self.current_status,
            )

        with self._stage_lock:
            with self._lock:
                if self._epoch is not None and self._epoch.status != EpochStatus.COMPLETED:
                    raise InvalidTransition(
                        f"Epoch {self._epoch.epoch_id} is still in progress",
                        self._epoch.status,
                    )
                epoch_id = self._next_epoch_id

            now = now or datetime.now(timezone.utc)
            deadline = now + timedelta(seconds=duration_seconds)
            LOGGER.info(
                "Starting epoch %d (max %d participants, min deposit %d)",
                epoch_id, max_participants, min_deposit,
                extra={"event": "stage_start", "data": {"stage": "start_epoch"}},
            )

            privacy_tx = self._caller.call(
                "initialize_epoch", self._privacy.initialize_epoch,
                max_participants, min_deposit, duration_seconds,
            )
            try:
                settlement_tx = self._caller.call(
                    "initialize_pool", self._settlement.initialize_pool,
                    deadline, self._config.admin_identity,
                )
            except BridgeError as e:
                raise StageFailed(
                    "start_epoch",
                    f"privacy chain initialized epoch {epoch_id} (tx {privacy_tx}) "
                    f"but settlement pool initialization failed: {e.message}",
                    cause=e,
                ) from e

            with self._lock:
                epoch = Epoch(
                    epoch_id=epoch_id,
                    deadline=deadline,
                    max_participants=max_participants,
                    min_deposit=min_deposit,
                    created_utc=now,
                    privacy_init_tx=privacy_tx,
                    settlement_init_tx=settlement_tx,
                )
                self._epoch = epoch
                self._next_epoch_id = epoch_id + 1
                self._pending.clear()
                self._backed.clear()
                self._funded_seen = (0, 0)
                with self._claim_locks_guard:
                    self._claim_locks.clear()
                self._emit(BridgeEventKind.EPOCH_INITIALIZED, {
                    "deadline": deadline.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "max_participants": max_participants,
                    "min_deposit": min_deposit,
                    "privacy_tx": privacy_tx,
                    "settlement_tx": settlement_tx,
                })
        return epoch_id

    @_stage("register_deposit")
    def register_deposit(
        self,
        commitment: str,
        amount: int,
        proof: str,
        now: Optional[datetime] = None,
    ) -> str:
        """Register a funded deposit's commitment on the privacy chain.

        The settlement chain must already hold the funds: its pool has to
        cover every registered and in-flight deposit plus this one, by
        amount and by participant count. Returns the privacy-chain
        transaction reference. Registrations for different commitments may
        run concurrently; the pool cannot lock while any of them is in
        flight.
        """
        status = self.current_status
        try:
            commitment = commitment_engine.normalize_commitment(commitment)
        except InvalidInput as e:
            raise e.with_status(status)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInput(f"Deposit amount must be a positive integer, got {amount!r}", status)
        if not isinstance(proof, str) or not proof:
            raise InvalidInput("Deposit registration requires a proof", status)

        with self._lock:
            epoch = self._require_epoch()
            if self._closing:
                raise InvalidTransition("Deposit rejected: pool is being locked", epoch.status)
            reasons = self._machine.accepts_deposits(
                epoch, now, pending_registrations=len(self._pending),
            )
            if reasons:
                raise InvalidTransition("Deposit rejected", epoch.status, reasons)
            if amount < epoch.min_deposit:
                raise InvalidInput(
                    f"Deposit of {amount} is below the minimum {epoch.min_deposit}",
                    epoch.status,
                )
            if commitment in epoch.participants or commitment in self._pending:
                raise DuplicateCommitment(
                    f"Commitment already registered: {commitment}", epoch.status,
                )
            self._pending.add(commitment)
            status = epoch.status

        try:
            settlement_state = self._caller.call(
                "read_settlement_state", self._settlement.read_pool_state, status=status,
            )
            with self._lock:
                self._reserve_funding(epoch, commitment, amount, settlement_state)
            tx = self._caller.call(
                "register_deposit", self._privacy.register_deposit,
                commitment, proof, status=status,
            )
        except BaseException:
            with self._lock:
                self._pending.discard(commitment)
                self._backed.pop(commitment, None)
            raise

        with self._lock:
            self._pending.discard(commitment)
            self._backed.pop(commitment, None)
            epoch.add_deposit(Deposit(
                commitment=commitment,
                amount=amount,
                deposited_utc=now or datetime.now(timezone.utc),
            ))
            self._emit(BridgeEventKind.DEPOSIT_DETECTED, {
                "commitment": commitment,
                "amount": amount,
                "participant_count": epoch.participant_count,
                "total_deposited": epoch.total_deposited,
                "tx": tx,
            })
        return tx

    # ------------------------------------------------------------------
    # Locking and staking
    # ------------------------------------------------------------------

    @_stage("lock_pool")
    def lock_pool(
        self,
        admin_lock: bool = False,
        now: Optional[datetime] = None,
        beacon_round: Optional[str] = None,
    ) -> Optional[str]:
        """Close the pool: Collecting -> Staking.

        Requires the minimum participant count and either an elapsed
        deadline or ``admin_lock``. Both chains must agree on the closed
        participant set before the privacy chain is locked.

        ``beacon_round`` names the beacon round whose value will seed the
        winner selection. It is published in the ``pool_locked`` event
        before that value exists, and publish_randomness accepts no other
        round.
        """
        with self._stage_lock:
            with self._lock:
                epoch = self._require_epoch()
                reasons = self._machine.check(
                    epoch, EpochStatus.STAKING,
                    now=now,
                    admin_lock=admin_lock,
                    pending_registrations=len(self._pending),
                )
                if reasons:
                    raise InvalidTransition(
                        f"Epoch {epoch.epoch_id} cannot lock", epoch.status, reasons,
                    )
                self._closing = True
            try:
                privacy_state, settlement_state = self._read_chains()
                self._require_consistent(privacy_state, settlement_state, closing=True)

                tx: Optional[str] = None
                if not privacy_state.locked:
                    tx = self._caller.call(
                        "lock_pool", self._privacy.lock_pool, status=EpochStatus.COLLECTING,
                    )

                with self._lock:
                    self._machine.apply(
                        epoch, EpochStatus.STAKING,
                        now=now,
                        admin_lock=admin_lock,
                        pending_registrations=len(self._pending),
                    )
                    if beacon_round:
                        epoch.beacon_round = beacon_round.strip()
                    LOGGER.info(
                        "Epoch %d locked with %d participants",
                        epoch.epoch_id, epoch.participant_count,
                        extra={"event": "pool_locked", "data": {"epoch_id": epoch.epoch_id}},
                    )
                    self._emit(BridgeEventKind.POOL_LOCKED, {
                        "participant_count": epoch.participant_count,
                        "total_deposited": epoch.total_deposited,
                        "admin_lock": admin_lock,
                        "beacon_round": epoch.beacon_round,
                        "tx": tx,
                    })
                return tx
            finally:
                with self._lock:
                    self._closing = False

    @_stage("initiate_staking")
    def initiate_staking(self) -> StakingReceipt:
        """Delegate the pooled funds. Idempotent once recorded."""
        with self._stage_lock:
            with self._lock:
                epoch = self._require_epoch()
                if epoch.status != EpochStatus.STAKING:
                    raise InvalidTransition(
                        "Staking can only be initiated after the pool locks", epoch.status,
                    )
                if epoch.staking_tx is not None:
                    return StakingReceipt(tx_ref=epoch.staking_tx, staked_amount=epoch.staked_amount)
                amount = epoch.total_deposited

            LOGGER.info(
                "Delegating %d for epoch %d", amount, epoch.epoch_id,
                extra={"event": "stage_start", "data": {"stage": "initiate_staking"}},
            )
            receipt = self._caller.call(
                "initiate_staking", self._settlement.initiate_staking,
                amount, status=EpochStatus.STAKING,
            )

            with self._lock:
                if receipt.staked_amount > epoch.total_deposited:
                    raise InconsistentState(
                        f"settlement chain staked {receipt.staked_amount}, more than "
                        f"the {epoch.total_deposited} deposited",
                        epoch.status,
                    )
                epoch.staking_tx = receipt.tx_ref
                epoch.staked_amount = receipt.staked_amount
                self._emit(BridgeEventKind.STAKING_INITIATED, {
                    "amount": receipt.staked_amount,
                    "tx": receipt.tx_ref,
                })
            self._confirm_staking()
            return receipt

    def confirm_staking(self) -> bool:
        """Check whether the settlement chain has recorded the delegation."""
        with self._stage_lock:
            return self._confirm_staking()

    def lock_and_stake(
        self,
        admin_lock: bool = False,
        now: Optional[datetime] = None,
        beacon_round: Optional[str] = None,
    ) -> tuple[Optional[str], StakingReceipt]:
        """Lock the pool and immediately delegate the funds."""
        with self._stage_lock:
            lock_tx = self.lock_pool(admin_lock=admin_lock, now=now, beacon_round=beacon_round)
            receipt = self.initiate_staking()
        return lock_tx, receipt

    @_stage("claim_rewards")
    def claim_rewards(self) -> RewardReceipt:
        """Claim accrued staking rewards into the pool's yield."""
        with self._stage_lock:
            with self._lock:
                epoch = self._require_epoch()
                if epoch.status not in (EpochStatus.STAKING, EpochStatus.SELECTING_WINNER):
                    raise InvalidTransition(
                        "Rewards can only be claimed while staking", epoch.status,
                    )
                if epoch.staking_tx is None:
                    raise InvalidTransition("Staking has not been initiated", epoch.status)
                status = epoch.status

            receipt = self._caller.call(
                "claim_rewards", self._settlement.claim_rewards, status=status,
            )

            with self._lock:
                if receipt.reward_amount > 0:
                    epoch.add_yield(receipt.reward_amount)
                    self._emit(BridgeEventKind.YIELD_UPDATED, {
                        "reward": receipt.reward_amount,
                        "yield_amount": epoch.yield_amount,
                        "tx": receipt.tx_ref,
                    })
            return receipt

    # ------------------------------------------------------------------
    # Winner selection
    # ------------------------------------------------------------------

    @_stage("publish_randomness")
    def publish_randomness(self, beacon: str, beacon_round: Optional[str] = None) -> str:
        """Derive the epoch randomness from a public beacon and publish it.

        Only possible after the pool is locked, so the commitment set is
        fixed before anyone can know the outcome. When the lock named a
        beacon round, ``beacon_round`` must name the same one.
        """
        with self._stage_lock:
            with self._lock:
                epoch = self._require_epoch()
                if epoch.status not in (EpochStatus.STAKING, EpochStatus.SELECTING_WINNER):
                    raise InvalidTransition(
                        "Randomness can only be published after the pool locks "
                        "and before a winner is selected",
                        epoch.status,
                    )
                if epoch.beacon_round is not None:
                    given = beacon_round.strip() if beacon_round else None
                    if given != epoch.beacon_round:
                        raise InvalidTransition(
                            f"Epoch {epoch.epoch_id} was locked against beacon round "
                            f"{epoch.beacon_round!r}, got {given!r}",
                            epoch.status,
                        )
                status = epoch.status
                randomness = derive_randomness(epoch.epoch_id, epoch.commitments(), beacon)

            privacy_state = self._caller.call(
                "read_privacy_state", self._privacy.read_pool_state, status=status,
            )
            if privacy_state.randomness is not None:
                if privacy_state.randomness != randomness:
                    raise InvalidTransition(
                        "Privacy chain already holds different randomness for this epoch",
                        status,
                    )
                LOGGER.info("Randomness already published for epoch %d", epoch.epoch_id)
                return randomness

            tx = self._caller.call(
                "publish_randomness", self._privacy.publish_randomness,
                randomness, status=status,
            )
            with self._lock:
                self._emit(BridgeEventKind.RANDOMNESS_PUBLISHED, {
                    "randomness": randomness,
                    "beacon": beacon.strip(),
                    "beacon_round": epoch.beacon_round,
                    "tx": tx,
                })
            return randomness

    @_stage("finalize_epoch")
    def finalize_epoch(self) -> FinalizationResult:
        """Select the winner and finalize the epoch on both chains.

        Staking -> SelectingWinner -> Distributing. Re-running after a
        StageFailed resumes from the last fact recorded on chain.
        """
        with self._stage_lock:
            with self._lock:
                epoch = self._require_epoch()
                if epoch.status not in (EpochStatus.STAKING, EpochStatus.SELECTING_WINNER):
                    raise InvalidTransition(
                        "Epoch can only be finalized after staking", epoch.status,
                    )
                needs_confirmation = not epoch.staking_confirmed

            LOGGER.info(
                "Finalizing epoch %d", epoch.epoch_id,
                extra={"event": "stage_start", "data": {"stage": "finalize_epoch"}},
            )
            if needs_confirmation and not self._confirm_staking():
                with self._lock:
                    raise InvalidTransition(
                        "Cannot select a winner",
                        epoch.status,
                        self._machine.check(epoch, EpochStatus.SELECTING_WINNER),
                    )

            privacy_state, settlement_state = self._read_chains()
            self._require_consistent(privacy_state, settlement_state)
            if privacy_state.randomness is None:
                raise InvalidTransition(
                    "Randomness has not been published on the privacy chain",
                    self.current_status,
                )

            with self._lock:
                if epoch.status == EpochStatus.STAKING:
                    self._machine.apply(epoch, EpochStatus.SELECTING_WINNER)
                increase = epoch.raise_yield_to(settlement_state.yield_amount)
                if increase:
                    self._emit(BridgeEventKind.YIELD_UPDATED, {
                        "reward": increase,
                        "yield_amount": epoch.yield_amount,
                        "tx": None,
                    })
                commitments = epoch.commitments()
                yield_amount = epoch.yield_amount
                status = epoch.status

            randomness = privacy_state.randomness
            index, winner = select(commitments, randomness)

            declare_tx: Optional[str] = None
            declared = privacy_state.winner_commitment
            if declared is None:
                declare_tx = self._caller.call(
                    "declare_winner", self._privacy.declare_winner, winner, status=status,
                )
            elif declared != winner:
                raise InconsistentState(
                    f"privacy chain declared winner {declared} but selection over "
                    f"the locked pool gives {winner}",
                    status,
                )

            with self._lock:
                first_record = epoch.winner_commitment is None
                epoch.record_winner(winner, index, randomness)
                if first_record:
                    LOGGER.info(
                        "Epoch %d winner selected at index %d",
                        epoch.epoch_id, index,
                        extra={"event": "winner_selected", "data": {"index": index}},
                    )
                    self._emit(BridgeEventKind.WINNER_SELECTED, {
                        "winner_commitment": winner,
                        "winner_index": index,
                        "randomness": randomness,
                        "participant_count": len(commitments),
                        "tx": declare_tx,
                    })

            try:
                proof = self._caller.call(
                    "generate_winner_proof", self._privacy.generate_proof,
                    ProofKind.WINNER, "", winner, winner, status=status,
                )
                finalize_tx = self._caller.call(
                    "finalize_epoch", self._settlement.finalize_epoch,
                    winner, proof, yield_amount, status=status,
                )
            except ProofRejected as e:
                raise ProofRejected(f"Winner proof unavailable: {e.message}", status) from e
            except BridgeError as e:
                raise StageFailed(
                    "finalize_epoch",
                    "winner is declared on the privacy chain but settlement "
                    f"finalization failed; call finalize_epoch again to resume: {e.message}",
                    status,
                    cause=e,
                ) from e

            with self._lock:
                epoch.finalize_tx = finalize_tx
                self._machine.apply(epoch, EpochStatus.DISTRIBUTING)
                self._emit(BridgeEventKind.EPOCH_FINALIZED, {
                    "winner_commitment": winner,
                    "yield_amount": yield_amount,
                    "pool_total": epoch.pool_total,
                    "tx": finalize_tx,
                })
                return FinalizationResult(
                    epoch_id=epoch.epoch_id,
                    winner_commitment=winner,
                    winner_index=index,
                    randomness=randomness,
                    yield_amount=yield_amount,
                    finalize_tx=finalize_tx,
                    declare_tx=declare_tx,
                )

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    @_stage("process_withdrawal")
    def process_withdrawal(self, commitment: str, secret: str) -> Settlement:
        """Settle one participant: principal, plus the yield for the winner.

        The secret is checked locally against the recorded amount before
        any chain call. A commitment pays out at most once; concurrent
        calls for the same commitment yield one Settlement and one
        AlreadyWithdrawn.
        """
        try:
            commitment = commitment_engine.normalize_commitment(commitment)
        except InvalidInput as e:
            raise e.with_status(self.current_status)

        with self._lock:
            epoch = self._require_epoch()
            status = epoch.status
            deposit = epoch.get_deposit(commitment)
            if status != EpochStatus.DISTRIBUTING:
                if deposit is not None and deposit.settled:
                    raise AlreadyWithdrawn(f"Commitment {commitment} already settled", status)
                raise InvalidTransition(
                    "Withdrawals are only processed while the epoch is distributing",
                    status,
                )
            if deposit is None:
                raise InvalidInput(f"Unknown commitment {commitment}", status)
            amount = deposit.amount
            winner = epoch.winner_commitment
            epoch_yield = epoch.yield_amount

        try:
            opened = commitment_engine.verify(secret, amount, commitment)
        except InvalidInput as e:
            raise e.with_status(status)
        if not opened:
            raise InvalidInput("Secret does not open this commitment", status)

        is_winner = commitment == winner
        yield_share = epoch_yield if is_winner else 0

        with self._claim_lock(commitment):
            with self._lock:
                if deposit.settled:
                    raise AlreadyWithdrawn(f"Commitment {commitment} already settled", status)
                resume = deposit.payout_pending
                proof = deposit.proof

            if not resume:
                kind = ProofKind.WINNER if is_winner else ProofKind.LOSER
                try:
                    proof = self._caller.call(
                        "generate_proof", self._privacy.generate_proof,
                        kind, secret, commitment, winner, status=status,
                    )
                    claim: ClaimReceipt = self._caller.call(
                        "claim", self._privacy.claim,
                        commitment, proof, is_winner, status=status,
                    )
                except ProofRejected as e:
                    raise ProofRejected(
                        f"Withdrawal blocked for {commitment}: {e.message}", status,
                    ) from e
                with self._lock:
                    deposit.is_winner = is_winner
                    deposit.claim_tx = claim.tx_ref
                    deposit.claim_token = claim.claim_token
                    deposit.proof = proof
                    deposit.mark_withdrawn()
            else:
                LOGGER.info(
                    "Resuming pending payout for %s", commitment,
                    extra={"event": "payout_resumed", "data": {"commitment": commitment}},
                )

            try:
                if is_winner:
                    payout_tx = self._caller.call(
                        "pay_winner", self._settlement.pay_winner,
                        commitment, proof, amount, yield_share, status=status,
                    )
                else:
                    payout_tx = self._caller.call(
                        "pay_loser", self._settlement.pay_loser,
                        commitment, proof, amount, status=status,
                    )
            except BridgeError as e:
                LOGGER.error(
                    "Payout failed for %s after claim: %s", commitment, e,
                    extra={"event": "payout_failed", "data": {"commitment": commitment}},
                )
                raise StageFailed(
                    "payout",
                    f"claim for {commitment} is recorded but the payout failed; "
                    f"call process_withdrawal again to resume: {e.message}",
                    status,
                    cause=e,
                ) from e

            with self._lock:
                deposit.payout_tx = payout_tx
                deposit.paid_amount = amount + yield_share
                epoch.record_payout(deposit.paid_amount)
                self._emit(BridgeEventKind.WITHDRAWAL_PROCESSED, {
                    "commitment": commitment,
                    "is_winner": is_winner,
                    "principal": amount,
                    "yield_amount": yield_share,
                    "total": amount + yield_share,
                    "claim_tx": deposit.claim_tx,
                    "tx": payout_tx,
                })
                self._complete_if_settled(epoch)
                return Settlement(
                    commitment=commitment,
                    is_winner=is_winner,
                    principal=amount,
                    yield_amount=yield_share,
                    claim_tx=deposit.claim_tx,
                    claim_token=deposit.claim_token,
                    payout_tx=payout_tx,
                )

    # ------------------------------------------------------------------
    # Polling and status
    # ------------------------------------------------------------------

    @_stage("poll")
    def poll(self) -> Optional[ChainSnapshot]:
        """Read both chains, check them against the epoch, adopt progress.

        Adopts staking confirmation and newly reported yield. Returns None
        when there is no epoch or a lifecycle stage is running.
        """
        if not self._stage_lock.acquire(blocking=False):
            LOGGER.debug("Poll skipped: a lifecycle stage is in progress")
            return None
        try:
            with self._lock:
                if self._epoch is None:
                    return None
                epoch = self._epoch

            privacy_state, settlement_state = self._read_chains()
            self._require_consistent(privacy_state, settlement_state)

            changes: list[str] = []
            with self._lock:
                if (
                    epoch.status == EpochStatus.STAKING
                    and epoch.staking_tx is not None
                    and not epoch.staking_confirmed
                    and settlement_state.status in _CONFIRMED_SETTLEMENT
                ):
                    epoch.staking_confirmed = True
                    changes.append("staking_confirmed")
                    self._emit(BridgeEventKind.STAKING_CONFIRMED, {"tx": epoch.staking_tx})
                if epoch.status not in FROZEN_STATUSES:
                    increase = epoch.raise_yield_to(settlement_state.yield_amount)
                    if increase:
                        changes.append("yield_updated")
                        self._emit(BridgeEventKind.YIELD_UPDATED, {
                            "reward": increase,
                            "yield_amount": epoch.yield_amount,
                            "tx": None,
                        })
            return ChainSnapshot(privacy_state, settlement_state, changes)
        finally:
            self._stage_lock.release()

    def status(self) -> dict[str, Any]:
        """Epoch summary plus fresh chain reads where available."""
        with self._lock:
            epoch = copy.deepcopy(self._epoch)
        if epoch is None:
            return {"epoch": None}

        summary: dict[str, Any] = {"epoch": _epoch_summary(epoch)}
        try:
            privacy_state, settlement_state = self._read_chains()
        except BridgeError as e:
            summary["chains"] = None
            summary["chain_error"] = str(e)
        else:
            summary["chains"] = ChainSnapshot(privacy_state, settlement_state).to_dict()
            summary["violations"] = check_consistency(epoch, privacy_state, settlement_state)
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_epoch(self) -> Epoch:
        if self._epoch is None:
            raise InvalidTransition("No epoch has been started")
        return self._epoch

    def _reserve_funding(
        self,
        epoch: Epoch,
        commitment: str,
        amount: int,
        settlement_state: SettlementPoolState,
    ) -> None:
        # Caller holds _lock. Funding only grows while collecting, so the
        # highest reading seen covers every funded registration so far.
        seen_total = max(self._funded_seen[0], settlement_state.total_deposited)
        seen_count = max(self._funded_seen[1], settlement_state.participant_count)
        self._funded_seen = (seen_total, seen_count)

        needed_total = epoch.total_deposited + sum(self._backed.values()) + amount
        needed_count = epoch.participant_count + len(self._backed) + 1
        reasons = []
        if seen_total < needed_total:
            reasons.append(
                f"settlement pool holds {seen_total}, registering this deposit needs {needed_total}"
            )
        if seen_count < needed_count:
            reasons.append(
                f"settlement chain counts {seen_count} participants, "
                f"registering this deposit needs {needed_count}"
            )
        if reasons:
            raise InvalidTransition(
                f"Deposit rejected: funds for {commitment} are not on the settlement chain",
                epoch.status,
                reasons,
            )
        self._backed[commitment] = amount

    def _claim_lock(self, commitment: str) -> threading.Lock:
        with self._claim_locks_guard:
            lock = self._claim_locks.get(commitment)
            if lock is None:
                lock = threading.Lock()
                self._claim_locks[commitment] = lock
            return lock

    def _read_chains(self) -> tuple[PrivacyPoolState, SettlementPoolState]:
        status = self.current_status
        privacy_state = self._caller.call(
            "read_privacy_state", self._privacy.read_pool_state, status=status,
        )
        settlement_state = self._caller.call(
            "read_settlement_state", self._settlement.read_pool_state, status=status,
        )
        return privacy_state, settlement_state

    def _require_consistent(
        self,
        privacy_state: PrivacyPoolState,
        settlement_state: SettlementPoolState,
        closing: bool = False,
    ) -> None:
        with self._lock:
            epoch = self._require_epoch()
            violations = check_consistency(
                epoch, privacy_state, settlement_state, closing=closing,
            )
            status = epoch.status
        if violations:
            LOGGER.error(
                "Chains disagree on epoch %d: %s", epoch.epoch_id, "; ".join(violations),
                extra={"event": "inconsistent_state", "data": {"violations": violations}},
            )
            raise InconsistentState("Cross-chain state is inconsistent", status, violations)

    def _confirm_staking(self) -> bool:
        with self._lock:
            epoch = self._require_epoch()
            if epoch.staking_confirmed:
                return True
            if epoch.status != EpochStatus.STAKING or epoch.staking_tx is None:
                return False
            status = epoch.status

        settlement_state = self._caller.call(
            "read_settlement_state", self._settlement.read_pool_state, status=status,
        )
        if settlement_state.status not in _CONFIRMED_SETTLEMENT:
            LOGGER.info("Staking for epoch %d not yet recorded", epoch.epoch_id)
            return False

        with self._lock:
            if not epoch.staking_confirmed:
                epoch.staking_confirmed = True
                self._emit(BridgeEventKind.STAKING_CONFIRMED, {"tx": epoch.staking_tx})
        return True

    def _complete_if_settled(self, epoch: Epoch) -> None:
        """Distributing -> Completed once every deposit is paid. Caller holds _lock."""
        if any(not d.settled for d in epoch.deposits()):
            return
        if epoch.total_paid != epoch.pool_total:
            raise InconsistentState(
                f"Epoch {epoch.epoch_id} paid {epoch.total_paid} but the closed "
                f"pool owes {epoch.pool_total}",
                epoch.status,
            )
        self._machine.apply(epoch, EpochStatus.COMPLETED)
        LOGGER.info(
            "Epoch %d completed, %d paid out", epoch.epoch_id, epoch.total_paid,
            extra={"event": "epoch_completed", "data": {"epoch_id": epoch.epoch_id}},
        )
        self._emit(BridgeEventKind.EPOCH_COMPLETED, {
            "participant_count": epoch.participant_count,
            "total_deposited": epoch.total_deposited,
            "yield_amount": epoch.yield_amount,
            "total_paid": epoch.total_paid,
        })

    def _emit(self, kind: BridgeEventKind, payload: dict[str, Any]) -> BridgeEvent:
        """Record and deliver an event. Caller holds _lock."""
        epoch = self._require_epoch()
        self._event_seq += 1
        event = BridgeEvent.create(
            event_id=f"EVT-{self._event_seq:08d}",
            kind=kind,
            epoch_id=epoch.epoch_id,
            payload=payload,
        )
        self._event_log.append(event)
        LOGGER.debug(
            "Event %s %s", event.event_id, kind.value,
            extra={"event": kind.value, "data": payload},
        )
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                LOGGER.exception(
                    "Event handler %r failed on %s", handler, event.event_id,
                    extra={"event": "handler_failed", "data": {"event_id": event.event_id}},
                )
        return event


def _epoch_summary(epoch: Epoch) -> dict[str, Any]:
    return {
        "epoch_id": epoch.epoch_id,
        "status": epoch.status.value,
        "deadline": epoch.deadline.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "participant_count": epoch.participant_count,
        "max_participants": epoch.max_participants,
        "total_deposited": epoch.total_deposited,
        "yield_amount": epoch.yield_amount,
        "winner_commitment": epoch.winner_commitment,
        "randomness_seed": epoch.randomness_seed,
        "beacon_round": epoch.beacon_round,
        "staking_tx": epoch.staking_tx,
        "staking_confirmed": epoch.staking_confirmed,
        "finalize_tx": epoch.finalize_tx,
        "withdrawn": sum(1 for d in epoch.deposits() if d.settled),
        "total_paid": epoch.total_paid,
    }
