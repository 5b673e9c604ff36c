"""Epoch state machine: enforces the exact lifecycle transition rules.

Transitions are fail-closed: any transition not explicitly allowed is
rejected, and a rejected transition leaves the epoch untouched. The
machine never partially applies a transition.

    COLLECTING -> STAKING -> SELECTING_WINNER -> DISTRIBUTING -> COMPLETED
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from stakedrop.errors import InvalidTransition
from stakedrop.models.epoch import EPOCH_TRANSITIONS, Epoch, EpochStatus


# A one-participant lottery has no meaningful randomness.
MIN_PARTICIPANTS = 2


class EpochStateMachine:
    """Validates and applies epoch lifecycle transitions.

    Every transition is validated against:
    1. Legal transition map (fail-closed).
    2. The stage precondition (participants, staking, winner, withdrawals).

    Usage:
        machine = EpochStateMachine(min_participants=2)
        errors = machine.check(epoch, EpochStatus.STAKING, now=now)
        machine.apply(epoch, EpochStatus.STAKING, now=now)  # raises on errors
    """

    def __init__(self, min_participants: int = MIN_PARTICIPANTS) -> None:
        if min_participants < MIN_PARTICIPANTS:
            raise ValueError(
                f"min_participants must be at least {MIN_PARTICIPANTS}, "
                f"got {min_participants}"
            )
        self._min_participants = min_participants

    @property
    def min_participants(self) -> int:
        return self._min_participants

    def check(
        self,
        epoch: Epoch,
        target: EpochStatus,
        now: Optional[datetime] = None,
        admin_lock: bool = False,
        pending_registrations: int = 0,
    ) -> list[str]:
        """Return the list of unmet preconditions. Empty list means allowed."""
        errors: list[str] = []

        if target not in EPOCH_TRANSITIONS.get(epoch.status, frozenset()):
            errors.append(
                f"Illegal transition: {epoch.status.value} → {target.value}"
            )
            return errors  # No point checking further

        if target == EpochStatus.STAKING:
            errors.extend(
                self._validate_lock(epoch, now, admin_lock, pending_registrations)
            )
        elif target == EpochStatus.SELECTING_WINNER:
            errors.extend(self._validate_selection_start(epoch))
        elif target == EpochStatus.DISTRIBUTING:
            errors.extend(self._validate_distribution(epoch))
        elif target == EpochStatus.COMPLETED:
            errors.extend(self._validate_completion(epoch))

        return errors

    def apply(
        self,
        epoch: Epoch,
        target: EpochStatus,
        now: Optional[datetime] = None,
        admin_lock: bool = False,
        pending_registrations: int = 0,
    ) -> None:
        """Apply a transition, or raise InvalidTransition without mutating."""
        errors = self.check(
            epoch, target,
            now=now,
            admin_lock=admin_lock,
            pending_registrations=pending_registrations,
        )
        if errors:
            raise InvalidTransition(
                f"Epoch {epoch.epoch_id} cannot move to {target.value}",
                epoch.status,
                reasons=errors,
            )
        epoch.status = target

    def accepts_deposits(
        self,
        epoch: Epoch,
        now: Optional[datetime] = None,
        pending_registrations: int = 0,
    ) -> list[str]:
        """Return reasons a new deposit would be rejected right now.

        Registrations still in flight count towards the participant cap.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        errors: list[str] = []
        if epoch.status != EpochStatus.COLLECTING:
            errors.append(
                f"epoch {epoch.epoch_id} is {epoch.status.value}, deposits closed"
            )
            return errors
        if now >= epoch.deadline:
            errors.append(f"epoch {epoch.epoch_id} deadline has passed")
        if epoch.participant_count + pending_registrations >= epoch.max_participants:
            errors.append(
                f"epoch {epoch.epoch_id} is full "
                f"({epoch.max_participants} participants)"
            )
        return errors

    # ------------------------------------------------------------------
    # Stage preconditions
    # ------------------------------------------------------------------

    def _validate_lock(
        self,
        epoch: Epoch,
        now: Optional[datetime],
        admin_lock: bool,
        pending_registrations: int,
    ) -> list[str]:
        errors: list[str] = []
        if now is None:
            now = datetime.now(timezone.utc)
        if epoch.participant_count < self._min_participants:
            errors.append(
                f"needs {self._min_participants} participants, "
                f"got {epoch.participant_count}"
            )
        if not admin_lock and now < epoch.deadline:
            errors.append(
                "deadline has not elapsed and no admin lock was issued"
            )
        if pending_registrations:
            errors.append(
                f"{pending_registrations} deposit registration(s) still in flight"
            )
        return errors

    def _validate_selection_start(self, epoch: Epoch) -> list[str]:
        errors: list[str] = []
        if epoch.staking_tx is None:
            errors.append("staking has not been initiated")
        if not epoch.staking_confirmed:
            errors.append("settlement chain has not recorded the staking delegation")
        return errors

    def _validate_distribution(self, epoch: Epoch) -> list[str]:
        errors: list[str] = []
        if epoch.winner_commitment is None:
            errors.append("no winner commitment recorded")
        elif epoch.winner_commitment not in epoch.participants:
            errors.append(
                f"winner {epoch.winner_commitment} is not a registered commitment"
            )
        if epoch.randomness_seed is None:
            errors.append("no randomness seed recorded")
        if epoch.finalize_tx is None:
            errors.append("epoch not finalized on the settlement chain")
        return errors

    def _validate_completion(self, epoch: Epoch) -> list[str]:
        errors: list[str] = []
        unsettled = [d.commitment for d in epoch.deposits() if not d.settled]
        if unsettled:
            errors.append(
                f"{len(unsettled)} deposit(s) not yet withdrawn"
            )
        return errors
