"""Cross-chain consistency checks.

The same epoch is replicated, in different shapes, on the privacy chain,
on the settlement chain and in the coordinator's memory. These checks
compare the three views and return a list of human-readable violations.
An empty list means the views are compatible.

The coordinator never reconciles automatically: a non-empty list is
surfaced to an operator as InconsistentState.
"""

from __future__ import annotations

from typing import Optional

from stakedrop.adapters.privacy import PrivacyPoolState
from stakedrop.adapters.settlement import SettlementPoolState, SettlementStatus
from stakedrop.models.epoch import Epoch, EpochStatus


def check_consistency(
    epoch: Epoch,
    privacy: PrivacyPoolState,
    settlement: SettlementPoolState,
    closing: bool = False,
) -> list[str]:
    """Compare the coordinator's epoch with both chain snapshots.

    ``closing`` marks a lock in progress: the pool is treated as closed
    for the participant checks, and a privacy-chain lock is expected.
    """
    errors: list[str] = []
    closed = closing or epoch.status != EpochStatus.COLLECTING

    check_commitments(epoch, privacy, closed, errors)
    check_funding(epoch, settlement, closed, errors)
    check_lock(epoch, privacy, closing, errors)
    check_staking(epoch, settlement, errors)
    check_selection(epoch, privacy, settlement, errors)

    return errors


def check_commitments(
    epoch: Epoch,
    privacy: PrivacyPoolState,
    closed: bool,
    errors: list[str],
) -> None:
    """Every registered commitment must be on the privacy chain, in order."""
    ours = epoch.commitments()
    theirs = list(privacy.commitments)

    missing = [c for c in ours if c not in theirs]
    if missing:
        errors.append(
            f"privacy chain is missing {len(missing)} registered commitment(s)"
        )
    if privacy.participant_count != len(theirs):
        errors.append(
            f"privacy chain reports {privacy.participant_count} participants "
            f"but lists {len(theirs)} commitments"
        )
    if closed:
        unknown = [c for c in theirs if c not in epoch.participants]
        if unknown:
            errors.append(
                f"privacy chain holds {len(unknown)} commitment(s) the "
                "coordinator never registered"
            )
        elif not missing and theirs != ours:
            errors.append("privacy chain commitment order differs from registration order")


def check_funding(
    epoch: Epoch,
    settlement: SettlementPoolState,
    closed: bool,
    errors: list[str],
) -> None:
    """Once the pool closes, funds and commitments must match one-to-one."""
    if settlement.yield_amount < epoch.yield_amount:
        errors.append(
            f"settlement yield {settlement.yield_amount} is below recorded "
            f"yield {epoch.yield_amount}"
        )
    if not closed:
        return
    if settlement.participant_count != epoch.participant_count:
        errors.append(
            f"settlement chain counts {settlement.participant_count} participants, "
            f"coordinator registered {epoch.participant_count}"
        )
    if settlement.total_deposited < epoch.total_deposited:
        errors.append(
            f"settlement pool holds {settlement.total_deposited}, below the "
            f"{epoch.total_deposited} committed on the privacy chain"
        )
    elif settlement.total_deposited > epoch.total_deposited:
        errors.append(
            f"settlement pool holds {settlement.total_deposited}, above the "
            f"{epoch.total_deposited} committed on the privacy chain"
        )


def check_lock(
    epoch: Epoch,
    privacy: PrivacyPoolState,
    closing: bool,
    errors: list[str],
) -> None:
    if epoch.status == EpochStatus.COLLECTING:
        if privacy.locked and not closing:
            errors.append("privacy chain is locked while the coordinator is still collecting")
    elif not privacy.locked:
        errors.append(
            f"coordinator is {epoch.status.value} but the privacy chain pool is not locked"
        )


def check_staking(
    epoch: Epoch,
    settlement: SettlementPoolState,
    errors: list[str],
) -> None:
    if epoch.staking_confirmed and settlement.status == SettlementStatus.COLLECTING:
        errors.append("staking was recorded but the settlement chain shows no stake")
    if (
        epoch.status in (EpochStatus.COLLECTING, EpochStatus.STAKING, EpochStatus.SELECTING_WINNER)
        and settlement.status in (SettlementStatus.DISTRIBUTING, SettlementStatus.COMPLETED)
        and settlement.winner_commitment is not None
        and epoch.winner_commitment is None
    ):
        errors.append("settlement chain is distributing before a winner was recorded")


def check_selection(
    epoch: Epoch,
    privacy: PrivacyPoolState,
    settlement: SettlementPoolState,
    errors: list[str],
) -> None:
    """Winner and randomness must agree wherever they are recorded."""
    pw = privacy.winner_commitment
    sw = settlement.winner_commitment
    ew = epoch.winner_commitment

    if sw is not None and pw is None:
        errors.append("settlement chain names a winner the privacy chain has not declared")
    if pw is not None and sw is not None and pw != sw:
        errors.append(f"winner mismatch: privacy {pw} vs settlement {sw}")
    if ew is not None and pw is not None and ew != pw:
        errors.append(f"winner mismatch: coordinator {ew} vs privacy {pw}")
    if privacy.winner_selected != (pw is not None):
        errors.append("privacy chain winner flag disagrees with its winner commitment")

    _compare_optional(
        "randomness", epoch.randomness_seed, privacy.randomness, errors,
    )


def _compare_optional(
    label: str,
    recorded: Optional[str],
    observed: Optional[str],
    errors: list[str],
) -> None:
    if recorded is not None and observed is not None and recorded != observed:
        errors.append(f"{label} mismatch: recorded {recorded} vs chain {observed}")
    elif recorded is not None and observed is None:
        errors.append(f"{label} recorded by the coordinator is missing on chain")
