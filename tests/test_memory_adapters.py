"""Tests for the in-memory ledgers against the adapter contracts."""

from datetime import datetime, timezone

import pytest

from stakedrop.adapters.memory import InMemoryPrivacyChain, InMemorySettlementChain
from stakedrop.adapters.privacy import PrivacyChainAdapter, ProofKind
from stakedrop.adapters.settlement import SettlementChainAdapter, SettlementStatus
from stakedrop.errors import AdapterFailure, ProofRejected


A = "aa" * 32
B = "bb" * 32


@pytest.fixture
def privacy() -> InMemoryPrivacyChain:
    chain = InMemoryPrivacyChain()
    chain.initialize_epoch(max_participants=3, min_deposit=10, duration_seconds=60)
    return chain


@pytest.fixture
def settlement() -> InMemorySettlementChain:
    chain = InMemorySettlementChain()
    chain.initialize_pool(datetime(2026, 1, 1, tzinfo=timezone.utc), "admin")
    chain.fund(A, 100)
    chain.fund(B, 100)
    return chain


def _declared(privacy: InMemoryPrivacyChain, winner: str = A) -> InMemoryPrivacyChain:
    privacy.register_deposit(A, "p")
    privacy.register_deposit(B, "p")
    privacy.lock_pool()
    privacy.publish_randomness("01" * 32)
    privacy.declare_winner(winner)
    return privacy


class TestProtocols:
    def test_ledgers_satisfy_protocols(self) -> None:
        assert isinstance(InMemoryPrivacyChain(), PrivacyChainAdapter)
        assert isinstance(InMemorySettlementChain(), SettlementChainAdapter)


class TestPrivacyLedger:
    def test_registration_is_idempotent(self, privacy: InMemoryPrivacyChain) -> None:
        first = privacy.register_deposit(A, "p")
        assert privacy.register_deposit(A, "p") == first
        assert privacy.read_pool_state().participant_count == 1

    def test_locked_pool_refuses_registration(self, privacy: InMemoryPrivacyChain) -> None:
        privacy.lock_pool()
        with pytest.raises(AdapterFailure) as exc:
            privacy.register_deposit(A, "p")
        assert not exc.value.transient

    def test_randomness_needs_lock(self, privacy: InMemoryPrivacyChain) -> None:
        with pytest.raises(AdapterFailure):
            privacy.publish_randomness("01")

    def test_loser_cannot_prove_winner(self, privacy: InMemoryPrivacyChain) -> None:
        _declared(privacy, winner=A)
        with pytest.raises(ProofRejected):
            privacy.generate_proof(ProofKind.WINNER, "", B, A)
        proof = privacy.generate_proof(ProofKind.LOSER, "", B, A)
        assert proof.startswith("zkp:")

    def test_claim_checks_proof_and_dedupes(self, privacy: InMemoryPrivacyChain) -> None:
        _declared(privacy, winner=A)
        with pytest.raises(ProofRejected):
            privacy.claim(B, "zkp:forged", is_winner=False)
        proof = privacy.generate_proof(ProofKind.LOSER, "", B, A)
        first = privacy.claim(B, proof, is_winner=False)
        assert privacy.claim(B, proof, is_winner=False) == first
        assert privacy.calls("claim") == 1

    def test_injected_failures_are_transient(self, privacy: InMemoryPrivacyChain) -> None:
        privacy.fail_next("read_pool_state")
        with pytest.raises(AdapterFailure) as exc:
            privacy.read_pool_state()
        assert exc.value.transient
        assert privacy.read_pool_state().participant_count == 0


class TestSettlementLedger:
    def test_staking_moves_status(self, settlement: InMemorySettlementChain) -> None:
        receipt = settlement.initiate_staking(200)
        assert receipt.staked_amount == 200
        assert settlement.initiate_staking(200) == receipt
        assert settlement.read_pool_state().status == SettlementStatus.STAKING

    def test_cannot_stake_more_than_pool(self, settlement: InMemorySettlementChain) -> None:
        with pytest.raises(AdapterFailure):
            settlement.initiate_staking(201)

    def test_payouts_only_while_distributing(self, settlement: InMemorySettlementChain) -> None:
        with pytest.raises(AdapterFailure):
            settlement.pay_loser(B, "zkp:x", 100)

    def test_full_distribution(self, settlement: InMemorySettlementChain) -> None:
        settlement.initiate_staking(200)
        settlement.accrue_rewards(7)
        assert settlement.claim_rewards().reward_amount == 7
        settlement.finalize_epoch(A, "zkp:w", 7)

        with pytest.raises(ProofRejected):
            settlement.pay_winner(B, "zkp:x", 100, 7)
        tx = settlement.pay_winner(A, "zkp:w", 100, 7)
        assert settlement.pay_winner(A, "zkp:w", 100, 7) == tx
        settlement.pay_loser(B, "zkp:l", 100)

        assert settlement.payouts == {A: 107, B: 100}
        assert settlement.read_pool_state().status == SettlementStatus.COMPLETED

    def test_finalize_rejects_yield_mismatch(self, settlement: InMemorySettlementChain) -> None:
        settlement.initiate_staking(200)
        with pytest.raises(AdapterFailure, match="yield"):
            settlement.finalize_epoch(A, "zkp:w", 5)
