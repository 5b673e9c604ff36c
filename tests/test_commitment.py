"""Tests for the commitment engine: binding, hiding inputs, strict validation."""

import hashlib

import pytest

from stakedrop.crypto.commitment import (
    COMMITMENT_HEX_LENGTH,
    commit,
    is_valid_commitment,
    normalize_commitment,
    verify,
)
from stakedrop.errors import InvalidInput


SECRET = "a1" * 32


class TestCommit:
    def test_matches_reference_digest(self) -> None:
        expected = hashlib.sha256(f"{SECRET}:10000000".encode("utf-8")).hexdigest()
        assert commit(SECRET, 10_000_000) == expected

    def test_output_is_lowercase_hex(self) -> None:
        c = commit(SECRET, 42)
        assert len(c) == COMMITMENT_HEX_LENGTH
        assert c == c.lower()
        int(c, 16)

    def test_deterministic(self) -> None:
        assert commit(SECRET, 500) == commit(SECRET, 500)

    def test_secret_case_does_not_matter(self) -> None:
        assert commit(SECRET.upper(), 500) == commit(SECRET, 500)

    def test_amount_changes_commitment(self) -> None:
        assert commit(SECRET, 500) != commit(SECRET, 501)

    def test_secret_changes_commitment(self) -> None:
        assert commit("b2" * 32, 500) != commit(SECRET, 500)

    def test_no_collisions_in_sample(self) -> None:
        seen = set()
        for i in range(300):
            secret = f"{i:064x}"
            for amount in (1, 2, 10_000_000):
                seen.add(commit(secret, amount))
        assert len(seen) == 900


class TestCommitValidation:
    def test_short_secret_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            commit("abcd", 100)

    def test_non_hex_secret_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            commit("z" * 64, 100)

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount_rejected(self, amount: int) -> None:
        with pytest.raises(InvalidInput):
            commit(SECRET, amount)

    def test_bool_amount_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            commit(SECRET, True)

    def test_float_amount_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            commit(SECRET, 10.0)


class TestVerify:
    def test_opens_own_commitment(self) -> None:
        assert verify(SECRET, 777, commit(SECRET, 777))

    def test_wrong_amount_fails(self) -> None:
        assert not verify(SECRET, 778, commit(SECRET, 777))

    def test_wrong_secret_fails(self) -> None:
        assert not verify("c3" * 32, 777, commit(SECRET, 777))

    def test_accepts_prefixed_commitment(self) -> None:
        assert verify(SECRET, 777, "0x" + commit(SECRET, 777).upper())

    def test_malformed_commitment_raises(self) -> None:
        with pytest.raises(InvalidInput):
            verify(SECRET, 777, "not-a-commitment")


class TestNormalize:
    def test_strips_prefix_and_lowercases(self) -> None:
        raw = "0x" + "AB" * 32
        assert normalize_commitment(raw) == "ab" * 32

    def test_wrong_length_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            normalize_commitment("ab" * 31)

    def test_is_valid(self) -> None:
        assert is_valid_commitment("0" * 64)
        assert not is_valid_commitment("g" * 64)
        assert not is_valid_commitment(None)  # type: ignore[arg-type]
