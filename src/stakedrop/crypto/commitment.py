"""Commitment engine: binds a deposit amount to a participant secret.

    commitment = SHA-256( secret || ":" || decimal(amount) )

The commitment is the only public linkage to a participant. It reveals
neither the secret nor the amount, and changing either input changes the
commitment with overwhelming probability.

The secret is hex and is lowercased before hashing, so ``"AB.."`` and
``"ab.."`` commit identically. They spell the same secret bytes, so this
is not a collision: distinct secrets still give distinct commitments.

The engine is deterministic and has no side effects. Malformed inputs fail
fast with InvalidInput instead of being hashed as-is.
"""

from __future__ import annotations

import hashlib
import hmac
import re

from stakedrop.errors import InvalidInput


COMMITMENT_BYTES = 32
COMMITMENT_HEX_LENGTH = COMMITMENT_BYTES * 2
MIN_SECRET_LENGTH = 32

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def commit(secret: str, amount: int) -> str:
    """Derive the commitment for a secret and a deposit amount.

    Returns 64 lowercase hex characters.
    """
    _check_secret(secret)
    _check_amount(amount)
    data = f"{secret.lower()}:{amount}".encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def verify(secret: str, amount: int, commitment: str) -> bool:
    """Return True when (secret, amount) opens the commitment."""
    normalized = normalize_commitment(commitment)
    expected = commit(secret, amount)
    return hmac.compare_digest(expected, normalized)


def normalize_commitment(commitment: str) -> str:
    """Validate a commitment and return its canonical lowercase form."""
    if not isinstance(commitment, str):
        raise InvalidInput(f"Commitment must be a hex string, got {type(commitment).__name__}")
    value = commitment.strip()
    if value.startswith("0x"):
        value = value[2:]
    if len(value) != COMMITMENT_HEX_LENGTH or not _HEX_RE.match(value):
        raise InvalidInput(
            f"Commitment must be {COMMITMENT_HEX_LENGTH} hex characters, "
            f"got {commitment!r}"
        )
    return value.lower()


def is_valid_commitment(commitment: str) -> bool:
    try:
        normalize_commitment(commitment)
    except InvalidInput:
        return False
    return True


def _check_secret(secret: str) -> None:
    if not isinstance(secret, str):
        raise InvalidInput(f"Secret must be a hex string, got {type(secret).__name__}")
    if len(secret) < MIN_SECRET_LENGTH:
        raise InvalidInput(
            f"Secret must be at least {MIN_SECRET_LENGTH} hex characters"
        )
    if not _HEX_RE.match(secret):
        raise InvalidInput("Secret must contain only hex characters")


def _check_amount(amount: int) -> None:
    # bool is an int subclass; True must not commit as 1.
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInput(f"Amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidInput(f"Amount must be positive, got {amount}")
