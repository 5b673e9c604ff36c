"""Cryptographic primitives: deposit commitments, winner selection, secret files."""

from stakedrop.crypto.commitment import commit, verify
from stakedrop.crypto.selection import audit_winner, derive_randomness, select

__all__ = ["commit", "verify", "select", "audit_winner", "derive_randomness"]
