"""Winner selection: deterministic, auditable pick over ordered commitments.

    digest = SHA-256( c_1 || c_2 || ... || c_n || randomness )
    index  = uint64_be(digest[0:8]) mod n

Anyone holding the public commitment list (in registration order) and the
published randomness recomputes the identical winner. Unpredictability
comes from when the randomness is disclosed (after the pool locks), not
from any secrecy in the selector.

The randomness itself is derived from a public beacon value so that it is
auditable from chain data:

    randomness = SHA-256( "stakedrop:randomness:v1" | epoch_id | c_1..c_n | beacon )
"""

from __future__ import annotations

import hashlib
import re
from typing import Sequence

from stakedrop.crypto.commitment import normalize_commitment
from stakedrop.errors import EmptyPoolError, InvalidInput


PREFIX_BYTES = 8
RANDOMNESS_DOMAIN = b"stakedrop:randomness:v1"

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def select(commitments: Sequence[str], randomness: str) -> tuple[int, str]:
    """Pick the winning commitment.

    Returns (index, winning_commitment). The commitment is returned in
    canonical lowercase form.
    """
    if not commitments:
        raise EmptyPoolError("Cannot select a winner from an empty pool")
    ordered = [normalize_commitment(c) for c in commitments]
    seed = _randomness_bytes(randomness)

    hasher = hashlib.sha256()
    for c in ordered:
        hasher.update(bytes.fromhex(c))
    hasher.update(seed)
    digest = hasher.digest()

    index = int.from_bytes(digest[:PREFIX_BYTES], "big") % len(ordered)
    return index, ordered[index]


def audit_winner(
    commitments: Sequence[str],
    randomness: str,
    claimed_winner: str,
) -> bool:
    """Recompute the selection and compare it with a published winner."""
    _, winner = select(commitments, randomness)
    return winner == normalize_commitment(claimed_winner)


def derive_randomness(epoch_id: int, commitments: Sequence[str], beacon: str) -> str:
    """Derive an epoch's randomness from a public beacon value.

    Binding the ordered commitment list into the derivation means a
    randomness value published for one participant set cannot be replayed
    against another.
    """
    if not commitments:
        raise EmptyPoolError("Cannot derive randomness for an empty pool")
    if not isinstance(beacon, str) or not beacon.strip():
        raise InvalidInput("Beacon value must be a non-empty string")

    hasher = hashlib.sha256()
    hasher.update(RANDOMNESS_DOMAIN)
    hasher.update(b"|")
    hasher.update(str(epoch_id).encode("ascii"))
    hasher.update(b"|")
    for c in commitments:
        hasher.update(bytes.fromhex(normalize_commitment(c)))
    hasher.update(b"|")
    hasher.update(beacon.strip().encode("utf-8"))
    return hasher.hexdigest()


def _randomness_bytes(randomness: str) -> bytes:
    if not isinstance(randomness, str):
        raise InvalidInput(
            f"Randomness must be a hex string, got {type(randomness).__name__}"
        )
    value = randomness[2:] if randomness.startswith("0x") else randomness
    if not value or len(value) % 2 != 0 or not _HEX_RE.match(value):
        raise InvalidInput(f"Randomness must be an even-length hex string, got {randomness!r}")
    return bytes.fromhex(value)
