"""Deposit secrets and the secret file a participant keeps to withdraw.

A participant generates a random secret, commits to (secret, amount), and
keeps a small JSON file holding both. Losing the file means losing the
ability to prove ownership of the commitment.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from stakedrop.crypto.commitment import commit, normalize_commitment, verify
from stakedrop.errors import InvalidInput


SECRET_FILE_VERSION = "1.0.0"
SECRET_BYTES = 32


@dataclass(frozen=True)
class DepositSecret:
    """Parsed contents of a secret file."""
    secret: str
    amount: int
    commitment: str
    epoch_id: int


def generate_secret() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(SECRET_BYTES)


def create_secret_file(
    secret: str,
    amount: int,
    commitment: Optional[str] = None,
    epoch_id: int = 0,
    created_utc: Optional[datetime] = None,
) -> str:
    """Serialize a deposit secret to JSON.

    If the commitment is omitted it is derived; if given it must match.
    """
    derived = commit(secret, amount)
    if commitment is not None and normalize_commitment(commitment) != derived:
        raise InvalidInput("Commitment does not match secret and amount")
    ts = created_utc or datetime.now(timezone.utc)
    data: dict[str, Any] = {
        "secret": secret,
        "amount": str(amount),
        "commitment": derived,
        "createdAt": ts.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "epochId": epoch_id,
        "version": SECRET_FILE_VERSION,
        "warning": "KEEP THIS FILE SAFE! You need it to withdraw your funds.",
    }
    return json.dumps(data, indent=2)


def parse_secret_file(content: str) -> DepositSecret:
    """Parse and check a secret file.

    Raises InvalidInput for malformed JSON, missing fields, or a commitment
    that the stored secret and amount do not open.
    """
    try:
        data = json.loads(content)
    except (TypeError, json.JSONDecodeError) as e:
        raise InvalidInput(f"Secret file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidInput("Secret file must contain a JSON object")

    missing = [k for k in ("secret", "amount", "commitment") if not data.get(k)]
    if missing:
        raise InvalidInput(f"Secret file missing fields: {', '.join(missing)}")

    try:
        amount = int(str(data["amount"]))
    except ValueError as e:
        raise InvalidInput(f"Secret file amount is not an integer: {data['amount']!r}") from e

    secret = str(data["secret"])
    commitment = normalize_commitment(str(data["commitment"]))
    if not verify(secret, amount, commitment):
        raise InvalidInput("Secret file commitment does not match its secret and amount")

    epoch_id = data.get("epochId") or 0
    return DepositSecret(
        secret=secret,
        amount=amount,
        commitment=commitment,
        epoch_id=int(epoch_id),
    )
