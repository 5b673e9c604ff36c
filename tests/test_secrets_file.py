"""Tests for participant secret files."""

import json
from datetime import datetime, timezone

import pytest

from stakedrop.crypto.commitment import commit
from stakedrop.crypto.secrets_file import (
    SECRET_FILE_VERSION,
    create_secret_file,
    generate_secret,
    parse_secret_file,
)
from stakedrop.errors import InvalidInput


class TestGenerateSecret:
    def test_length_and_hex(self) -> None:
        secret = generate_secret()
        assert len(secret) == 64
        int(secret, 16)

    def test_unique(self) -> None:
        assert len({generate_secret() for _ in range(20)}) == 20


class TestSecretFile:
    def test_create_then_parse(self) -> None:
        secret = generate_secret()
        content = create_secret_file(secret, 10_000_000, epoch_id=3)
        parsed = parse_secret_file(content)
        assert parsed.secret == secret
        assert parsed.amount == 10_000_000
        assert parsed.commitment == commit(secret, 10_000_000)
        assert parsed.epoch_id == 3

    def test_file_layout(self) -> None:
        ts = datetime(2026, 3, 1, tzinfo=timezone.utc)
        data = json.loads(create_secret_file("ab" * 32, 50, created_utc=ts))
        assert data["amount"] == "50"
        assert data["createdAt"] == "2026-03-01T00:00:00Z"
        assert data["version"] == SECRET_FILE_VERSION
        assert "warning" in data

    def test_mismatched_commitment_on_create(self) -> None:
        with pytest.raises(InvalidInput):
            create_secret_file("ab" * 32, 50, commitment=commit("ab" * 32, 51))

    def test_tampered_amount_rejected(self) -> None:
        data = json.loads(create_secret_file("ab" * 32, 50))
        data["amount"] = "5000"
        with pytest.raises(InvalidInput, match="does not match"):
            parse_secret_file(json.dumps(data))

    def test_missing_field_rejected(self) -> None:
        data = json.loads(create_secret_file("ab" * 32, 50))
        del data["secret"]
        with pytest.raises(InvalidInput, match="missing"):
            parse_secret_file(json.dumps(data))

    def test_not_json_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            parse_secret_file("{not json")

    def test_non_integer_amount_rejected(self) -> None:
        data = json.loads(create_secret_file("ab" * 32, 50))
        data["amount"] = "fifty"
        with pytest.raises(InvalidInput):
            parse_secret_file(json.dumps(data))
