"""Tests for the StakeDrop CLI: parsing and end-to-end commands."""

import json
from pathlib import Path

import pytest

from stakedrop.cli import build_parser, main
from stakedrop.crypto.commitment import commit
from stakedrop.crypto.secrets_file import parse_secret_file
from stakedrop.crypto.selection import select


SECRET = "9f" * 32


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_simulate_defaults(self) -> None:
        args = build_parser().parse_args(["simulate"])
        assert args.participants == 5
        assert args.yield_amount == 0
        assert args.amount is None

    def test_select_winner_positional(self) -> None:
        args = build_parser().parse_args(["select-winner", "--randomness", "ab", "c1", "c2"])
        assert args.commitments == ["c1", "c2"]


class TestCLIExecution:
    def test_no_command_shows_help(self) -> None:
        assert main([]) == 0

    def test_status_runs(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["status"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["epoch"]["min_participants"] == 2

    def test_commit(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["commit", "--secret", SECRET, "--amount", "100"]) == 0
        assert capsys.readouterr().out.strip() == commit(SECRET, 100)

    def test_commit_bad_secret_fails(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["commit", "--secret", "short", "--amount", "100"]) == 1
        assert "Failed" in capsys.readouterr().err

    def test_verify(self) -> None:
        c = commit(SECRET, 100)
        assert main(["verify", "--secret", SECRET, "--amount", "100", "--commitment", c]) == 0
        assert main(["verify", "--secret", SECRET, "--amount", "101", "--commitment", c]) == 1

    def test_generate_secret_file(self, tmp_path: Path) -> None:
        out = tmp_path / "deposit.json"
        assert main(["generate-secret", "--amount", "10000000", "--output", str(out)]) == 0
        deposit = parse_secret_file(out.read_text(encoding="utf-8"))
        assert deposit.amount == 10_000_000
        assert main(["verify", "--secret-file", str(out)]) == 0

    def test_select_winner(self, capsys: pytest.CaptureFixture) -> None:
        pool = [commit(f"{i + 1:064x}", 100) for i in range(4)]
        assert main(["select-winner", "--randomness", "77" * 32, *pool]) == 0
        out = json.loads(capsys.readouterr().out)
        assert (out["winner_index"], out["winner_commitment"]) == select(pool, "77" * 32)

    def test_select_winner_needs_randomness(self) -> None:
        assert main(["select-winner", "aa" * 32, "bb" * 32]) == 1

    def test_simulate(self, capsys: pytest.CaptureFixture) -> None:
        code = main([
            "simulate", "--participants", "3", "--amount", "10000000",
            "--yield", "250000", "--beacon", "round:1",
        ])
        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["status"] == "completed"
        assert summary["total_paid"] == 30_250_000
        assert sorted(summary["payouts"].values()) == [10_000_000, 10_000_000, 10_250_000]
        assert summary["events"][0] == "epoch_initialized"
        assert summary["events"][-1] == "epoch_completed"
        assert summary["events"].count("withdrawal_processed") == 3

    def test_simulate_single_participant_fails(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["simulate", "--participants", "1"]) == 1
        assert "participants" in capsys.readouterr().err
