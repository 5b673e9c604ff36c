"""StakeDrop CLI: participant tooling and an in-memory epoch simulator.

Usage:
    stakedrop generate-secret --amount 10000000 --output my-deposit.json
    stakedrop commit --secret <hex> --amount 10000000
    stakedrop verify --secret <hex> --amount 10000000 --commitment <hex>
    stakedrop select-winner --randomness <hex> <commitment> <commitment> ...
    stakedrop select-winner --beacon round:4242 --epoch-id 1 <commitment> ...
    stakedrop simulate --participants 5 --yield 2500000 --beacon round:4242
    stakedrop status
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from stakedrop.adapters.memory import InMemoryPrivacyChain, InMemorySettlementChain
from stakedrop.bridge.coordinator import Coordinator
from stakedrop.config import BridgeConfig, DEFAULT_CONFIG_DIR
from stakedrop.crypto import commitment as commitment_engine
from stakedrop.crypto.secrets_file import create_secret_file, generate_secret, parse_secret_file
from stakedrop.crypto.selection import derive_randomness, select
from stakedrop.errors import BridgeError
from stakedrop.logging_utils import configure_logging
from stakedrop.persistence.event_log import EventLog


def _load_config(args: argparse.Namespace) -> BridgeConfig:
    return BridgeConfig.load(args.config)


def cmd_generate_secret(args: argparse.Namespace) -> int:
    secret = generate_secret()
    content = create_secret_file(secret, args.amount, epoch_id=args.epoch_id)
    if args.output:
        args.output.write_text(content + "\n", encoding="utf-8")
        deposit = parse_secret_file(content)
        print(f"Commitment: {deposit.commitment}")
        print(f"Secret file written to {args.output}. Keep it private; it is the only way to withdraw.")
    else:
        print(content)
    return 0


def cmd_commit(args: argparse.Namespace) -> int:
    print(commitment_engine.commit(args.secret, args.amount))
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    if args.secret_file:
        deposit = parse_secret_file(args.secret_file.read_text(encoding="utf-8"))
        secret, amount, commitment = deposit.secret, deposit.amount, deposit.commitment
    else:
        if not (args.secret and args.amount and args.commitment):
            print("Failed: --secret, --amount and --commitment are required", file=sys.stderr)
            return 1
        secret, amount, commitment = args.secret, args.amount, args.commitment
    if commitment_engine.verify(secret, amount, commitment):
        print("valid")
        return 0
    print("invalid")
    return 1


def cmd_select_winner(args: argparse.Namespace) -> int:
    if args.randomness:
        randomness = args.randomness
    elif args.beacon:
        randomness = derive_randomness(args.epoch_id, args.commitments, args.beacon)
    else:
        print("Failed: --randomness or --beacon is required", file=sys.stderr)
        return 1
    index, winner = select(args.commitments, randomness)
    print(json.dumps({
        "randomness": randomness,
        "winner_index": index,
        "winner_commitment": winner,
        "participant_count": len(args.commitments),
    }, indent=2))
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    amount = args.amount or config.epoch.min_deposit
    event_log = EventLog(storage_path=args.event_log) if args.event_log else EventLog()

    settlement = InMemorySettlementChain()
    privacy = InMemoryPrivacyChain()
    coordinator = Coordinator(settlement, privacy, config, event_log=event_log)
    try:
        summary = run_simulation(
            coordinator, settlement,
            participants=args.participants,
            amount=amount,
            rewards=args.yield_amount,
            beacon=args.beacon,
            beacon_round=args.beacon_round,
        )
    finally:
        coordinator.close()
    print(json.dumps(summary, indent=2))
    return 0


def run_simulation(
    coordinator: Coordinator,
    settlement: InMemorySettlementChain,
    participants: int,
    amount: int,
    rewards: int,
    beacon: str,
    beacon_round: Optional[str] = None,
) -> dict[str, Any]:
    """Drive one full epoch against in-memory ledgers and summarize it."""
    epoch_id = coordinator.start_epoch()
    secrets: dict[str, str] = {}
    for _ in range(participants):
        secret = generate_secret()
        commitment = commitment_engine.commit(secret, amount)
        settlement.fund(commitment, amount)
        coordinator.register_deposit(commitment, amount, proof=f"deposit:{commitment}")
        secrets[commitment] = secret

    coordinator.lock_and_stake(admin_lock=True, beacon_round=beacon_round)
    if rewards:
        settlement.accrue_rewards(rewards)
        coordinator.claim_rewards()
    coordinator.publish_randomness(beacon, beacon_round=beacon_round)
    result = coordinator.finalize_epoch()

    payouts = {}
    for commitment, secret in secrets.items():
        settled = coordinator.process_withdrawal(commitment, secret)
        payouts[commitment] = settled.total

    epoch = coordinator.epoch
    return {
        "epoch_id": epoch_id,
        "status": epoch.status.value,
        "participants": participants,
        "total_deposited": epoch.total_deposited,
        "yield_amount": epoch.yield_amount,
        "randomness": result.randomness,
        "winner_index": result.winner_index,
        "winner_commitment": result.winner_commitment,
        "total_paid": epoch.total_paid,
        "payouts": payouts,
        "events": [e.kind.value for e in coordinator.event_log.events_for_epoch(epoch_id)],
    }


def cmd_status(args: argparse.Namespace) -> int:
    config = _load_config(args)
    print(json.dumps(config.summary(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stakedrop",
        description="StakeDrop: no-loss lottery bridge tooling",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("--log-file", type=Path, help="Write JSON-lines logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # generate-secret
    p_gen = sub.add_parser("generate-secret", help="Create a deposit secret file")
    p_gen.add_argument("--amount", type=int, required=True, help="Deposit amount (smallest unit)")
    p_gen.add_argument("--epoch-id", type=int, default=0, help="Epoch the deposit is for")
    p_gen.add_argument("--output", type=Path, help="Write the secret file here instead of stdout")

    # commit
    p_commit = sub.add_parser("commit", help="Compute a deposit commitment")
    p_commit.add_argument("--secret", required=True, help="Hex secret")
    p_commit.add_argument("--amount", type=int, required=True, help="Deposit amount")

    # verify
    p_verify = sub.add_parser("verify", help="Check that a secret opens a commitment")
    p_verify.add_argument("--secret", help="Hex secret")
    p_verify.add_argument("--amount", type=int, help="Deposit amount")
    p_verify.add_argument("--commitment", help="Commitment to open")
    p_verify.add_argument("--secret-file", type=Path, help="Secret file from generate-secret")

    # select-winner
    p_sel = sub.add_parser("select-winner", help="Recompute a winner from public data")
    p_sel.add_argument("commitments", nargs="+", help="Commitments in registration order")
    p_sel.add_argument("--randomness", help="Published randomness (hex)")
    p_sel.add_argument("--beacon", help="Beacon value to derive randomness from")
    p_sel.add_argument("--epoch-id", type=int, default=1, help="Epoch id for beacon derivation")

    # simulate
    p_sim = sub.add_parser("simulate", help="Run a full epoch on in-memory ledgers")
    p_sim.add_argument("--participants", type=int, default=5, help="Number of depositors")
    p_sim.add_argument("--amount", type=int, help="Deposit per participant (default: min deposit)")
    p_sim.add_argument(
        "--yield", dest="yield_amount", type=int, default=0, help="Staking rewards to accrue",
    )
    p_sim.add_argument("--beacon", default="stakedrop-simulation", help="Randomness beacon value")
    p_sim.add_argument("--beacon-round", help="Beacon round committed to at lock time")
    p_sim.add_argument("--event-log", type=Path, help="Persist events to this JSONL file")

    # status
    sub.add_parser("status", help="Show the effective configuration")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.log_file, level=logging.DEBUG if args.verbose else logging.WARNING)

    commands = {
        "generate-secret": cmd_generate_secret,
        "commit": cmd_commit,
        "verify": cmd_verify,
        "select-winner": cmd_select_winner,
        "simulate": cmd_simulate,
        "status": cmd_status,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (BridgeError, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
