"""roundclaim CLI — tooling around the claim distributor.

Usage:
    python -m roundclaim.cli check-config
    python -m roundclaim.cli build-tree --csv allocations.csv --out tree.json
    python -m roundclaim.cli verify-proof --tree tree.json --address 0x... --amount 1000
    python -m roundclaim.cli sign-claim --user 0x... --round 0 --amount 50
    python -m roundclaim.cli run-scenario scenario.json

Secrets (ALLOCATOR_PRIVATE_KEY, RPC_URL, TOKEN_ADDRESS, PAYER_PRIVATE_KEY)
are read from the environment, with a .env file at the project root
loaded first.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from roundclaim.access.gate import Capability
from roundclaim.config import DEFAULT_CONFIG_DIR, DistributionConfig
from roundclaim.crypto.claim_signature import sign_claim
from roundclaim.crypto.merkle import ClaimTree, claim_leaf, verify_proof
from roundclaim.service import DistributionService
from roundclaim.settlement.rail import rail_from_env

DEFAULT_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

logger = logging.getLogger("roundclaim.cli")


def configure_logging(level: str) -> None:
    """Configure default logging if no handlers are present."""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_config(args: argparse.Namespace) -> DistributionConfig:
    return DistributionConfig.from_config_dir(args.config)


def _parse_time(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        raise ValueError(f"Timestamp must include a UTC offset: {value}")
    return ts


def cmd_check_config(args: argparse.Namespace) -> int:
    config = _load_config(args)
    errors = config.validate()
    if errors:
        for e in errors:
            print(f"  FAIL: {e}", file=sys.stderr)
        return 1
    print(json.dumps(config.to_dict(), indent=2))
    print("Config OK")
    return 0


def cmd_build_tree(args: argparse.Namespace) -> int:
    tree = ClaimTree()
    with Path(args.csv).open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or not {"address", "amount"} <= set(reader.fieldnames):
            print("Failed: CSV needs header: address,amount", file=sys.stderr)
            return 1
        for row in reader:
            address = (row.get("address") or "").strip()
            amount = (row.get("amount") or "").strip()
            if address and amount:
                tree.add_claim(address, int(amount))
    if tree.leaf_count == 0:
        print("Failed: no allocation rows in CSV", file=sys.stderr)
        return 1

    published = tree.to_dict()
    logger.info("Built claim tree over %d rows from %s", tree.leaf_count, args.csv)
    Path(args.out).write_text(json.dumps(published, indent=2) + "\n", encoding="utf-8")
    print(f"Merkle root: {published['merkle_root']}")
    print(f"Token total: {published['token_total']} across {tree.leaf_count} claims")
    return 0


def cmd_verify_proof(args: argparse.Namespace) -> int:
    published = json.loads(Path(args.tree).read_text(encoding="utf-8"))
    entry = next(
        (c for addr, c in published["claims"].items() if addr.lower() == args.address.lower()),
        None,
    )
    if entry is None:
        print("Failed: address not in tree", file=sys.stderr)
        return 1
    ok = verify_proof(entry["proof"], published["merkle_root"], claim_leaf(args.address, args.amount))
    print(f"Valid proof: {ok}")
    return 0 if ok else 1


def cmd_sign_claim(args: argparse.Namespace) -> int:
    config = _load_config(args)
    private_key = os.getenv("ALLOCATOR_PRIVATE_KEY")
    if not private_key:
        print("Failed: ALLOCATOR_PRIVATE_KEY not set", file=sys.stderr)
        return 1
    signature = sign_claim(config, private_key, args.user, args.round, args.amount)
    print("0x" + signature.hex())
    return 0


def run_scenario(config: DistributionConfig, scenario: dict[str, Any], rail=None) -> dict[str, Any]:
    """Drive a fresh in-memory distributor through a scripted scenario.

    Scenario shape:
        setup_time: ISO timestamp for configuration
        rounds: [{start_time, cap, deposit, entry}]   entry = root | percent | null
        deadline: optional ISO timestamp
        claims: [{user, round, amount, token, at}]
                or {batch: true, user, rounds, amounts, tokens, at}
    """
    service = DistributionService(config, owner="scenario", rail=rail)
    owner = service.access.owner_token
    admin = service.grant(owner, "scenario-admin", Capability.ADMIN).data["capability"]
    setup_time = _parse_time(scenario["setup_time"])

    rounds = scenario["rounds"]
    configured = service.configure_rounds(
        admin,
        start_times=[_parse_time(r["start_time"]) for r in rounds],
        caps=[r.get("cap") for r in rounds],
        deposits=[int(r["deposit"]) for r in rounds],
        commitments_or_percents=[r.get("entry") for r in rounds],
        now=setup_time,
    )
    results: list[dict[str, Any]] = [{"step": "configure_rounds", **_summary(configured)}]
    if not configured.success:
        return {"results": results, "status": service.status(setup_time)}

    if scenario.get("deadline"):
        updated = service.update_deadline(admin, _parse_time(scenario["deadline"]), now=setup_time)
        results.append({"step": "update_deadline", **_summary(updated)})
    service.unpause(admin, now=setup_time)

    last_time = setup_time
    for step in scenario.get("claims", []):
        at = _parse_time(step["at"])
        last_time = at
        if step.get("batch"):
            result = service.claim_batch(
                step["user"], step["rounds"], [int(a) for a in step["amounts"]],
                step["tokens"], now=at,
            )
            results.append({"step": "claim_batch", **_summary(result)})
        else:
            result = service.claim(
                step["user"], int(step["round"]), int(step["amount"]), step["token"], now=at,
            )
            results.append({"step": "claim", "round": step["round"], **_summary(result)})

    return {
        "results": results,
        "status": service.status(last_time),
        "events": [e.to_dict() for e in service.event_log.events()],
    }


def _summary(result) -> dict[str, Any]:
    summary: dict[str, Any] = {"success": result.success}
    if result.success:
        summary.update({k: v for k, v in result.data.items() if k not in ("capability", "warnings")})
        if result.data.get("warnings"):
            summary["warnings"] = result.data["warnings"]
    else:
        summary["reason"] = result.reason
        summary["errors"] = result.errors
    return summary


def cmd_run_scenario(args: argparse.Namespace) -> int:
    config = _load_config(args)
    scenario = json.loads(Path(args.scenario).read_text(encoding="utf-8"))
    rail = rail_from_env(dict(os.environ), config.chain_id) if args.live else None
    if args.live and rail is None:
        print("Failed: --live needs RPC_URL, TOKEN_ADDRESS and PAYER_PRIVATE_KEY", file=sys.stderr)
        return 1
    logger.info("Running scenario %s on rail %s", args.scenario, rail.rail_id if rail else "recording")
    report = run_scenario(config, scenario, rail=rail)
    print(json.dumps(report, indent=2, default=str))
    return 0 if all(r["success"] for r in report["results"]) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roundclaim",
        description="Round-based token claim distributor tooling",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=DEFAULT_ENV_FILE,
        help="dotenv file with secrets (default: .env)",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check-config", help="Validate distribution_params.json")

    p_tree = sub.add_parser("build-tree", help="Build a claim Merkle tree from a CSV")
    p_tree.add_argument("--csv", required=True, help="CSV with header address,amount")
    p_tree.add_argument("--out", default="tree.json", help="Output JSON (default: tree.json)")

    p_verify = sub.add_parser("verify-proof", help="Verify a published proof")
    p_verify.add_argument("--tree", default="tree.json", help="Published tree JSON")
    p_verify.add_argument("--address", required=True)
    p_verify.add_argument("--amount", required=True, type=int)

    p_sign = sub.add_parser("sign-claim", help="Sign a claim with ALLOCATOR_PRIVATE_KEY")
    p_sign.add_argument("--user", required=True)
    p_sign.add_argument("--round", required=True, type=int)
    p_sign.add_argument("--amount", required=True, type=int)

    p_run = sub.add_parser("run-scenario", help="Run a scripted claim scenario in memory")
    p_run.add_argument("scenario", help="Scenario JSON file")
    p_run.add_argument("--live", action="store_true", help="Pay out through the ERC-20 rail")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.log_level)
    if args.env_file and args.env_file.exists():
        load_dotenv(args.env_file)

    commands = {
        "check-config": cmd_check_config,
        "build-tree": cmd_build_tree,
        "verify-proof": cmd_verify_proof,
        "sign-claim": cmd_sign_claim,
        "run-scenario": cmd_run_scenario,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
