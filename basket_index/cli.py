"""Command-line interface for the basket index client."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import load_config
from .errors import ConfigurationError, ValidationError
from .logging_setup import configure_logging
from .services import IndexEngine

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACT_PATH = "index-config.json"


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="basket-index",
        description="Equal-weighted basket index client",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("value", help="Compute the index value once")

    watch_parser = sub.add_parser("watch", help="Refresh the index value continuously")
    watch_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Refresh interval in seconds (overrides config)",
    )

    sub.add_parser("balance", help="Show index shares held by the wallet")

    deposit_parser = sub.add_parser("deposit", help="Deposit SOL into the index")
    deposit_parser.add_argument("amount", help="Amount of SOL to deposit")

    redeem_parser = sub.add_parser("redeem", help="Redeem index shares for the basket")
    redeem_parser.add_argument("shares", help="Number of index shares to redeem")

    sub.add_parser("derive", help="Print derived program and token addresses")

    init_parser = sub.add_parser("init-index", help="Initialize the index on-ledger")
    init_parser.add_argument(
        "--output",
        default=DEFAULT_ARTIFACT_PATH,
        help=f"Where to write the index artifact (default: {DEFAULT_ARTIFACT_PATH})",
    )

    return parser


def _connect_wallet(engine: IndexEngine) -> None:
    try:
        engine.connect()
    except (FileNotFoundError, ValueError) as e:
        logger.warning("No wallet connected: %s", e)


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    engine = IndexEngine(config)
    _connect_wallet(engine)

    if args.command == "value":
        snapshot = await engine.value()
        if snapshot is not None:
            print(engine.format_snapshot(snapshot))
    elif args.command == "watch":
        await engine.watch(args.interval)
    elif args.command == "balance":
        try:
            shares = await engine.balance()
        except ValidationError as e:
            print(f"❌ {e}")
            return 1
        print(f"Index shares: {shares:.4f}")
    elif args.command in ("deposit", "redeem"):
        if args.command == "deposit":
            result = await engine.deposit(args.amount)
        else:
            result = await engine.redeem(args.shares)
        print(engine.format_result(result))
        return 0 if result.success else 1
    elif args.command == "derive":
        print(json.dumps(engine.derived_addresses(), indent=2))
    elif args.command == "init-index":
        try:
            artifact = await engine.init_index(args.output)
        except ValidationError as e:
            print(f"❌ {e}")
            return 1
        except ConfigurationError as e:
            print(f"❌ {e}\nHint: {e.hint}")
            return 1
        print(json.dumps(artifact.to_json_dict(), indent=2))
    else:
        build_parser().print_help()
        return 1
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
