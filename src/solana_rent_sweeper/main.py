"""Command line entrypoint for the Solana rent sweeper."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Callable, List, Optional

from .config.settings import get_app_config
from .datalake.schemas import BuiltTransaction
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS
from .service import SweepService, build_services
from .utils.errors import SweeperError
from .utils.serialization import format_token_amount, to_serializable


def _transaction_payload(built: BuiltTransaction) -> dict[str, Any]:
    payload = to_serializable(built)
    payload["transaction"] = built.serialize()
    return payload


async def _run_command(args: argparse.Namespace, service: SweepService) -> Any:
    if args.command == "scan":
        result = await service.scan_wallet(args.address)
        payload = to_serializable(result)
        for item, account in zip(payload["accounts"], result.accounts):
            decimals = account.account.decimals
            if decimals is not None:
                item["account"]["ui_amount"] = format_token_amount(account.account.amount, decimals)
        return payload
    if args.command == "bulk-scan":
        return to_serializable(await service.bulk_scan(args.entries))
    if args.command == "build":
        return _transaction_payload(await service.build_transaction(args.address, args.accounts, args.action))
    if args.command == "bulk-build":
        outcomes = await service.bulk_build(args.entries, args.action)
        payload = []
        for outcome in outcomes:
            item = to_serializable(outcome)
            if isinstance(outcome.result, BuiltTransaction):
                item["result"] = _transaction_payload(outcome.result)
            payload.append(item)
        return payload
    if args.command == "balance":
        return to_serializable(await service.wallet_balance(args.address))
    if args.command == "fees":
        return to_serializable(service.fee_info())
    if args.command == "ledger":
        return to_serializable(service.list_for_wallet(args.address))
    raise SweeperError(f"Unknown command {args.command}")


async def run_async(args: argparse.Namespace, factory: Callable[[], SweepService] = build_services) -> int:
    service = factory()
    try:
        payload = await _run_command(args, service)
    except SweeperError as exc:
        get_logger(__name__).warning("Command %s failed: %s", args.command, exc.message)
        print(json.dumps({"error": exc.to_dict()}, indent=2))
        return 1
    finally:
        await service.close()
    print(json.dumps(payload, indent=2, default=str))
    if args.metrics:
        sys.stderr.write(METRICS.export_prometheus())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recover rent from Solana token accounts")
    parser.add_argument("--metrics", action="store_true", default=False, help="Print metrics to stderr on exit")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="List closeable and burnable token accounts")
    scan.add_argument("address")

    bulk_scan = sub.add_parser("bulk-scan", help="Scan several wallets (addresses or secret keys)")
    bulk_scan.add_argument("entries", nargs="+")

    build = sub.add_parser("build", help="Build an unsigned close/burn transaction")
    build.add_argument("address")
    build.add_argument("accounts", nargs="+")
    build.add_argument("--action", choices=["close", "burn"], default="close")

    bulk_build = sub.add_parser("bulk-build", help="Build one transaction per wallet")
    bulk_build.add_argument("entries", nargs="+")
    bulk_build.add_argument("--action", choices=["close", "burn"], default="close")

    balance = sub.add_parser("balance", help="Show the SOL balance of a wallet")
    balance.add_argument("address")

    sub.add_parser("fees", help="Show the platform fee")

    ledger = sub.add_parser("ledger", help="List locks and vesting schedules of a wallet")
    ledger.add_argument("address")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    bootstrap_observability(get_app_config())
    sys.exit(asyncio.run(run_async(args)))


if __name__ == "__main__":
    main()
