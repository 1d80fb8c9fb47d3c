from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional

from order_audit.errors import ConfigError
from order_audit.orders_sync.main import (
    add_common_arguments,
    add_extract_arguments,
    parse_date_arg,
    run_extract,
    run_rebuild_day,
)
from order_audit.orders_sync.reextract import add_reextract_arguments, run_reextract
from order_audit.reconciliation.main import add_reconcile_arguments, run_reconcile

COMMANDS = {
    "extract": run_extract,
    "rebuild-day": run_rebuild_day,
    "reextract-placeholders": run_reextract,
    "reconcile": run_reconcile,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="order-audit")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract_parser = subparsers.add_parser("extract", help="Walk months backward and extract new days")
    add_extract_arguments(extract_parser)

    rebuild_parser = subparsers.add_parser("rebuild-day", help="Re-extract a single stored date")
    rebuild_parser.add_argument("day", type=parse_date_arg, help="Date to rebuild (YYYY-MM-DD)")
    add_common_arguments(rebuild_parser)

    reextract_parser = subparsers.add_parser(
        "reextract-placeholders",
        help="Retry line items for orders stored with placeholders only",
    )
    add_reextract_arguments(reextract_parser)

    reconcile_parser = subparsers.add_parser("reconcile", help="Compare extracted data with a reference dataset")
    add_reconcile_arguments(reconcile_parser)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.error("Unknown command")
        return 2
    try:
        return asyncio.run(handler(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
