"""Retry line-item extraction for orders whose stored items are only placeholders."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Sequence

from order_audit.common.date_utils import YearMonth, month_range
from order_audit.common.json_logger import JsonLogger, get_logger, log_event, new_run_id
from order_audit.common.run_summary import RunAggregator, persist_summary
from order_audit.config import Config, get_config
from order_audit.errors import AuthenticationError
from order_audit.orders_sync.console import ConsoleSession, PlaywrightSessionProvider, SessionProvider, within_session
from order_audit.orders_sync.line_items import LineItemExtractor
from order_audit.orders_sync.main import Sleeper
from order_audit.orders_sync.models import LineItem
from order_audit.orders_sync.store import IncrementalStore

PIPELINE_NAME = "orders_reextract_placeholders"


@dataclass
class ReextractState:
    dates_scanned: int = 0
    candidates: int = 0
    recovered: int = 0
    still_placeholder: int = 0
    dates_rewritten: List[str] = field(default_factory=list)
    error: str | None = None

    def totals(self) -> Dict[str, int]:
        return {
            "dates_scanned": self.dates_scanned,
            "candidates": self.candidates,
            "recovered": self.recovered,
            "still_placeholder": self.still_placeholder,
            "dates_rewritten": len(self.dates_rewritten),
        }


def placeholder_orders(items: Sequence[LineItem]) -> List[str]:
    """Order ids, in file order, whose every stored line is a placeholder."""

    by_order: Dict[str, List[LineItem]] = {}
    for item in items:
        by_order.setdefault(item.order_id, []).append(item)
    return [order_id for order_id, lines in by_order.items() if all(line.is_placeholder for line in lines)]


def merge_line_items(items: Sequence[LineItem], replacements: Dict[str, List[LineItem]]) -> List[LineItem]:
    """Swap each replaced order's lines in place, keeping the position of the first original line."""

    merged: List[LineItem] = []
    emitted: set[str] = set()
    for item in items:
        if item.order_id not in replacements:
            merged.append(item)
            continue
        if item.order_id in emitted:
            continue
        emitted.add(item.order_id)
        merged.extend(replacements[item.order_id])
    return merged


async def reextract_dates(
    *,
    session: ConsoleSession,
    store: IncrementalStore,
    dates: Sequence[date],
    logger: JsonLogger,
    config: Config,
    sleep: Sleeper = asyncio.sleep,
) -> ReextractState:
    state = ReextractState()
    detail = session.detail_surface()
    extractor = LineItemExtractor(detail=detail, logger=logger, timeout_seconds=config.order_timeout_seconds)
    fetched_any = False
    try:
        for day in dates:
            state.dates_scanned += 1
            items = store.read_line_items(day)
            targets = placeholder_orders(items)
            if not targets:
                continue
            orders = {order.order_id: order for order in store.read_orders(day)}
            replacements: Dict[str, List[LineItem]] = {}
            for order_id in targets:
                order = orders.get(order_id)
                if order is None or not order.href:
                    log_event(
                        logger=logger,
                        phase="reextract",
                        status="warn",
                        message="Order header missing; cannot re-extract",
                        date=day.isoformat(),
                        order_id=order_id,
                    )
                    continue
                state.candidates += 1
                if fetched_any:
                    await sleep(config.order_delay_seconds)
                fetched_any = True
                result = await extractor.extract(order)
                if result.placeholder:
                    state.still_placeholder += 1
                    continue
                replacements[order_id] = result.items
                state.recovered += 1
            if replacements:
                store.replace_line_items(day, merge_line_items(items, replacements))
                state.dates_rewritten.append(day.isoformat())
                log_event(
                    logger=logger,
                    phase="reextract",
                    message="Rewrote line items with recovered orders",
                    date=day.isoformat(),
                    recovered=len(replacements),
                )
    finally:
        await detail.close()
    return state


async def run_reextract_placeholders(
    *,
    start: YearMonth,
    end: YearMonth,
    config: Config | None = None,
    run_id: str | None = None,
    run_env: str | None = None,
    session_provider: SessionProvider | None = None,
    logger: JsonLogger | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> ReextractState:
    resolved_config = config or get_config()
    resolved_run_id = run_id or new_run_id()
    owns_logger = logger is None
    logger = logger or get_logger(run_id=resolved_run_id)
    aggregator = RunAggregator(
        pipeline_name=PIPELINE_NAME,
        run_id=resolved_run_id,
        run_env=run_env or resolved_config.run_env,
    )
    logger.attach_aggregator(aggregator)
    store = IncrementalStore(resolved_config.exports_dir, logger=logger)
    dates = [day for month in month_range(start, end) for day in store.list_dates(month)]
    log_event(
        logger=logger,
        phase="init",
        message="Scanning stored days for placeholder line items",
        start_month=str(start),
        end_month=str(end),
        dates=len(dates),
    )

    provider = session_provider or PlaywrightSessionProvider(config=resolved_config, logger=logger)
    try:
        state = await within_session(
            provider,
            lambda session: reextract_dates(
                session=session,
                store=store,
                dates=dates,
                logger=logger,
                config=resolved_config,
                sleep=sleep,
            ),
        )
    except AuthenticationError as exc:
        state = ReextractState(error=f"Authentication failed: {exc}")
        log_event(logger=logger, phase="login", status="error", message=state.error)
    except Exception as exc:
        state = ReextractState(error=f"Re-extraction failed: {type(exc).__name__}: {exc}")
        log_event(logger=logger, phase="reextract", status="error", message=state.error)

    aggregator.set_totals(**state.totals())
    if state.error:
        aggregator.mark_fatal(state.error)
    log_event(logger=logger, phase="run", message="Placeholder re-extraction finished", **state.totals())
    await persist_summary(aggregator=aggregator, logger=logger, database_url=resolved_config.database_url)
    if owns_logger:
        with contextlib.suppress(Exception):
            logger.close()
    return state


def add_reextract_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", dest="start", type=_parse_month, required=True, help="First month (YYYY-MM)")
    parser.add_argument("--end", dest="end", type=_parse_month, default=None, help="Last month (YYYY-MM); defaults to --start")
    parser.add_argument("--exports-dir", dest="exports_dir", type=str, default=None, help="Incremental store root")
    parser.add_argument("--run-env", dest="run_env", type=str, default=None, help="Override run environment label")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")


def _parse_month(value: str) -> YearMonth:
    try:
        return YearMonth.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


async def run_reextract(args: argparse.Namespace) -> int:
    config = get_config()
    if args.exports_dir:
        config = dataclasses.replace(config, exports_dir=args.exports_dir)
    state = await run_reextract_placeholders(
        start=args.start,
        end=args.end or args.start,
        config=config,
        run_id=args.run_id,
        run_env=args.run_env,
    )
    return 1 if state.error else 0
