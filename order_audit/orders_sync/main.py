from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from order_audit.common.date_utils import YearMonth, aware_now, get_timezone, months_backward
from order_audit.common.json_logger import JsonLogger, get_logger, log_event, new_run_id
from order_audit.common.run_summary import RunAggregator, persist_summary
from order_audit.config import Config, get_config
from order_audit.errors import ConfigError, ExtractionError, StoreError
from order_audit.orders_sync.console import (
    ConsoleSession,
    DetailSurface,
    FilterConfigurator,
    ListSurface,
    PlaywrightSessionProvider,
    SessionProvider,
    UrlFilterConfigurator,
)
from order_audit.orders_sync.line_items import LineItemExtractor
from order_audit.orders_sync.models import LineItem, OrderSummary
from order_audit.orders_sync.page_extractor import DEFAULT_PAGE_CAP, extract_orders
from order_audit.orders_sync.partition import partition_by_day
from order_audit.orders_sync.store import IncrementalStore

PIPELINE_NAME = "orders_sync"

ProgressCallback = Callable[[Dict[str, Any]], None]
Sleeper = Callable[[float], Awaitable[None]]


class DriverState(str, Enum):
    INIT = "init"
    AUTH = "auth"
    FILTER_SETUP = "filter_setup"
    SET_RANGE = "set_range"
    EXTRACT_ORDERS = "extract_orders"
    PARTITION_AND_PERSIST = "partition_and_persist"
    DONE = "done"


@dataclass
class MonthOutcome:
    month: str
    status: str = "ok"
    orders: int = 0
    dates_processed: int = 0
    dates_skipped: int = 0
    line_items: int = 0
    placeholders: int = 0
    partial: bool = False
    error: str | None = None


@dataclass
class RunState:
    """Counters threaded through one extraction run."""

    phase: DriverState = DriverState.INIT
    consecutive_empty_months: int = 0
    months_processed: int = 0
    orders: int = 0
    line_items: int = 0
    placeholders: int = 0
    processed_dates: List[str] = field(default_factory=list)
    skipped_dates: List[str] = field(default_factory=list)
    failed_months: List[str] = field(default_factory=list)
    months: List[MonthOutcome] = field(default_factory=list)
    stop_reason: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def totals(self) -> Dict[str, int]:
        return {
            "months_processed": self.months_processed,
            "orders": self.orders,
            "line_items": self.line_items,
            "placeholders": self.placeholders,
            "dates_processed": len(self.processed_dates),
            "dates_skipped": len(self.skipped_dates),
            "failed_months": len(self.failed_months),
        }


class MonthDriver:
    """Walks months backward, extracting and persisting every day not yet in the store."""

    def __init__(
        self,
        *,
        session_provider: SessionProvider,
        filter_configurator: FilterConfigurator,
        store: IncrementalStore,
        logger: JsonLogger,
        config: Config,
        start_month: YearMonth | None = None,
        only_dates: Sequence[date] | None = None,
        page_cap: int = DEFAULT_PAGE_CAP,
        sleep: Sleeper = asyncio.sleep,
        progress: ProgressCallback | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_provider = session_provider
        self.filter_configurator = filter_configurator
        self.store = store
        self.logger = logger
        self.config = config
        self.only_dates = set(only_dates) if only_dates is not None else None
        self.page_cap = page_cap
        self.sleep = sleep
        self.progress = progress
        self.now = now or (lambda: aware_now(get_timezone(config.pipeline_timezone)))
        self.start_month = start_month or YearMonth.of(self.now().date()).shift(-config.start_months_back)
        self.state = RunState()
        self._fetched_any = False

    def _transition(self, phase: DriverState, **fields: Any) -> None:
        self.state.phase = phase
        if self.progress:
            self.progress({"phase": phase.value, **fields})

    async def run(self) -> RunState:
        state = self.state
        self._transition(DriverState.AUTH)
        try:
            session = await self.session_provider.authenticate()
        except Exception as exc:
            state.error = f"Authentication failed: {exc}"
            state.stop_reason = "auth_failed"
            log_event(logger=self.logger, phase="login", status="error", message=state.error)
            with contextlib.suppress(Exception):
                await self.session_provider.close()
            self._transition(DriverState.DONE)
            return state

        try:
            self._transition(DriverState.FILTER_SETUP)
            list_surface = session.list_surface()
            detail = session.detail_surface()
            extractor = LineItemExtractor(
                detail=detail,
                logger=self.logger,
                timeout_seconds=self.config.order_timeout_seconds,
            )
            log_event(
                logger=self.logger,
                phase="init",
                message="Starting month walk",
                start_month=str(self.start_month),
                max_months=self.config.max_months,
                max_empty_months=self.config.max_empty_months,
            )
            for month in months_backward(self.start_month, self.config.max_months):
                outcome = await self._run_month(month, session, list_surface, detail, extractor)
                state.months.append(outcome)
                state.months_processed += 1
                if outcome.status == "error" or outcome.orders == 0:
                    state.consecutive_empty_months += 1
                else:
                    state.consecutive_empty_months = 0
                if state.consecutive_empty_months >= self.config.max_empty_months:
                    state.stop_reason = "empty_months"
                    log_event(
                        logger=self.logger,
                        phase="months",
                        message="Stopping after consecutive empty months",
                        month=str(month),
                        consecutive_empty_months=state.consecutive_empty_months,
                    )
                    break
            else:
                state.stop_reason = "month_cap"
        except StoreError as exc:
            state.error = str(exc)
            state.stop_reason = "store_error"
            log_event(logger=self.logger, phase="store", status="error", message="Store write failed; aborting run", error=str(exc))
        finally:
            with contextlib.suppress(Exception):
                await self.session_provider.close()
            self._transition(DriverState.DONE)
        return state

    async def _run_month(
        self,
        month: YearMonth,
        session: ConsoleSession,
        list_surface: ListSurface,
        detail: DetailSurface,
        extractor: LineItemExtractor,
    ) -> MonthOutcome:
        outcome = MonthOutcome(month=str(month))
        month_logger = self.logger.bind(month=str(month))
        try:
            self._transition(DriverState.SET_RANGE, month=str(month))
            await self.filter_configurator.apply(session, month)

            self._transition(DriverState.EXTRACT_ORDERS, month=str(month))
            extract = await extract_orders(list_surface, logger=month_logger, page_cap=self.page_cap)
            outcome.orders = len(extract.orders)
            outcome.partial = extract.partial
            if extract.partial:
                # An interrupted listing may have lost any day's tail; persist nothing.
                raise ExtractionError(f"Order listing incomplete: {extract.error}")
            if not extract.orders:
                log_event(logger=month_logger, phase="months", message="No orders for month")
                return outcome

            self._transition(DriverState.PARTITION_AND_PERSIST, month=str(month))
            await self._persist_days(month, extract.orders, detail, extractor, outcome, month_logger)
        except StoreError:
            raise
        except Exception as exc:
            outcome.status = "error"
            outcome.error = str(exc)
            self.state.failed_months.append(str(month))
            log_event(
                logger=month_logger,
                phase="months",
                status="error",
                message="Month failed; counting it as empty",
                error=str(exc),
            )
            return outcome

        log_event(
            logger=month_logger,
            phase="months",
            message="Month complete",
            orders=outcome.orders,
            dates_processed=outcome.dates_processed,
            dates_skipped=outcome.dates_skipped,
            line_items=outcome.line_items,
            placeholders=outcome.placeholders,
        )
        return outcome

    async def _persist_days(
        self,
        month: YearMonth,
        orders: Sequence[OrderSummary],
        detail: DetailSurface,
        extractor: LineItemExtractor,
        outcome: MonthOutcome,
        month_logger: JsonLogger,
    ) -> None:
        partitions = partition_by_day(orders)
        if partitions.unparsed:
            log_event(
                logger=month_logger,
                phase="partition",
                status="warn",
                message="Orders with unparseable dates were not persisted",
                orders=[order.order_id for order in partitions.unparsed],
            )
        for day, day_orders in partitions.days.items():
            day_key = day.isoformat()
            if YearMonth.of(day) != month:
                log_event(
                    logger=month_logger,
                    phase="partition",
                    status="warn",
                    message="Order date outside the filtered month; skipping",
                    date=day_key,
                    orders=len(day_orders),
                )
                continue
            if self.only_dates is not None and day not in self.only_dates:
                continue
            if self.store.should_skip(day):
                outcome.dates_skipped += 1
                self.state.skipped_dates.append(day_key)
                log_event(logger=month_logger, phase="store", status="debug", message="Day already stored; skipping", date=day_key)
                continue

            items: List[LineItem] = []
            placeholders = 0
            try:
                for order in day_orders:
                    if self._fetched_any:
                        await self.sleep(self.config.order_delay_seconds)
                    self._fetched_any = True
                    result = await extractor.extract(order)
                    items.extend(result.items)
                    placeholders += int(result.placeholder)
            finally:
                await detail.close()

            self.store.write(day, day_orders, items)
            outcome.dates_processed += 1
            outcome.line_items += len(items)
            outcome.placeholders += placeholders
            self.state.processed_dates.append(day_key)
            self.state.orders += len(day_orders)
            self.state.line_items += len(items)
            self.state.placeholders += placeholders
            if self.progress:
                self.progress({"phase": "day_persisted", "date": day_key, "orders": len(day_orders), "line_items": len(items)})


async def run_month_driver(
    *,
    config: Config | None = None,
    run_id: str | None = None,
    run_env: str | None = None,
    start_month: YearMonth | None = None,
    only_dates: Sequence[date] | None = None,
    force_dates: Sequence[date] = (),
    force_all: bool = False,
    session_provider: SessionProvider | None = None,
    filter_configurator: FilterConfigurator | None = None,
    logger: JsonLogger | None = None,
    sleep: Sleeper = asyncio.sleep,
    progress: ProgressCallback | None = None,
) -> RunState:
    """Run one extraction pass and record its summary."""

    resolved_config = config or get_config()
    resolved_run_id = run_id or new_run_id()
    resolved_env = run_env or resolved_config.run_env
    owns_logger = logger is None
    logger = logger or get_logger(run_id=resolved_run_id)
    aggregator = RunAggregator(pipeline_name=PIPELINE_NAME, run_id=resolved_run_id, run_env=resolved_env)
    logger.attach_aggregator(aggregator)

    store = IncrementalStore(
        resolved_config.exports_dir,
        force_dates=force_dates,
        force_all=force_all,
        logger=logger,
    )
    driver = MonthDriver(
        session_provider=session_provider or PlaywrightSessionProvider(config=resolved_config, logger=logger),
        filter_configurator=filter_configurator or UrlFilterConfigurator(config=resolved_config, logger=logger),
        store=store,
        logger=logger,
        config=resolved_config,
        start_month=start_month,
        only_dates=only_dates,
        sleep=sleep,
        progress=progress,
    )
    log_event(
        logger=logger,
        phase="init",
        message="Starting orders extraction",
        run_env=resolved_env,
        exports_dir=str(Path(resolved_config.exports_dir)),
        force_all=force_all,
        force_dates=[day.isoformat() for day in force_dates],
    )
    try:
        state = await driver.run()
    except asyncio.CancelledError:
        aggregator.mark_fatal("Run cancelled")
        aggregator.set_totals(**driver.state.totals())
        log_event(logger=logger, phase="run", status="warn", message="Extraction cancelled", **driver.state.totals())
        await persist_summary(aggregator=aggregator, logger=logger, database_url=resolved_config.database_url)
        raise

    aggregator.set_totals(**state.totals())
    if state.failed_months:
        aggregator.add_note(f"Failed months: {', '.join(state.failed_months)}")
    if state.error:
        aggregator.mark_fatal(state.error)
    log_event(
        logger=logger,
        phase="run",
        status="error" if state.error else "ok",
        message="Extraction finished",
        stop_reason=state.stop_reason,
        **state.totals(),
    )
    await persist_summary(aggregator=aggregator, logger=logger, database_url=resolved_config.database_url)
    if owns_logger:
        with contextlib.suppress(Exception):
            logger.close()
    return state


def parse_date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}; expected YYYY-MM-DD") from exc


def _apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    overrides: Dict[str, Any] = {}
    if getattr(args, "exports_dir", None):
        overrides["exports_dir"] = args.exports_dir
    if getattr(args, "max_months", None) is not None:
        overrides["max_months"] = args.max_months
    if getattr(args, "start_months_back", None) is not None:
        overrides["start_months_back"] = args.start_months_back
    if getattr(args, "headful", False):
        overrides["headless"] = False
    return dataclasses.replace(config, **overrides) if overrides else config


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--run-env", dest="run_env", type=str, default=None, help="Override run environment label")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    parser.add_argument("--exports-dir", dest="exports_dir", type=str, default=None, help="Incremental store root")
    parser.add_argument("--headful", dest="headful", action="store_true", help="Show the browser window")


def add_extract_arguments(parser: argparse.ArgumentParser) -> None:
    add_common_arguments(parser)
    parser.add_argument("--max-months", dest="max_months", type=int, default=None, help="Hard cap on months walked")
    parser.add_argument(
        "--start-months-back",
        dest="start_months_back",
        type=int,
        default=None,
        help="Start this many months before the current month",
    )
    parser.add_argument(
        "--force-date",
        dest="force_dates",
        type=parse_date_arg,
        action="append",
        default=[],
        help="Rebuild this date even if stored (repeatable, YYYY-MM-DD)",
    )
    parser.add_argument("--force-all", dest="force_all", action="store_true", help="Rebuild every date encountered")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract orders and line items month by month")
    add_extract_arguments(parser)
    return parser


async def run_extract(args: argparse.Namespace) -> int:
    config = _apply_overrides(get_config(), args)
    state = await run_month_driver(
        config=config,
        run_id=args.run_id,
        run_env=args.run_env,
        force_dates=args.force_dates,
        force_all=args.force_all,
    )
    return 0 if state.ok else 1


async def run_rebuild_day(args: argparse.Namespace) -> int:
    config = _apply_overrides(get_config(), args)
    day: date = args.day
    state = await run_month_driver(
        config=dataclasses.replace(config, max_months=1, max_empty_months=1),
        run_id=args.run_id,
        run_env=args.run_env,
        start_month=YearMonth.of(day),
        only_dates=[day],
        force_dates=[day],
    )
    return 0 if state.ok else 1


async def _async_entrypoint(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return await run_extract(args)


def run(argv: Sequence[str] | None = None) -> int:
    try:
        return asyncio.run(_async_entrypoint(argv))
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(run())
