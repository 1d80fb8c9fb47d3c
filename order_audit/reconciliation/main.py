from __future__ import annotations

import argparse
import asyncio
import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from order_audit.common.date_utils import YearMonth
from order_audit.common.json_logger import JsonLogger, get_logger, log_event, new_run_id, timed_event
from order_audit.common.money import format_amount
from order_audit.common.run_summary import RunAggregator, persist_summary
from order_audit.config import Config, get_config
from order_audit.errors import ConfigError
from order_audit.reconciliation.engine import (
    STATUS_ERROR,
    STATUS_FAIL,
    MonthResult,
    ReconcileOptions,
    reconcile_range,
)
from order_audit.reconciliation.reporter import DEFAULT_TOP_N, ReportPaths, total_revenue, write_reports

PIPELINE_NAME = "orders_reconciliation"


@dataclass
class ReconciliationRun:
    results: List[MonthResult] = field(default_factory=list)
    reports: ReportPaths | None = None

    @property
    def failed_months(self) -> List[str]:
        return [result.month for result in self.results if result.status == STATUS_FAIL]

    @property
    def error_months(self) -> List[str]:
        return [result.month for result in self.results if result.status == STATUS_ERROR]

    @property
    def ok(self) -> bool:
        return not self.error_months


def _log_month(logger: JsonLogger, result: MonthResult) -> None:
    if result.status == STATUS_ERROR:
        log_event(logger=logger, phase="reconcile", status="error", message="Month reconciliation failed", month=result.month, error=result.error)
        return
    for warning in result.warnings:
        log_event(logger=logger, phase="load", status="warn", message=warning, month=result.month)
    log_event(
        logger=logger,
        phase="reconcile",
        status="ok" if result.status != STATUS_FAIL else "warn",
        message="Month reconciled",
        month=result.month,
        result=result.status,
        candidate_orders=result.candidate.orders,
        reference_orders=result.reference.orders,
        candidate_only=len(result.candidate_only),
        reference_only=len(result.reference_only),
        item_mismatch_orders=result.mismatch_orders,
        item_mismatch_orders_normalized=result.mismatch_orders_normalized,
    )


async def run_reconciliation(
    *,
    candidate_root: Path | str,
    reference_root: Path | str,
    start: YearMonth,
    end: YearMonth,
    output_dir: Path | str,
    top_limit: int = DEFAULT_TOP_N,
    options: ReconcileOptions | None = None,
    workers: int = 1,
    config: Config | None = None,
    run_id: str | None = None,
    run_env: str | None = None,
    logger: JsonLogger | None = None,
) -> ReconciliationRun:
    """Reconcile ``[start, end]``, write the reports and record the run summary."""

    resolved_config = config or get_config()
    resolved_run_id = run_id or new_run_id()
    options = options or ReconcileOptions()
    owns_logger = logger is None
    logger = logger or get_logger(run_id=resolved_run_id)
    aggregator = RunAggregator(
        pipeline_name=PIPELINE_NAME,
        run_id=resolved_run_id,
        run_env=run_env or resolved_config.run_env,
    )
    logger.attach_aggregator(aggregator)
    log_event(
        logger=logger,
        phase="init",
        message="Starting reconciliation",
        candidate_root=str(candidate_root),
        reference_root=str(reference_root),
        start_month=str(start),
        end_month=str(end),
        workers=workers,
        include_placeholders=options.include_placeholders,
    )

    run = ReconciliationRun()
    with timed_event(logger=logger, phase="reconcile", message="Months compared"):
        run.results = reconcile_range(candidate_root, reference_root, start, end, options, workers=workers)
    for result in run.results:
        _log_month(logger, result)

    with timed_event(logger=logger, phase="report", message="Reports written", output_dir=str(output_dir)):
        run.reports = write_reports(
            run.results,
            output_dir,
            top_limit=top_limit,
            include_placeholders=options.include_placeholders,
        )

    candidate_revenue, reference_revenue = total_revenue(run.results)
    aggregator.set_totals(
        months=len(run.results),
        months_failed=len(run.failed_months),
        months_error=len(run.error_months),
        reports=len(run.reports.all()),
    )
    aggregator.metrics.update(
        {
            "candidate_revenue": format_amount(candidate_revenue),
            "reference_revenue": format_amount(reference_revenue),
        }
    )
    if run.failed_months:
        aggregator.add_note(f"Months with discrepancies: {', '.join(run.failed_months)}")
    if run.error_months:
        aggregator.add_note(f"Months that could not be reconciled: {', '.join(run.error_months)}")
    log_event(
        logger=logger,
        phase="run",
        status="ok" if run.ok else "error",
        message="Reconciliation finished",
        months=len(run.results),
        failed_months=run.failed_months,
        error_months=run.error_months,
        summary=str(run.reports.summary),
    )
    await persist_summary(aggregator=aggregator, logger=logger, database_url=resolved_config.database_url)
    if owns_logger:
        with contextlib.suppress(Exception):
            logger.close()
    return run


def _parse_month(value: str) -> YearMonth:
    try:
        return YearMonth.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected an integer; got {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive integer; got {parsed}")
    return parsed


def add_reconcile_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--candidate-root", dest="candidate_root", type=str, default=None, help="Extracted dataset root (defaults to EXPORTS_DIR)")
    parser.add_argument("--reference-root", dest="reference_root", type=str, default=None, help="Reference dataset root (defaults to REFERENCE_ROOT)")
    parser.add_argument("--start", dest="start", type=_parse_month, required=True, help="First month (YYYY-MM)")
    parser.add_argument("--end", dest="end", type=_parse_month, default=None, help="Last month (YYYY-MM); defaults to --start")
    parser.add_argument("--output-dir", dest="output_dir", type=str, default=None, help="Report directory (defaults to REPORTS_DIR)")
    parser.add_argument("--top-n", dest="top_n", type=_positive_int, default=DEFAULT_TOP_N, help="Rows in the ranked key reports")
    parser.add_argument(
        "--include-placeholders",
        dest="include_placeholders",
        action="store_true",
        help="Rank placeholder line items alongside real products",
    )
    parser.add_argument("--filter-fulfillment", dest="filter_fulfillment", type=str, default="", help="Only rows fulfilled at this location")
    parser.add_argument("--filter-demand", dest="filter_demand", type=str, default="", help="Only rows demanded at this location")
    parser.add_argument("--perspective-fulfillment", dest="perspective_fulfillment", type=str, default="", help="Count rows fulfilled at this location")
    parser.add_argument("--perspective-demand", dest="perspective_demand", type=str, default="", help="Count rows demanded at this location")
    parser.add_argument("--workers", dest="workers", type=_positive_int, default=1, help="Worker processes for month comparison")
    parser.add_argument("--run-env", dest="run_env", type=str, default=None, help="Override run environment label")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile extracted orders against a reference dataset")
    add_reconcile_arguments(parser)
    return parser


async def run_reconcile(args: argparse.Namespace) -> int:
    config = get_config()
    end = args.end or args.start
    if end < args.start:
        raise ConfigError(f"--end {end} is before --start {args.start}")
    run = await run_reconciliation(
        candidate_root=args.candidate_root or config.exports_dir,
        reference_root=args.reference_root or config.reference_root,
        start=args.start,
        end=end,
        output_dir=args.output_dir or config.reports_dir,
        top_limit=args.top_n,
        options=ReconcileOptions(
            include_placeholders=args.include_placeholders,
            filter_fulfillment=args.filter_fulfillment.strip(),
            filter_demand=args.filter_demand.strip(),
            perspective_fulfillment=args.perspective_fulfillment.strip(),
            perspective_demand=args.perspective_demand.strip(),
        ),
        workers=args.workers,
        config=config,
        run_id=args.run_id,
        run_env=args.run_env,
    )
    return 0 if run.ok else 1


async def _async_entrypoint(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return await run_reconcile(args)


def run(argv: Sequence[str] | None = None) -> int:
    try:
        return asyncio.run(_async_entrypoint(argv))
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(run())
