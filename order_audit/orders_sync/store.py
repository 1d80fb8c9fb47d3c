"""Day-partitioned CSV store for extracted orders.

Layout: ``<root>/<YYYY>/<YYYY-MM>/<YYYY-MM-DD>_orders.csv`` plus the matching
``_line-items.csv``. A date is done once both files exist and are non-empty;
the line-items file is always the last one to land.
"""
from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Iterable, List, Sequence

from order_audit.common.csv_io import read_csv_rows, union_headers, write_csv_rows
from order_audit.common.date_utils import YearMonth
from order_audit.common.json_logger import JsonLogger, log_event
from order_audit.errors import StoreError
from order_audit.orders_sync.models import LINE_ITEM_COLUMNS, ORDER_COLUMNS, LineItem, OrderSummary

ORDERS_SUFFIX = "_orders.csv"
LINE_ITEMS_SUFFIX = "_line-items.csv"
_DAY_FILE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})_orders\.csv$")


class IncrementalStore:
    def __init__(
        self,
        root: Path | str,
        *,
        force_dates: Iterable[date] = (),
        force_all: bool = False,
        logger: JsonLogger | None = None,
    ) -> None:
        self.root = Path(root)
        self.force_dates = set(force_dates)
        self.force_all = force_all
        self.logger = logger

    def month_dir(self, month: YearMonth) -> Path:
        return self.root / f"{month.year:04d}" / str(month)

    def orders_path(self, day: date) -> Path:
        return self.month_dir(YearMonth.of(day)) / f"{day.isoformat()}{ORDERS_SUFFIX}"

    def line_items_path(self, day: date) -> Path:
        return self.month_dir(YearMonth.of(day)) / f"{day.isoformat()}{LINE_ITEMS_SUFFIX}"

    def exists(self, day: date) -> bool:
        for path in (self.orders_path(day), self.line_items_path(day)):
            try:
                if path.stat().st_size == 0:
                    return False
            except FileNotFoundError:
                return False
        return True

    def is_forced(self, day: date) -> bool:
        return self.force_all or day in self.force_dates

    def should_skip(self, day: date) -> bool:
        """True when the day is already complete and no rebuild was requested."""

        return self.exists(day) and not self.is_forced(day)

    def write(self, day: date, orders: Sequence[OrderSummary], line_items: Sequence[LineItem]) -> None:
        order_rows = [order.to_row() for order in orders]
        item_rows = [item.to_row() for item in line_items]
        orders_path = self.orders_path(day)
        items_path = self.line_items_path(day)
        try:
            # Line items land last, so a crash between the writes leaves the day incomplete.
            items_path.unlink(missing_ok=True)
            write_csv_rows(orders_path, order_rows, union_headers(order_rows) or list(ORDER_COLUMNS))
            write_csv_rows(items_path, item_rows, union_headers(item_rows) or list(LINE_ITEM_COLUMNS))
        except OSError as exc:
            raise StoreError(f"Failed to write partition for {day.isoformat()}: {exc}") from exc
        if self.logger:
            log_event(
                logger=self.logger,
                phase="store",
                message="Persisted day partition",
                date=day.isoformat(),
                orders=len(order_rows),
                line_items=len(item_rows),
                orders_path=str(orders_path),
                line_items_path=str(items_path),
            )

    def replace_line_items(self, day: date, line_items: Sequence[LineItem]) -> None:
        if not self.orders_path(day).exists():
            raise StoreError(f"No orders file for {day.isoformat()}; cannot replace line items")
        item_rows = [item.to_row() for item in line_items]
        try:
            write_csv_rows(self.line_items_path(day), item_rows, union_headers(item_rows) or list(LINE_ITEM_COLUMNS))
        except OSError as exc:
            raise StoreError(f"Failed to rewrite line items for {day.isoformat()}: {exc}") from exc

    def read_orders(self, day: date) -> List[OrderSummary]:
        path = self.orders_path(day)
        if not path.exists():
            return []
        return [OrderSummary.from_row(row) for row in read_csv_rows(path)]

    def read_line_items(self, day: date) -> List[LineItem]:
        path = self.line_items_path(day)
        if not path.exists():
            return []
        return [LineItem.from_row(row) for row in read_csv_rows(path)]

    def list_dates(self, month: YearMonth) -> List[date]:
        """Complete dates stored for ``month`` in ascending order."""

        directory = self.month_dir(month)
        if not directory.is_dir():
            return []
        dates: List[date] = []
        for path in directory.iterdir():
            match = _DAY_FILE_RE.match(path.name)
            if not match:
                continue
            try:
                day = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            if YearMonth.of(day) == month and self.exists(day):
                dates.append(day)
        return sorted(dates)
