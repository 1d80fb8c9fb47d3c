"""Read one month of a dataset root into plain Python structures.

A month directory ``<root>/<YYYY>/<YYYY-MM>/`` may hold store-layout day files
(``*_orders.csv`` / ``*_line-items.csv``) and/or a combined line-level export
(``<YYYY-MM>_orders_in_store.csv``). Columns are located by tolerant header
matching. Missing directories, files or columns yield empty data plus a
warning, never an exception.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

from order_audit.common.csv_io import HeaderIndex, norm_text, read_csv_rows
from order_audit.common.date_utils import YearMonth
from order_audit.common.money import money_to_decimal, money_to_plain
from order_audit.reconciliation.keys import ReconciliationKey

ORDER_ID_COLUMNS = ("order_id", "order id", "id")
PRODUCT_COLUMNS = ("product_name", "product", "title", "name")
FULFILLMENT_COLUMNS = ("fulfillment_location", "fulfillment location", "fulfilment location", "fulfillment")
DEMAND_COLUMNS = ("demand_location", "demand location", "demand")
QUANTITY_COLUMNS = ("quantity", "qty")
DISCOUNTED_COLUMNS = ("discounted_price", "disc. price", "discounted price", "disc price")
PRICE_COLUMNS = ("unit_price", "price")
DISCOUNT_COLUMNS = ("line_discount", "discount")

COMBINED_SUFFIX = "_orders_in_store.csv"


@dataclass(frozen=True)
class OrderLocation:
    fulfillment: str = ""
    demand: str = ""


@dataclass(frozen=True)
class LineRecord:
    order_id: str
    key: ReconciliationKey
    quantity: int = 1
    revenue: Decimal = Decimal("0")
    fulfillment: str = ""
    demand: str = ""


@dataclass
class MonthDataset:
    month: YearMonth
    orders: Dict[str, OrderLocation] = field(default_factory=dict)
    lines: List[LineRecord] = field(default_factory=list)
    files: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def missing(self) -> bool:
        return self.files == 0


def month_dir(root: Path, month: YearMonth) -> Path:
    return Path(root) / f"{month.year:04d}" / str(month)


def _quantity(value: str | None) -> int:
    try:
        parsed = int(Decimal(money_to_plain(value)))
    except ArithmeticError:
        return 1
    return parsed if parsed > 0 else 1


def _revenue(row: Mapping[str, str], discounted: str | None, price: str | None, discount: str | None) -> Decimal:
    if discounted and norm_text(row.get(discounted)):
        return money_to_decimal(row.get(discounted))
    if price:
        amount = money_to_decimal(row.get(price))
        if discount:
            amount -= abs(money_to_decimal(row.get(discount)))
        return amount
    return Decimal("0")


class _Columns:
    def __init__(self, rows: Sequence[Mapping[str, str]]) -> None:
        index = HeaderIndex.from_rows(rows)
        self.order_id = index.pick(*ORDER_ID_COLUMNS)
        self.product = index.pick(*PRODUCT_COLUMNS)
        self.color = index.pick("color", "colour")
        self.size = index.pick("size")
        self.fulfillment = index.pick(*FULFILLMENT_COLUMNS)
        self.demand = index.pick(*DEMAND_COLUMNS)
        self.quantity = index.pick(*QUANTITY_COLUMNS)
        self.discounted = index.pick(*DISCOUNTED_COLUMNS)
        self.price = index.pick(*PRICE_COLUMNS)
        self.discount = index.pick(*DISCOUNT_COLUMNS)

    @staticmethod
    def get(row: Mapping[str, str], column: str | None) -> str:
        return norm_text(row.get(column)) if column else ""

    def line(self, row: Mapping[str, str], order_id: str, location: OrderLocation) -> LineRecord:
        return LineRecord(
            order_id=order_id,
            key=ReconciliationKey.of(self.get(row, self.product), self.get(row, self.color), self.get(row, self.size)),
            quantity=_quantity(row.get(self.quantity)) if self.quantity else 1,
            revenue=_revenue(row, self.discounted, self.price, self.discount),
            fulfillment=location.fulfillment,
            demand=location.demand,
        )


def _read(path: Path, dataset: MonthDataset) -> List[Dict[str, str]] | None:
    try:
        rows = read_csv_rows(path)
    except (OSError, UnicodeDecodeError) as exc:
        dataset.warnings.append(f"Unreadable file {path}: {exc}")
        return None
    dataset.files += 1
    return rows


def _load_orders_file(path: Path, dataset: MonthDataset) -> None:
    rows = _read(path, dataset)
    if not rows:
        return
    columns = _Columns(rows)
    if not columns.order_id:
        dataset.warnings.append(f"No order id column in {path}")
        return
    for row in rows:
        order_id = columns.get(row, columns.order_id)
        if order_id and order_id not in dataset.orders:
            dataset.orders[order_id] = OrderLocation(
                fulfillment=columns.get(row, columns.fulfillment),
                demand=columns.get(row, columns.demand),
            )


def _load_line_rows(path: Path, dataset: MonthDataset, *, combined: bool) -> None:
    rows = _read(path, dataset)
    if not rows:
        return
    columns = _Columns(rows)
    if not columns.order_id:
        dataset.warnings.append(f"No order id column in {path}")
        return
    for row in rows:
        order_id = columns.get(row, columns.order_id)
        if not order_id:
            continue
        if combined:
            location = OrderLocation(
                fulfillment=columns.get(row, columns.fulfillment),
                demand=columns.get(row, columns.demand),
            )
            dataset.orders.setdefault(order_id, location)
        else:
            location = dataset.orders.get(order_id) or OrderLocation(
                fulfillment=columns.get(row, columns.fulfillment),
                demand=columns.get(row, columns.demand),
            )
        dataset.lines.append(columns.line(row, order_id, location))


def load_month(root: Path | str, month: YearMonth) -> MonthDataset:
    dataset = MonthDataset(month=month)
    directory = month_dir(Path(root), month)
    if not directory.is_dir():
        dataset.warnings.append(f"Month directory missing: {directory}")
        return dataset

    names = sorted(path.name for path in directory.iterdir() if path.is_file())
    order_files = [name for name in names if name.endswith("_orders.csv")]
    item_files = [name for name in names if name.endswith("_line-items.csv")]
    combined_files = [name for name in names if name.endswith(COMBINED_SUFFIX)]

    # Orders first so day-file line items can inherit their order's locations.
    for name in order_files:
        _load_orders_file(directory / name, dataset)
    for name in item_files:
        _load_line_rows(directory / name, dataset, combined=False)
    for name in combined_files:
        _load_line_rows(directory / name, dataset, combined=True)

    if dataset.missing:
        dataset.warnings.append(f"No data files in {directory}")
    return dataset
