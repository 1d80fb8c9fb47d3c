"""Month-by-month comparison of a candidate dataset against a reference dataset.

Everything here is read-only and deterministic for a fixed pair of roots: the
only inputs are the files on disk and ``ReconcileOptions``. Months are
independent, so ``reconcile_range`` can fan them out over worker processes.
"""
from __future__ import annotations

from collections import Counter
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Set, Tuple

from order_audit.common.date_utils import YearMonth, month_range
from order_audit.errors import ReconciliationError
from order_audit.reconciliation.keys import ReconciliationKey
from order_audit.reconciliation.loader import LineRecord, MonthDataset, OrderLocation, load_month

STATUS_OK = "OK"
STATUS_FAIL = "FAIL"
STATUS_ERROR = "ERROR"
OVERLAP_DETAIL_LIMIT = 3

KeyCounts = Dict[str, int]


@dataclass(frozen=True)
class ReconcileOptions:
    include_placeholders: bool = False
    filter_fulfillment: str = ""
    filter_demand: str = ""
    perspective_fulfillment: str = ""
    perspective_demand: str = ""


@dataclass
class SideStats:
    orders: int = 0
    items: int = 0
    revenue: Decimal = Decimal("0")
    same_store_orders: int = 0
    cross_store_orders: int = 0
    unattributed_orders: int = 0
    same_store_items: int = 0
    cross_store_items: int = 0
    unattributed_items: int = 0
    orders_match_fulfillment: int = 0
    items_match_fulfillment: int = 0
    orders_match_demand: int = 0
    items_match_demand: int = 0
    placeholder_items: int = 0
    missing: bool = False


@dataclass(frozen=True)
class KeyDiff:
    order_id: str
    key: str
    candidate: int
    reference: int

    @property
    def delta(self) -> int:
        return self.candidate - self.reference


@dataclass(frozen=True)
class OverlapOrder:
    order_id: str
    reference_items: int
    candidate_items: int
    mismatch_count_raw: int
    mismatch_count_normalized: int

    @property
    def items_delta(self) -> int:
        return self.candidate_items - self.reference_items


@dataclass(frozen=True)
class PresenceRow:
    side: str
    order_id: str
    in_other_prev: bool
    in_other_next: bool


@dataclass
class MonthResult:
    month: str
    status: str = STATUS_OK
    error: str | None = None
    candidate: SideStats = field(default_factory=SideStats)
    reference: SideStats = field(default_factory=SideStats)
    candidate_only: List[str] = field(default_factory=list)
    reference_only: List[str] = field(default_factory=list)
    item_diffs: List[KeyDiff] = field(default_factory=list)
    item_diffs_normalized: List[KeyDiff] = field(default_factory=list)
    overlap: List[OverlapOrder] = field(default_factory=list)
    overlap_details: List[KeyDiff] = field(default_factory=list)
    presence: List[PresenceRow] = field(default_factory=list)
    candidate_quantities: KeyCounts = field(default_factory=dict)
    reference_quantities: KeyCounts = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def mismatch_orders(self) -> int:
        return len({diff.order_id for diff in self.item_diffs})

    @property
    def mismatch_orders_normalized(self) -> int:
        return len({diff.order_id for diff in self.item_diffs_normalized})


def _passes(location: Tuple[str, str], options: ReconcileOptions) -> bool:
    fulfillment, demand = location
    if options.filter_fulfillment and fulfillment != options.filter_fulfillment:
        return False
    if options.filter_demand and demand != options.filter_demand:
        return False
    return True


def apply_filters(dataset: MonthDataset, options: ReconcileOptions) -> MonthDataset:
    """Restrict orders and lines to the requested fulfillment/demand locations."""

    if not options.filter_fulfillment and not options.filter_demand:
        return dataset
    orders = {
        order_id: location
        for order_id, location in dataset.orders.items()
        if _passes((location.fulfillment, location.demand), options)
    }
    lines = [line for line in dataset.lines if _passes((line.fulfillment, line.demand), options)]
    for line in lines:
        orders.setdefault(line.order_id, OrderLocation(line.fulfillment, line.demand))
    return MonthDataset(
        month=dataset.month,
        orders=orders,
        lines=lines,
        files=dataset.files,
        warnings=list(dataset.warnings),
    )


def order_key_counts(lines: Sequence[LineRecord]) -> Dict[str, Counter]:
    """Per-order multiset of raw ``product|color|size`` keys, one count per row."""

    per_order: Dict[str, Counter] = {}
    for line in lines:
        per_order.setdefault(line.order_id, Counter())[str(line.key)] += 1
    return per_order


def normalize_counts(counts: Mapping[str, int]) -> Counter:
    normalized: Counter = Counter()
    for key, count in counts.items():
        normalized[str(ReconciliationKey.parse(key).normalized())] += count
    return normalized


def diff_counts(order_id: str, candidate: Mapping[str, int], reference: Mapping[str, int]) -> List[KeyDiff]:
    diffs = []
    for key in sorted(set(candidate) | set(reference)):
        candidate_count = candidate.get(key, 0)
        reference_count = reference.get(key, 0)
        if candidate_count != reference_count:
            diffs.append(KeyDiff(order_id=order_id, key=key, candidate=candidate_count, reference=reference_count))
    return diffs


def side_stats(dataset: MonthDataset, options: ReconcileOptions) -> SideStats:
    stats = SideStats(orders=len(dataset.orders), items=len(dataset.lines), missing=dataset.missing)
    order_class: Dict[str, str] = {}
    fulfillment_orders: Set[str] = set()
    demand_orders: Set[str] = set()

    for line in dataset.lines:
        stats.revenue += line.revenue
        if line.key.is_placeholder:
            stats.placeholder_items += 1
        if line.fulfillment and line.demand:
            if line.fulfillment == line.demand:
                stats.same_store_items += 1
                order_class.setdefault(line.order_id, "same")
            else:
                stats.cross_store_items += 1
                order_class[line.order_id] = "cross"
        else:
            stats.unattributed_items += 1
        if options.perspective_fulfillment and line.fulfillment == options.perspective_fulfillment:
            stats.items_match_fulfillment += 1
            fulfillment_orders.add(line.order_id)
        if options.perspective_demand and line.demand == options.perspective_demand:
            stats.items_match_demand += 1
            demand_orders.add(line.order_id)

    for order_id, location in dataset.orders.items():
        if order_id not in order_class and location.fulfillment and location.demand:
            order_class[order_id] = "same" if location.fulfillment == location.demand else "cross"
        if options.perspective_fulfillment and location.fulfillment == options.perspective_fulfillment:
            fulfillment_orders.add(order_id)
        if options.perspective_demand and location.demand == options.perspective_demand:
            demand_orders.add(order_id)

    known = set(dataset.orders)
    stats.same_store_orders = sum(1 for order_id, kind in order_class.items() if kind == "same" and order_id in known)
    stats.cross_store_orders = sum(1 for order_id, kind in order_class.items() if kind == "cross" and order_id in known)
    stats.unattributed_orders = stats.orders - stats.same_store_orders - stats.cross_store_orders
    stats.orders_match_fulfillment = len(fulfillment_orders & known)
    stats.orders_match_demand = len(demand_orders & known)
    return stats


def key_quantities(lines: Sequence[LineRecord]) -> KeyCounts:
    quantities: Counter = Counter()
    for line in lines:
        quantities[str(line.key)] += line.quantity
    return dict(quantities)


def compare_months(
    month: YearMonth,
    candidate: MonthDataset,
    reference: MonthDataset,
    options: ReconcileOptions,
    *,
    candidate_adjacent: Tuple[Set[str], Set[str]] | None = None,
    reference_adjacent: Tuple[Set[str], Set[str]] | None = None,
) -> MonthResult:
    """Compare one month of already-loaded data; the pure core of reconciliation."""

    if candidate.month != month or reference.month != month:
        raise ReconciliationError(
            f"Dataset months {candidate.month}/{reference.month} do not match requested month {month}"
        )
    candidate = apply_filters(candidate, options)
    reference = apply_filters(reference, options)
    result = MonthResult(month=str(month))
    result.warnings = [f"candidate: {text}" for text in candidate.warnings] + [
        f"reference: {text}" for text in reference.warnings
    ]
    result.candidate = side_stats(candidate, options)
    result.reference = side_stats(reference, options)

    candidate_ids = set(candidate.orders)
    reference_ids = set(reference.orders)
    result.candidate_only = sorted(candidate_ids - reference_ids)
    result.reference_only = sorted(reference_ids - candidate_ids)

    candidate_counts = order_key_counts(candidate.lines)
    reference_counts = order_key_counts(reference.lines)
    for order_id in sorted(candidate_ids & reference_ids):
        raw_candidate = candidate_counts.get(order_id, Counter())
        raw_reference = reference_counts.get(order_id, Counter())
        raw = diff_counts(order_id, raw_candidate, raw_reference)
        normalized = diff_counts(order_id, normalize_counts(raw_candidate), normalize_counts(raw_reference))
        result.item_diffs.extend(raw)
        result.item_diffs_normalized.extend(normalized)
        if raw or normalized:
            result.overlap.append(
                OverlapOrder(
                    order_id=order_id,
                    reference_items=sum(raw_reference.values()),
                    candidate_items=sum(raw_candidate.values()),
                    mismatch_count_raw=len(raw),
                    mismatch_count_normalized=len(normalized),
                )
            )
            result.overlap_details.extend(raw[:OVERLAP_DETAIL_LIMIT])

    reference_prev, reference_next = reference_adjacent or (set(), set())
    candidate_prev, candidate_next = candidate_adjacent or (set(), set())
    result.presence = [
        PresenceRow("reference_only", order_id, order_id in candidate_prev, order_id in candidate_next)
        for order_id in result.reference_only
    ] + [
        PresenceRow("candidate_only", order_id, order_id in reference_prev, order_id in reference_next)
        for order_id in result.candidate_only
    ]

    result.candidate_quantities = key_quantities(candidate.lines)
    result.reference_quantities = key_quantities(reference.lines)

    clean = (
        result.candidate.orders == result.reference.orders
        and result.candidate.items == result.reference.items
        and not result.candidate_only
        and not result.reference_only
        and not result.item_diffs
    )
    result.status = STATUS_OK if clean else STATUS_FAIL
    return result


def _order_ids(root: Path, month: YearMonth, options: ReconcileOptions) -> Set[str]:
    return set(apply_filters(load_month(root, month), options).orders)


def reconcile_month(
    candidate_root: Path | str,
    reference_root: Path | str,
    month: YearMonth,
    options: ReconcileOptions | None = None,
) -> MonthResult:
    """Load and compare one month; any failure becomes an ``ERROR`` result."""

    options = options or ReconcileOptions()
    try:
        candidate_root = Path(candidate_root)
        reference_root = Path(reference_root)
        return compare_months(
            month,
            load_month(candidate_root, month),
            load_month(reference_root, month),
            options,
            candidate_adjacent=(
                _order_ids(candidate_root, month.previous(), options),
                _order_ids(candidate_root, month.next(), options),
            ),
            reference_adjacent=(
                _order_ids(reference_root, month.previous(), options),
                _order_ids(reference_root, month.next(), options),
            ),
        )
    except Exception as exc:
        return MonthResult(month=str(month), status=STATUS_ERROR, error=f"{type(exc).__name__}: {exc}")


def _reconcile_job(args: Tuple[str, str, YearMonth, ReconcileOptions]) -> MonthResult:
    candidate_root, reference_root, month, options = args
    return reconcile_month(candidate_root, reference_root, month, options)


def reconcile_range(
    candidate_root: Path | str,
    reference_root: Path | str,
    start: YearMonth,
    end: YearMonth,
    options: ReconcileOptions | None = None,
    *,
    workers: int = 1,
) -> List[MonthResult]:
    """Reconcile every month in ``[start, end]``; results come back in month order."""

    options = options or ReconcileOptions()
    months = month_range(start, end)
    jobs = [(str(candidate_root), str(reference_root), month, options) for month in months]
    if workers <= 1 or len(jobs) <= 1:
        return [_reconcile_job(job) for job in jobs]
    with ProcessPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(_reconcile_job, jobs))
