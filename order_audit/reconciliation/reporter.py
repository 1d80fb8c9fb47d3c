"""Turn month results into the reconciliation CSV reports."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from order_audit.common.csv_io import write_csv_rows
from order_audit.common.money import format_amount
from order_audit.reconciliation.engine import STATUS_ERROR, KeyDiff, MonthResult, SideStats
from order_audit.reconciliation.keys import ReconciliationKey

DEFAULT_TOP_N = 100

SUMMARY_FILE = "reconciliation_summary.csv"
MONTHLY_DIR = "monthly"
OVERLAP_FILE = "overlap_item_discrepancies.csv"
OVERLAP_DETAILS_FILE = "overlap_item_discrepancy_details.csv"
TOP_ITEMS_FILE = "top_items_compare.csv"
TOP_ITEMS_NORMALIZED_FILE = "top_items_compare_normalized.csv"
DISCREPANCIES_RAW_FILE = "top_items_discrepancies_raw.csv"
DISCREPANCIES_NORMALIZED_FILE = "top_items_discrepancies_normalized.csv"

SIDE_STAT_FIELDS = (
    "orders",
    "items",
    "same_store_orders",
    "cross_store_orders",
    "unattributed_orders",
    "same_store_items",
    "cross_store_items",
    "unattributed_items",
    "orders_match_fulfillment",
    "items_match_fulfillment",
    "orders_match_demand",
    "items_match_demand",
    "placeholder_items",
)

SUMMARY_COLUMNS = (
    ["month", "status"]
    + [f"{side}_{name}" for name in SIDE_STAT_FIELDS for side in ("candidate", "reference")]
    + ["orders_delta", "items_delta"]
    + ["candidate_revenue", "reference_revenue", "revenue_delta"]
    + ["candidate_only_orders", "reference_only_orders", "item_mismatch_orders", "item_mismatch_orders_normalized"]
    + ["candidate_missing", "reference_missing", "warnings", "error"]
)
MISMATCH_COLUMNS = ["month", "order_id", "key", "reference_count", "candidate_count", "delta"]
MISMATCH_NORMALIZED_COLUMNS = ["month", "order_id", "norm_key", "reference_count", "candidate_count", "delta"]
PRESENCE_COLUMNS = ["month", "side", "order_id", "in_other_prev", "in_other_next"]
ANALYSIS_COLUMNS = [
    "month",
    "reference_only",
    "candidate_only",
    "item_mismatch_orders",
    "item_mismatch_orders_normalized",
    "placeholder_items_total",
]
OVERLAP_COLUMNS = [
    "month",
    "order_id",
    "reference_items",
    "candidate_items",
    "items_delta",
    "mismatch_count_raw",
    "mismatch_count_normalized",
]
TOP_ITEMS_COLUMNS = ["rank", "key", "product_name", "color", "size", "candidate_qty", "reference_qty", "delta"]
TOP_ITEMS_NORMALIZED_COLUMNS = [
    "rank",
    "norm_key",
    "product_name",
    "color",
    "size",
    "candidate_qty",
    "reference_qty",
    "delta",
]


@dataclass(frozen=True)
class RankedKey:
    """One aggregated key; ``representative`` is the raw key shown for a normalized row."""

    key: str
    candidate_qty: int
    reference_qty: int
    representative: ReconciliationKey

    @property
    def delta(self) -> int:
        return self.candidate_qty - self.reference_qty

    def sort_key(self) -> Tuple[int, int, str]:
        return (-abs(self.delta), -self.candidate_qty, self.key)


@dataclass
class ReportPaths:
    summary: Path
    monthly: List[Path] = field(default_factory=list)
    ranking: List[Path] = field(default_factory=list)

    def all(self) -> List[Path]:
        return [self.summary, *self.monthly, *self.ranking]


def _fold(results: Iterable[MonthResult], include_placeholders: bool) -> Tuple[Counter, Counter]:
    candidate: Counter = Counter()
    reference: Counter = Counter()
    for result in results:
        if result.status == STATUS_ERROR:
            continue
        for target, quantities in ((candidate, result.candidate_quantities), (reference, result.reference_quantities)):
            for key, quantity in quantities.items():
                if include_placeholders or not ReconciliationKey.parse(key).is_placeholder:
                    target[key] += quantity
    return candidate, reference


def rank(rows: Iterable[RankedKey]) -> List[RankedKey]:
    return sorted(rows, key=RankedKey.sort_key)


def aggregate_raw(results: Sequence[MonthResult], *, include_placeholders: bool = False) -> List[RankedKey]:
    """Quantity per raw key across every month, ranked by ``|delta|`` then candidate quantity."""

    candidate, reference = _fold(results, include_placeholders)
    return rank(
        RankedKey(
            key=key,
            candidate_qty=candidate.get(key, 0),
            reference_qty=reference.get(key, 0),
            representative=ReconciliationKey.parse(key),
        )
        for key in set(candidate) | set(reference)
    )


def _most_frequent(raw_counts: Mapping[str, int]) -> str:
    return min(raw_counts.items(), key=lambda item: (-item[1], item[0]))[0]


def aggregate_normalized(results: Sequence[MonthResult], *, include_placeholders: bool = False) -> List[RankedKey]:
    """Like ``aggregate_raw`` on normalized keys.

    Each row's representative is the most frequent raw key on the larger side
    (reference on a tie), the lexicographically smallest key winning ties.
    """

    candidate, reference = _fold(results, include_placeholders)
    groups: Dict[str, Tuple[Counter, Counter]] = {}
    for side, counts in ((0, candidate), (1, reference)):
        for key, quantity in counts.items():
            norm_key = str(ReconciliationKey.parse(key).normalized())
            groups.setdefault(norm_key, (Counter(), Counter()))[side][key] += quantity

    rows = []
    for norm_key, (candidate_raw, reference_raw) in groups.items():
        candidate_qty = sum(candidate_raw.values())
        reference_qty = sum(reference_raw.values())
        larger = reference_raw if reference_qty >= candidate_qty and reference_raw else candidate_raw
        rows.append(
            RankedKey(
                key=norm_key,
                candidate_qty=candidate_qty,
                reference_qty=reference_qty,
                representative=ReconciliationKey.parse(_most_frequent(larger)),
            )
        )
    return rank(rows)


def top_n(ranked: Sequence[RankedKey], limit: int = DEFAULT_TOP_N) -> List[RankedKey]:
    return list(ranked[: max(0, limit)])


def discrepancies(ranked: Sequence[RankedKey]) -> List[RankedKey]:
    return [row for row in ranked if row.delta != 0]


def _ranked_rows(ranked: Sequence[RankedKey], key_column: str, *, numbered: bool = True) -> List[Dict[str, object]]:
    rows = []
    for position, row in enumerate(ranked, start=1):
        record: Dict[str, object] = {
            key_column: row.key,
            "product_name": row.representative.product_name,
            "color": row.representative.color,
            "size": row.representative.size,
            "candidate_qty": row.candidate_qty,
            "reference_qty": row.reference_qty,
            "delta": row.delta,
        }
        if numbered:
            record["rank"] = position
        rows.append(record)
    return rows


def _flag(value: bool) -> str:
    return "yes" if value else "no"


def summary_row(result: MonthResult) -> Dict[str, object]:
    row: Dict[str, object] = {"month": result.month, "status": result.status, "error": result.error or ""}
    sides: Tuple[Tuple[str, SideStats], ...] = (("candidate", result.candidate), ("reference", result.reference))
    for side, stats in sides:
        for name in SIDE_STAT_FIELDS:
            row[f"{side}_{name}"] = getattr(stats, name)
        row[f"{side}_revenue"] = format_amount(stats.revenue)
        row[f"{side}_missing"] = _flag(stats.missing)
    row["orders_delta"] = result.candidate.orders - result.reference.orders
    row["items_delta"] = result.candidate.items - result.reference.items
    row["revenue_delta"] = format_amount(result.candidate.revenue - result.reference.revenue)
    row["candidate_only_orders"] = len(result.candidate_only)
    row["reference_only_orders"] = len(result.reference_only)
    row["item_mismatch_orders"] = result.mismatch_orders
    row["item_mismatch_orders_normalized"] = result.mismatch_orders_normalized
    row["warnings"] = len(result.warnings)
    return row


def analysis_row(result: MonthResult) -> Dict[str, object]:
    return {
        "month": result.month,
        "reference_only": len(result.reference_only),
        "candidate_only": len(result.candidate_only),
        "item_mismatch_orders": result.mismatch_orders,
        "item_mismatch_orders_normalized": result.mismatch_orders_normalized,
        "placeholder_items_total": result.candidate.placeholder_items + result.reference.placeholder_items,
    }


def _diff_rows(month: str, diffs: Sequence[KeyDiff], key_column: str) -> List[Dict[str, object]]:
    return [
        {
            "month": month,
            "order_id": diff.order_id,
            key_column: diff.key,
            "reference_count": diff.reference,
            "candidate_count": diff.candidate,
            "delta": diff.delta,
        }
        for diff in diffs
    ]


def write_month_reports(result: MonthResult, monthly_dir: Path) -> List[Path]:
    month = result.month
    paths = [
        write_csv_rows(
            monthly_dir / f"{month}_candidate_only.csv",
            [{"month": month, "order_id": order_id} for order_id in result.candidate_only],
            ["month", "order_id"],
        ),
        write_csv_rows(
            monthly_dir / f"{month}_reference_only.csv",
            [{"month": month, "order_id": order_id} for order_id in result.reference_only],
            ["month", "order_id"],
        ),
        write_csv_rows(
            monthly_dir / f"{month}_item_mismatches.csv",
            _diff_rows(month, result.item_diffs, "key"),
            MISMATCH_COLUMNS,
        ),
        write_csv_rows(
            monthly_dir / f"{month}_item_mismatches_normalized.csv",
            _diff_rows(month, result.item_diffs_normalized, "norm_key"),
            MISMATCH_NORMALIZED_COLUMNS,
        ),
        write_csv_rows(
            monthly_dir / f"{month}_presence_analysis.csv",
            [
                {
                    "month": month,
                    "side": row.side,
                    "order_id": row.order_id,
                    "in_other_prev": _flag(row.in_other_prev),
                    "in_other_next": _flag(row.in_other_next),
                }
                for row in result.presence
            ],
            PRESENCE_COLUMNS,
        ),
        write_csv_rows(monthly_dir / f"{month}_analysis.csv", [analysis_row(result)], ANALYSIS_COLUMNS),
    ]
    return paths


def overlap_rows(results: Sequence[MonthResult]) -> List[Dict[str, object]]:
    rows = [
        (result.month, order)
        for result in results
        for order in result.overlap
    ]
    rows.sort(key=lambda item: (-item[1].mismatch_count_normalized, -abs(item[1].items_delta), item[0], item[1].order_id))
    return [
        {
            "month": month,
            "order_id": order.order_id,
            "reference_items": order.reference_items,
            "candidate_items": order.candidate_items,
            "items_delta": order.items_delta,
            "mismatch_count_raw": order.mismatch_count_raw,
            "mismatch_count_normalized": order.mismatch_count_normalized,
        }
        for month, order in rows
    ]


def write_reports(
    results: Sequence[MonthResult],
    output_dir: Path | str,
    *,
    top_limit: int = DEFAULT_TOP_N,
    include_placeholders: bool = False,
) -> ReportPaths:
    """Write the summary, per-month detail files and the ranked key reports."""

    output_dir = Path(output_dir)
    paths = ReportPaths(
        summary=write_csv_rows(output_dir / SUMMARY_FILE, [summary_row(result) for result in results], SUMMARY_COLUMNS)
    )
    monthly_dir = output_dir / MONTHLY_DIR
    for result in results:
        if result.status != STATUS_ERROR:
            paths.monthly.extend(write_month_reports(result, monthly_dir))

    details = [diff for result in results for diff in _diff_rows(result.month, result.overlap_details, "key")]
    paths.ranking.append(write_csv_rows(output_dir / OVERLAP_FILE, overlap_rows(results), OVERLAP_COLUMNS))
    paths.ranking.append(write_csv_rows(output_dir / OVERLAP_DETAILS_FILE, details, MISMATCH_COLUMNS))

    raw = aggregate_raw(results, include_placeholders=include_placeholders)
    normalized = aggregate_normalized(results, include_placeholders=include_placeholders)
    paths.ranking.extend(
        [
            write_csv_rows(output_dir / TOP_ITEMS_FILE, _ranked_rows(top_n(raw, top_limit), "key"), TOP_ITEMS_COLUMNS),
            write_csv_rows(
                output_dir / TOP_ITEMS_NORMALIZED_FILE,
                _ranked_rows(top_n(normalized, top_limit), "norm_key"),
                TOP_ITEMS_NORMALIZED_COLUMNS,
            ),
            write_csv_rows(
                output_dir / DISCREPANCIES_RAW_FILE,
                _ranked_rows(discrepancies(raw), "key", numbered=False),
                TOP_ITEMS_COLUMNS[1:],
            ),
            write_csv_rows(
                output_dir / DISCREPANCIES_NORMALIZED_FILE,
                _ranked_rows(discrepancies(normalized), "norm_key", numbered=False),
                TOP_ITEMS_NORMALIZED_COLUMNS[1:],
            ),
        ]
    )
    return paths


def total_revenue(results: Sequence[MonthResult]) -> Tuple[Decimal, Decimal]:
    candidate = sum((result.candidate.revenue for result in results if result.status != STATUS_ERROR), Decimal("0"))
    reference = sum((result.reference.revenue for result in results if result.status != STATUS_ERROR), Decimal("0"))
    return candidate, reference
