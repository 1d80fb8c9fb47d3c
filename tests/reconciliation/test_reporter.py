from pathlib import Path

from order_audit.common.csv_io import read_csv_rows
from order_audit.reconciliation.engine import STATUS_ERROR, STATUS_FAIL, KeyDiff, MonthResult, OverlapOrder, SideStats
from order_audit.reconciliation.reporter import (
    DISCREPANCIES_RAW_FILE,
    OVERLAP_FILE,
    SUMMARY_FILE,
    TOP_ITEMS_FILE,
    TOP_ITEMS_NORMALIZED_FILE,
    aggregate_normalized,
    aggregate_raw,
    discrepancies,
    top_n,
    write_reports,
)


def _result(month: str, candidate: dict, reference: dict, /, **kwargs) -> MonthResult:
    return MonthResult(
        month=month,
        candidate_quantities=candidate,
        reference_quantities=reference,
        **kwargs,
    )


def test_raw_ranking_orders_by_abs_delta_then_candidate_qty() -> None:
    results = [
        _result(
            "2024-05",
            {"A||": 5, "B||": 1, "C||": 7, "D||": 3},
            {"A||": 1, "B||": 5, "C||": 7, "E||": 2},
        ),
        _result("2024-06", {"D||": 1}, {}),
    ]

    ranked = aggregate_raw(results)

    assert [(row.key, row.delta) for row in ranked] == [
        ("A||", 4),
        ("D||", 4),
        ("B||", -4),
        ("E||", -2),
        ("C||", 0),
    ]
    deltas = [abs(row.delta) for row in ranked]
    assert deltas == sorted(deltas, reverse=True)
    for first, second in zip(ranked, ranked[1:]):
        if abs(first.delta) == abs(second.delta):
            assert first.candidate_qty >= second.candidate_qty


def test_placeholders_are_excluded_unless_requested() -> None:
    results = [_result("2024-05", {"Error - Store Purchase||": 1, "Shirt||": 1}, {"Shirt||": 1})]

    default = aggregate_raw(results)
    included = aggregate_raw(results, include_placeholders=True)

    assert [row.key for row in default] == ["Shirt||"]
    assert [row.key for row in included] == ["Error - Store Purchase||", "Shirt||"]
    assert discrepancies(default) == []


def test_normalized_rows_carry_representative_from_larger_side() -> None:
    results = [
        _result(
            "2024-05",
            {"mens tee|red|m": 1},
            {"Men's Tee|Red|M": 3, "MENS TEE|RED|M": 1},
        )
    ]

    (row,) = aggregate_normalized(results)

    assert row.key == "mens tee|red|m"
    assert (row.candidate_qty, row.reference_qty, row.delta) == (1, 4, -3)
    assert (row.representative.product_name, row.representative.color, row.representative.size) == ("Men's Tee", "Red", "M")


def test_representative_ties_break_lexicographically() -> None:
    results = [_result("2024-05", {"Tee|B|": 2, "tee|b|": 2}, {})]

    (row,) = aggregate_normalized(results)

    assert str(row.representative) == "Tee|B|"


def test_error_months_do_not_contribute_quantities() -> None:
    results = [
        _result("2024-05", {"Shirt||": 1}, {}),
        _result("2024-06", {"Shirt||": 9}, {}, status=STATUS_ERROR, error="boom"),
    ]

    (row,) = aggregate_raw(results)

    assert row.candidate_qty == 1


def test_top_n_truncates() -> None:
    ranked = aggregate_raw([_result("2024-05", {f"K{idx}||": idx for idx in range(1, 6)}, {})])

    assert [row.key for row in top_n(ranked, 2)] == ["K5||", "K4||"]


def test_write_reports_emits_summary_monthly_and_ranking_files(tmp_path: Path) -> None:
    results = [
        _result(
            "2024-05",
            {"Shirt|Red|M": 2},
            {"Shirt|Red|M": 1},
            status=STATUS_FAIL,
            candidate=SideStats(orders=1, items=2),
            reference=SideStats(orders=4, items=1),
            reference_only=["R1", "R2", "R3"],
            item_diffs=[KeyDiff("O1", "Shirt|Red|M", 2, 1)],
            overlap=[OverlapOrder("O1", 1, 2, 1, 1)],
            overlap_details=[KeyDiff("O1", "Shirt|Red|M", 2, 1)],
        ),
        MonthResult(month="2024-06", status=STATUS_ERROR, error="ReconciliationError: boom"),
    ]

    paths = write_reports(results, tmp_path, top_limit=10)

    summary = read_csv_rows(tmp_path / SUMMARY_FILE)
    assert [row["month"] for row in summary] == ["2024-05", "2024-06"]
    assert summary[0]["orders_delta"] == "-3"
    assert summary[0]["reference_only_orders"] == "3"
    assert summary[0]["status"] == "FAIL"
    assert summary[1]["status"] == "ERROR"
    assert summary[1]["error"] == "ReconciliationError: boom"

    monthly = tmp_path / "monthly"
    assert read_csv_rows(monthly / "2024-05_reference_only.csv") == [
        {"month": "2024-05", "order_id": order_id} for order_id in ["R1", "R2", "R3"]
    ]
    assert read_csv_rows(monthly / "2024-05_item_mismatches.csv") == [
        {"month": "2024-05", "order_id": "O1", "key": "Shirt|Red|M", "reference_count": "1", "candidate_count": "2", "delta": "1"}
    ]
    assert read_csv_rows(monthly / "2024-05_analysis.csv")[0]["reference_only"] == "3"
    assert not (monthly / "2024-06_analysis.csv").exists()

    assert read_csv_rows(tmp_path / OVERLAP_FILE)[0]["items_delta"] == "1"
    top = read_csv_rows(tmp_path / TOP_ITEMS_FILE)
    assert top[0] == {
        "rank": "1",
        "key": "Shirt|Red|M",
        "product_name": "Shirt",
        "color": "Red",
        "size": "M",
        "candidate_qty": "2",
        "reference_qty": "1",
        "delta": "1",
    }
    assert read_csv_rows(tmp_path / TOP_ITEMS_NORMALIZED_FILE)[0]["norm_key"] == "shirt|red|m"
    assert "rank" not in read_csv_rows(tmp_path / DISCREPANCIES_RAW_FILE)[0]
    assert paths.summary == tmp_path / SUMMARY_FILE
    assert len(paths.all()) == 1 + 6 + 6


def test_overlap_rows_sort_by_normalized_count_then_items_delta(tmp_path: Path) -> None:
    results = [
        _result(
            "2024-05",
            {},
            {},
            overlap=[
                OverlapOrder("O1", 3, 3, 2, 0),
                OverlapOrder("O2", 1, 4, 1, 1),
                OverlapOrder("O3", 1, 2, 1, 1),
                OverlapOrder("O4", 1, 1, 3, 2),
            ],
        )
    ]

    write_reports(results, tmp_path)

    assert [row["order_id"] for row in read_csv_rows(tmp_path / OVERLAP_FILE)] == ["O4", "O2", "O3", "O1"]
