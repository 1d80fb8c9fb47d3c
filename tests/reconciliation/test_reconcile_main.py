from pathlib import Path

import pytest

import order_audit.config as config_module
from order_audit.__main__ import main
from order_audit.common.csv_io import read_csv_rows, write_csv_rows
from order_audit.common.date_utils import YearMonth
from order_audit.config import Config
from order_audit.reconciliation import main as reconcile_main
from order_audit.reconciliation.engine import ReconcileOptions
from order_audit.reconciliation.reporter import SUMMARY_FILE, TOP_ITEMS_FILE


def _write(root: Path, month: str, rows: list[dict]) -> None:
    write_csv_rows(root / month[:4] / month / f"{month}_orders_in_store.csv", rows)


def _seed(tmp_path: Path) -> tuple[Path, Path]:
    candidate = tmp_path / "candidate"
    reference = tmp_path / "reference"
    _write(
        candidate,
        "2024-04",
        [
            {"order_id": "O1", "product_name": "Shirt", "color": "Red", "size": "M"},
            {"order_id": "O2", "product_name": "Error - Store Purchase", "color": "", "size": ""},
        ],
    )
    _write(
        reference,
        "2024-04",
        [
            {"order_id": "O1", "product_name": "Shirt", "color": "Red", "size": "M"},
            {"order_id": "O2", "product_name": "Hat", "color": "", "size": ""},
        ],
    )
    _write(reference, "2024-05", [{"order_id": f"R{idx}", "product_name": "Sock", "color": "", "size": ""} for idx in range(3)])
    return candidate, reference


@pytest.mark.asyncio
async def test_run_reconciliation_writes_reports_and_logs(tmp_path: Path, captured) -> None:
    candidate, reference = _seed(tmp_path)
    output = tmp_path / "reports"

    run = await reconcile_main.run_reconciliation(
        candidate_root=candidate,
        reference_root=reference,
        start=YearMonth(2024, 4),
        end=YearMonth(2024, 5),
        output_dir=output,
        options=ReconcileOptions(),
        config=Config(),
        run_id="run-1",
        logger=captured.logger,
    )

    assert run.ok
    assert run.failed_months == ["2024-04", "2024-05"]
    summary = {row["month"]: row for row in read_csv_rows(output / SUMMARY_FILE)}
    assert summary["2024-05"]["orders_delta"] == "-3"
    assert summary["2024-05"]["reference_only_orders"] == "3"
    assert summary["2024-05"]["candidate_missing"] == "yes"
    top_keys = [row["key"] for row in read_csv_rows(output / TOP_ITEMS_FILE)]
    assert "Error - Store Purchase||" not in top_keys
    assert "Hat||" in top_keys

    messages = captured.messages()
    assert "Reconciliation finished" in messages
    assert "Months compared" in messages
    month_event = next(event for event in captured.events() if event["message"] == "Month reconciled" and event["month"] == "2024-05")
    assert month_event["status"] == "warn"


@pytest.mark.asyncio
async def test_include_placeholders_ranks_them(tmp_path: Path, captured) -> None:
    candidate, reference = _seed(tmp_path)
    output = tmp_path / "reports"

    await reconcile_main.run_reconciliation(
        candidate_root=candidate,
        reference_root=reference,
        start=YearMonth(2024, 4),
        end=YearMonth(2024, 4),
        output_dir=output,
        options=ReconcileOptions(include_placeholders=True),
        config=Config(),
        logger=captured.logger,
    )

    assert "Error - Store Purchase||" in [row["key"] for row in read_csv_rows(output / TOP_ITEMS_FILE)]


def test_cli_reconcile_subcommand(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    candidate, reference = _seed(tmp_path)
    output = tmp_path / "cli-reports"
    monkeypatch.setattr(reconcile_main, "get_config", lambda: Config())
    monkeypatch.setattr(config_module, "get_config", lambda: Config())

    exit_code = main(
        [
            "reconcile",
            "--candidate-root",
            str(candidate),
            "--reference-root",
            str(reference),
            "--start",
            "2024-04",
            "--end",
            "2024-05",
            "--output-dir",
            str(output),
            "--top-n",
            "5",
        ]
    )

    assert exit_code == 0
    assert (output / SUMMARY_FILE).exists()
    assert (output / "monthly" / "2024-04_presence_analysis.csv").exists()


def test_cli_rejects_reversed_month_range(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(reconcile_main, "get_config", lambda: Config())

    exit_code = main(["reconcile", "--start", "2024-05", "--end", "2024-04", "--output-dir", str(tmp_path)])

    assert exit_code == 2


def test_cli_rejects_bad_month_format() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["reconcile", "--start", "May 2024"])

    assert excinfo.value.code == 2
