from datetime import date

import pytest

from order_audit.__main__ import build_parser, main
from order_audit.common.date_utils import YearMonth
from order_audit.orders_sync import main as orders_main


def test_parser_wires_every_subcommand() -> None:
    parser = build_parser()

    extract = parser.parse_args(["extract", "--force-date", "2024-05-03", "--force-date", "2024-05-04", "--max-months", "3"])
    rebuild = parser.parse_args(["rebuild-day", "2024-05-03", "--exports-dir", "/tmp/exports"])
    reextract = parser.parse_args(["reextract-placeholders", "--start", "2024-04", "--end", "2024-05"])
    reconcile = parser.parse_args(["reconcile", "--start", "2024-05", "--workers", "2", "--include-placeholders"])

    assert extract.force_dates == [date(2024, 5, 3), date(2024, 5, 4)]
    assert extract.max_months == 3
    assert rebuild.day == date(2024, 5, 3)
    assert rebuild.exports_dir == "/tmp/exports"
    assert (reextract.start, reextract.end) == (YearMonth(2024, 4), YearMonth(2024, 5))
    assert reconcile.workers == 2
    assert reconcile.include_placeholders is True
    assert reconcile.top_n == 100


def test_rebuild_day_restricts_run_to_that_date(monkeypatch: pytest.MonkeyPatch, config) -> None:
    calls = {}

    async def _fake_run_month_driver(**kwargs):
        calls.update(kwargs)
        return orders_main.RunState()

    monkeypatch.setattr(orders_main, "get_config", lambda: config)
    monkeypatch.setattr(orders_main, "run_month_driver", _fake_run_month_driver)

    assert main(["rebuild-day", "2024-05-03"]) == 0
    assert calls["start_month"] == YearMonth(2024, 5)
    assert calls["only_dates"] == [date(2024, 5, 3)]
    assert calls["force_dates"] == [date(2024, 5, 3)]
    assert calls["config"].max_months == 1


def test_extract_returns_one_on_run_error(monkeypatch: pytest.MonkeyPatch, config) -> None:
    async def _failed_run(**kwargs):
        return orders_main.RunState(error="Authentication failed: expired")

    monkeypatch.setattr(orders_main, "get_config", lambda: config)
    monkeypatch.setattr(orders_main, "run_month_driver", _failed_run)

    assert main(["extract", "--headful"]) == 1


def test_invalid_date_exits_with_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["rebuild-day", "03/05/2024"])

    assert excinfo.value.code == 2
