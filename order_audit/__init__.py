"""Top-level package for order extraction and reconciliation."""

from typing import Any

__all__ = ["run_extraction", "run_reconciliation"]


def __getattr__(name: str) -> Any:
    if name == "run_extraction":
        from order_audit.orders_sync.main import run_month_driver as _run_month_driver

        return _run_month_driver
    if name == "run_reconciliation":
        from order_audit.reconciliation.main import run_reconciliation as _run_reconciliation

        return _run_reconciliation
    raise AttributeError(name)
