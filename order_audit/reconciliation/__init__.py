"""Read-only comparison of the extracted store against a reference dataset."""

__all__ = ["main", "reconcile_range", "run_reconciliation"]


def __getattr__(name: str):
    if name == "main":
        from .main import run as reconciliation_main

        return reconciliation_main
    if name == "reconcile_range":
        from .engine import reconcile_range

        return reconcile_range
    if name == "run_reconciliation":
        from .main import run_reconciliation

        return run_reconciliation
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
