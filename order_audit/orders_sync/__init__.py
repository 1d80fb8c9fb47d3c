"""Month-by-month extraction of console orders into the day-partitioned store."""

__all__ = ["main", "run_month_driver"]


def __getattr__(name: str):
    if name == "main":
        from .main import run as orders_sync_main

        return orders_sync_main
    if name == "run_month_driver":
        from .main import run_month_driver

        return run_month_driver
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
