"""Shared services for the order audit pipelines."""

from typing import Any

__all__ = [
    "session_scope",
    "read_csv_rows",
    "write_csv_rows",
    "money_to_decimal",
]


def __getattr__(name: str) -> Any:
    if name == "session_scope":
        from .db import session_scope as _session_scope

        return _session_scope
    if name == "read_csv_rows":
        from .csv_io import read_csv_rows as _read_csv_rows

        return _read_csv_rows
    if name == "write_csv_rows":
        from .csv_io import write_csv_rows as _write_csv_rows

        return _write_csv_rows
    if name == "money_to_decimal":
        from .money import money_to_decimal as _money_to_decimal

        return _money_to_decimal
    raise AttributeError(name)
