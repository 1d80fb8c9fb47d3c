"""Shared helpers for timezone-aware month and day calculations."""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, List
from zoneinfo import ZoneInfo

from dateutil import parser

DEFAULT_TIMEZONE = "UTC"

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def get_timezone(name: str | None = None) -> ZoneInfo:
    """Return the pipeline timezone.

    Falls back to the configured ``PIPELINE_TIMEZONE`` so "the current month"
    does not depend on the machine locale.
    """

    if name:
        return ZoneInfo(name)
    from order_audit.config import get_config

    return ZoneInfo(get_config().pipeline_timezone or DEFAULT_TIMEZONE)


def aware_now(tz: ZoneInfo | None = None) -> datetime:
    """Return ``datetime.now`` in the configured timezone."""

    return datetime.now(tz or get_timezone())


@dataclass(frozen=True, order=True)
class YearMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month {self.month}")

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        match = _MONTH_RE.match(value.strip())
        if not match:
            raise ValueError(f"Invalid month {value!r}; expected YYYY-MM")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def of(cls, day: date) -> "YearMonth":
        return cls(day.year, day.month)

    def shift(self, months: int) -> "YearMonth":
        index = self.year * 12 + (self.month - 1) + months
        return YearMonth(index // 12, index % 12 + 1)

    def previous(self) -> "YearMonth":
        return self.shift(-1)

    def next(self) -> "YearMonth":
        return self.shift(1)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def month_range(start: YearMonth, end: YearMonth) -> List[YearMonth]:
    """Inclusive list of months from ``start`` to ``end``; empty when reversed."""

    months: List[YearMonth] = []
    current = start
    while current <= end:
        months.append(current)
        current = current.next()
    return months


def months_backward(start: YearMonth, limit: int) -> Iterator[YearMonth]:
    """Yield ``start`` and then strictly earlier months, at most ``limit`` of them."""

    current = start
    for _ in range(max(0, limit)):
        yield current
        current = current.previous()


def parse_display_date(value: str | None) -> date | None:
    """Parse the calendar day out of a console display timestamp.

    The console renders values such as ``"Aug 31, 2025, 3:45 PM"``; only the
    first two comma-separated parts carry the date. Unparseable text yields
    ``None``.
    """

    text = (value or "").strip()
    if not text:
        return None
    head = ",".join(text.split(",")[:2]).strip()
    for candidate in (head, text):
        try:
            return parser.parse(candidate, default=datetime(1900, 1, 1)).date()
        except (ValueError, OverflowError):
            continue
    return None
