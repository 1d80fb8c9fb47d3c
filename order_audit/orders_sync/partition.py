from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List

from order_audit.common.date_utils import parse_display_date
from order_audit.orders_sync.models import OrderSummary


@dataclass
class DayPartitions:
    days: Dict[date, List[OrderSummary]] = field(default_factory=dict)
    unparsed: List[OrderSummary] = field(default_factory=list)

    def dates(self) -> List[date]:
        return sorted(self.days)


def partition_by_day(orders: Iterable[OrderSummary]) -> DayPartitions:
    """Group orders by the calendar day in their display timestamp, keeping input order per day."""

    result = DayPartitions()
    for order in orders:
        day = parse_display_date(order.date_time)
        if day is None:
            result.unparsed.append(order)
            continue
        result.days.setdefault(day, []).append(order)
    result.days = {day: result.days[day] for day in sorted(result.days)}
    return result
