from datetime import date

from order_audit.orders_sync.models import OrderSummary
from order_audit.orders_sync.partition import partition_by_day


def test_partition_groups_by_calendar_day_in_input_order() -> None:
    orders = [
        OrderSummary(order_id="O3", date_time="May 4, 2024, 9:00 AM"),
        OrderSummary(order_id="O1", date_time="May 3, 2024, 11:30 PM"),
        OrderSummary(order_id="O2", date_time="May 3, 2024, 8:15 AM"),
        OrderSummary(order_id="OX", date_time="pending"),
    ]

    partitions = partition_by_day(orders)

    assert partitions.dates() == [date(2024, 5, 3), date(2024, 5, 4)]
    assert list(partitions.days) == [date(2024, 5, 3), date(2024, 5, 4)]
    assert [order.order_id for order in partitions.days[date(2024, 5, 3)]] == ["O1", "O2"]
    assert [order.order_id for order in partitions.unparsed] == ["OX"]
