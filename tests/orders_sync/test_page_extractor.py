from typing import List, Sequence

import pytest

from order_audit.orders_sync.console import ListRow
from order_audit.orders_sync.page_extractor import extract_orders, row_to_order


def _row(index: int, order_id: str, date_time: str = "May 3, 2024, 10:00 AM") -> ListRow:
    return ListRow(
        index=index,
        cells=[order_id, "Jane Doe", date_time, "In-Store", "Store 12", "Store 12", "$40.00", "$0.00", "Complete"],
        link_text=order_id,
        href=f"https://console.example.com/orders/{order_id}",
    )


class _FakeListSurface:
    def __init__(self, pages: Sequence[object], *, next_error_after: int | None = None) -> None:
        self._pages = list(pages)
        self._index = 0
        self._next_error_after = next_error_after
        self.next_calls = 0

    async def read_rows(self) -> List[ListRow]:
        page = self._pages[self._index] if self._index < len(self._pages) else []
        if isinstance(page, Exception):
            raise page
        return list(page)

    async def next_page(self) -> bool:
        self.next_calls += 1
        if self._next_error_after is not None and self.next_calls > self._next_error_after:
            raise RuntimeError("next button detached")
        if self._index + 1 >= len(self._pages):
            return False
        self._index += 1
        return True


def test_row_to_order_maps_cells() -> None:
    order = row_to_order(_row(0, "O-100"))

    assert order is not None
    assert order.order_id == "O-100"
    assert order.customer_name == "Jane Doe"
    assert order.date_time == "May 3, 2024, 10:00 AM"
    assert order.fulfillment_location == "Store 12"
    assert order.total == "$40.00"
    assert order.status == "Complete"


def test_row_to_order_rejects_rows_without_link() -> None:
    assert row_to_order(ListRow(index=0, cells=["x"])) is None
    assert row_to_order(ListRow(index=1, error="stale element")) is None


@pytest.mark.asyncio
async def test_extract_orders_walks_pages_and_dedupes(captured) -> None:
    surface = _FakeListSurface(
        [
            [_row(0, "O1"), _row(1, "O2")],
            [_row(0, "O2"), ListRow(index=1, error="detached"), _row(2, "O3")],
        ]
    )

    extract = await extract_orders(surface, logger=captured.logger)

    assert [order.order_id for order in extract.orders] == ["O1", "O2", "O3"]
    assert extract.pages == 2
    assert extract.duplicates == 1
    assert extract.skipped_rows == 1
    assert extract.partial is False
    summary = next(event for event in captured.events() if event["message"] == "Collected orders from grid")
    assert summary["orders"] == 3


@pytest.mark.asyncio
async def test_extract_orders_warns_when_a_page_repeats(captured) -> None:
    surface = _FakeListSurface(
        [
            [_row(0, "O1"), _row(1, "O2")],
            [_row(0, "O1"), _row(1, "O2")],
            [_row(0, "O3")],
        ]
    )

    extract = await extract_orders(surface, logger=captured.logger)

    assert [order.order_id for order in extract.orders] == ["O1", "O2", "O3"]
    assert extract.duplicates == 2
    warning = next(
        event
        for event in captured.events()
        if event["message"] == "Every order on page was already collected; grid may not have advanced"
    )
    assert warning["status"] == "warn"
    assert warning["page"] == 2
    assert warning["duplicates"] == 2


@pytest.mark.asyncio
async def test_extract_orders_partial_dedup_does_not_warn(captured) -> None:
    surface = _FakeListSurface([[_row(0, "O1")], [_row(0, "O1"), _row(1, "O2")]])

    await extract_orders(surface, logger=captured.logger)

    assert "Every order on page was already collected; grid may not have advanced" not in captured.messages()


@pytest.mark.asyncio
async def test_extract_orders_stops_on_empty_page(captured) -> None:
    surface = _FakeListSurface([[_row(0, "O1")], [], [_row(0, "O9")]])

    extract = await extract_orders(surface, logger=captured.logger)

    assert [order.order_id for order in extract.orders] == ["O1"]
    assert extract.pages == 2


@pytest.mark.asyncio
async def test_extract_orders_marks_partial_on_read_failure(captured) -> None:
    surface = _FakeListSurface([[_row(0, "O1")], RuntimeError("grid vanished")])

    extract = await extract_orders(surface, logger=captured.logger)

    assert [order.order_id for order in extract.orders] == ["O1"]
    assert extract.partial is True
    assert extract.error == "grid vanished"
    assert "Reading grid page failed; keeping collected orders" in captured.messages()


@pytest.mark.asyncio
async def test_extract_orders_marks_partial_on_pagination_failure(captured) -> None:
    surface = _FakeListSurface([[_row(0, "O1")], [_row(0, "O2")]], next_error_after=0)

    extract = await extract_orders(surface, logger=captured.logger)

    assert [order.order_id for order in extract.orders] == ["O1"]
    assert extract.partial is True


@pytest.mark.asyncio
async def test_extract_orders_honours_page_cap(captured) -> None:
    surface = _FakeListSurface([[_row(0, f"O{idx}")] for idx in range(5)])

    extract = await extract_orders(surface, logger=captured.logger, page_cap=2)

    assert [order.order_id for order in extract.orders] == ["O0", "O1"]
    assert extract.pages == 2
    assert "Page cap reached; stopping pagination" in captured.messages()
