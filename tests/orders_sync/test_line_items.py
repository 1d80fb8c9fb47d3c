import asyncio
from typing import Dict

import pytest

from order_audit.orders_sync.line_items import (
    FreeTextStrategy,
    LineItemExtractor,
    PriceColumnAligner,
    StructuredGroupStrategy,
    default_strategies,
    run_strategies,
)
from order_audit.orders_sync.models import ERROR_PLACEHOLDER_NAME, PLACEHOLDER_NAME, OrderSummary
from order_audit.orders_sync.snapshot import DetailSnapshot, PriceToken, is_red

BLACK = "rgb(33, 33, 33)"
RED = "rgb(207, 19, 34)"

ORDER = OrderSummary(
    order_id="O-1",
    href="https://console.example.com/orders/O-1",
    date_time="May 3, 2024, 10:00 AM",
    total="$48.00",
    discount="$2.00",
    status="Complete",
)

HEADERS = [
    {"text": "Price", "x": 100, "top": 50},
    {"text": "Discount", "x": 200, "top": 50},
    {"text": "Disc. Price", "x": 300, "top": 50},
    {"text": "Taxes", "x": 400, "top": 50},
    {"text": "Price", "x": 900, "top": 700},
]


def _group(fields: Dict[str, str], name: str = "Oxford Shirt", tokens=None) -> dict:
    return {
        "fields": fields,
        "candidates": [
            {"depth": 0, "name": "", "tokens": []},
            {"depth": 1, "name": name, "tokens": tokens or []},
        ],
    }


def _priced_tokens() -> list:
    return [
        {"text": "$20.00", "x": 104, "color": BLACK},
        {"text": "$5.00", "x": 198, "color": RED},
        {"text": "$15.00", "x": 301, "color": BLACK},
        {"text": "$1.20", "x": 402, "color": RED},
    ]


def test_is_red_thresholds() -> None:
    assert is_red("rgb(170, 90, 90)") is True
    assert is_red("rgba(255, 0, 0, 1)") is True
    assert is_red("rgb(169, 0, 0)") is False
    assert is_red("rgb(200, 91, 0)") is False
    assert is_red("") is False


def test_header_positions_use_topmost_header() -> None:
    snapshot = DetailSnapshot.from_payload({"headers": HEADERS})

    assert snapshot.header_positions() == {"Price": 100, "Discount": 200, "Disc. Price": 300, "Taxes": 400}


def test_aligner_assigns_tokens_by_column_and_colour() -> None:
    tokens = [
        PriceToken("$20.00", 104, BLACK),
        PriceToken("$5.00", 198, RED),
        PriceToken("$15.00", 301, BLACK),
        PriceToken("$1.20", 402, RED),
    ]
    headers = {"Price": 100, "Discount": 200, "Disc. Price": 300, "Taxes": 400}

    amounts = PriceColumnAligner().align(tokens, headers)

    assert amounts.price == "$20.00"
    assert amounts.discount == "$5.00"
    assert amounts.discounted_price == "$15.00"
    assert amounts.taxes == "$1.20"


def test_aligner_defaults_when_no_red_tokens() -> None:
    headers = {"Price": 100, "Discount": 200, "Disc. Price": 300, "Taxes": 400}

    amounts = PriceColumnAligner().align([PriceToken("$20.00", 100, BLACK)], headers)

    assert amounts.discount == "N/A"
    assert amounts.discounted_price == ""
    assert amounts.taxes == ""


def test_structured_groups_build_line_items() -> None:
    snapshot = DetailSnapshot.from_payload(
        {
            "groups": [
                _group({"SKU": "SKU-1", "COLOR": "Red", "SIZE": "M", "QTY": "2"}, tokens=_priced_tokens()),
                _group({"NOTE": "gift wrap"}, name="Gift wrap"),
                _group({"UPC": "0001", "COLOR": "Blue"}, name="Chino", tokens=[{"text": "$30.00", "x": 100, "color": BLACK}]),
            ],
            "headers": HEADERS,
        }
    )

    items = StructuredGroupStrategy().extract(snapshot, ORDER)

    assert items is not None
    first, second = items
    assert (first.line_number, first.product_name, first.sku, first.color, first.size, first.quantity) == (
        1,
        "Oxford Shirt",
        "SKU-1",
        "Red",
        "M",
        "2",
    )
    assert (first.unit_price, first.line_discount, first.discounted_price, first.taxes) == ("20.00", "5.00", "15.00", "1.20")
    assert (second.line_number, second.product_name, second.upc) == (2, "Chino", "0001")
    assert (second.unit_price, second.line_discount, second.discounted_price, second.taxes) == ("30.00", "0", "30.00", "0")


def test_free_text_strategy_skips_totals_and_taxes() -> None:
    snapshot = DetailSnapshot.from_payload(
        {"bodyText": "Linen Pants $45.00\nSubtotal $45.00\nTax $3.00\nTotal $48.00\nThanks for shopping"}
    )

    items = FreeTextStrategy().extract(snapshot, ORDER)

    assert items is not None
    assert [(item.product_name, item.unit_price, item.discounted_price) for item in items] == [
        ("Linen Pants", "45.00", "45.00")
    ]


def test_free_text_strategy_ignored_when_groups_exist() -> None:
    snapshot = DetailSnapshot.from_payload({"groups": [_group({"NOTE": "x"})], "bodyText": "Linen Pants $45.00"})

    assert FreeTextStrategy().extract(snapshot, ORDER) is None


def test_run_strategies_falls_back_to_placeholder() -> None:
    snapshot = DetailSnapshot.from_payload({"groups": [_group({"NOTE": "x"})], "bodyText": "nothing priced"})

    items, strategy = run_strategies(snapshot, ORDER, default_strategies())

    assert strategy == "placeholder"
    assert len(items) == 1
    placeholder = items[0]
    assert placeholder.product_name == PLACEHOLDER_NAME
    assert (placeholder.unit_price, placeholder.line_discount, placeholder.discounted_price) == ("48.00", "2.00", "48.00")


class _FakeDetail:
    def __init__(self, *, payload=None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.payload = payload
        self.error = error
        self.delay = delay
        self.requested: list[str] = []

    async def snapshot(self, href: str) -> DetailSnapshot:
        self.requested.append(href)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return DetailSnapshot.from_payload(self.payload)

    async def close(self) -> None:
        return None


@pytest.mark.asyncio
async def test_extractor_returns_structured_items(captured) -> None:
    detail = _FakeDetail(payload={"groups": [_group({"SKU": "SKU-1"}, tokens=_priced_tokens())], "headers": HEADERS})
    extractor = LineItemExtractor(detail=detail, logger=captured.logger)

    result = await extractor.extract(ORDER)

    assert detail.requested == [ORDER.href]
    assert result.strategy == "structured_groups"
    assert result.placeholder is False
    assert result.stats is not None and result.stats.line_groups == 1
    assert "Extracted line items" in captured.messages()


@pytest.mark.asyncio
async def test_extractor_downgrades_errors_to_error_placeholder(captured) -> None:
    extractor = LineItemExtractor(detail=_FakeDetail(error=RuntimeError("page crashed")), logger=captured.logger)

    result = await extractor.extract(ORDER)

    assert result.strategy == "error"
    assert result.error == "page crashed"
    assert [item.product_name for item in result.items] == [ERROR_PLACEHOLDER_NAME]
    assert result.items[0].line_discount == "0"
    warn = next(event for event in captured.events() if event["status"] == "warn")
    assert warn["order_id"] == "O-1"


@pytest.mark.asyncio
async def test_extractor_times_out_per_order(captured) -> None:
    extractor = LineItemExtractor(detail=_FakeDetail(payload={}, delay=1.0), logger=captured.logger, timeout_seconds=0.01)

    result = await extractor.extract(ORDER)

    assert result.error == "timeout"
    assert result.items[0].product_name == ERROR_PLACEHOLDER_NAME
    assert "Order detail timed out; using error placeholder" in captured.messages()
