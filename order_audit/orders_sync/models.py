from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Tuple

from order_audit.common.money import money_to_plain

ORDER_COLUMNS: Tuple[str, ...] = (
    "order_id",
    "href",
    "customer_name",
    "associate",
    "date_time",
    "channel_type",
    "channel",
    "fulfillment_location",
    "demand_location",
    "total",
    "discount",
    "status",
)

LINE_ITEM_COLUMNS: Tuple[str, ...] = (
    "order_id",
    "line_number",
    "product_name",
    "sku",
    "upc",
    "color",
    "size",
    "quantity",
    "ax_item_number",
    "jasper_product_id",
    "magento_sku",
    "variant_group_id",
    "tax_class_id",
    "product_id",
    "status",
    "unit_price",
    "line_discount",
    "discounted_price",
    "taxes",
)

PLACEHOLDER_NAME = "Store Purchase"
ERROR_PLACEHOLDER_NAME = "Error - Store Purchase"
PLACEHOLDER_NAMES = frozenset({PLACEHOLDER_NAME, ERROR_PLACEHOLDER_NAME})
DEFAULT_STATUS = "Complete"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class OrderSummary:
    """One row of the orders grid."""

    order_id: str
    href: str = ""
    customer_name: str = ""
    associate: str = ""
    date_time: str = ""
    channel_type: str = ""
    channel: str = ""
    fulfillment_location: str = ""
    demand_location: str = ""
    total: str = ""
    discount: str = ""
    status: str = ""

    def to_row(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in ORDER_COLUMNS}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OrderSummary":
        return cls(**{name: _text(row.get(name)) for name in ORDER_COLUMNS})


@dataclass(frozen=True)
class LineItem:
    order_id: str
    line_number: int
    product_name: str
    sku: str = ""
    upc: str = ""
    color: str = ""
    size: str = ""
    quantity: str = "1"
    ax_item_number: str = ""
    jasper_product_id: str = ""
    magento_sku: str = ""
    variant_group_id: str = ""
    tax_class_id: str = ""
    product_id: str = ""
    status: str = DEFAULT_STATUS
    unit_price: str = "0"
    line_discount: str = "0"
    discounted_price: str = "0"
    taxes: str = "0"

    @property
    def is_placeholder(self) -> bool:
        return self.product_name in PLACEHOLDER_NAMES

    def renumbered(self, line_number: int) -> "LineItem":
        return replace(self, line_number=line_number)

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        return {name: row[name] for name in LINE_ITEM_COLUMNS}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LineItem":
        values: Dict[str, Any] = {}
        for item_field in fields(cls):
            raw = row.get(item_field.name)
            if item_field.name == "line_number":
                try:
                    values["line_number"] = int(_text(raw) or 0)
                except ValueError:
                    values["line_number"] = 0
            elif raw is None:
                continue
            else:
                values[item_field.name] = _text(raw)
        values.setdefault("order_id", "")
        values.setdefault("product_name", "")
        return cls(**values)


def placeholder_line_item(order: OrderSummary, *, error: bool = False) -> LineItem:
    """Synthesize the single stand-in line for an order with no extractable items.

    Prices are copied from the order header so revenue totals still line up.
    """

    total = money_to_plain(order.total)
    return LineItem(
        order_id=order.order_id,
        line_number=1,
        product_name=ERROR_PLACEHOLDER_NAME if error else PLACEHOLDER_NAME,
        quantity="1",
        status=DEFAULT_STATUS if error else (order.status or DEFAULT_STATUS),
        unit_price=total,
        line_discount="0" if error else money_to_plain(order.discount),
        discounted_price=total,
        taxes="0",
    )
