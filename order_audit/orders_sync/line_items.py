from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from order_audit.common.json_logger import JsonLogger, log_event
from order_audit.common.money import CURRENCY_TOKEN_RE, money_to_decimal, money_to_plain
from order_audit.orders_sync.console import DetailSurface
from order_audit.orders_sync.models import DEFAULT_STATUS, LineItem, OrderSummary, placeholder_line_item
from order_audit.orders_sync.snapshot import (
    DISCOUNT,
    DISCOUNTED_PRICE,
    PRICE,
    TAXES,
    DescriptorGroup,
    DetailSnapshot,
    PriceToken,
    SnapshotStats,
)

FREE_TEXT_EXCLUDE_RE = re.compile(r"\b(sub\s*-?\s*total|total|tax(es)?)\b", re.I)
FREE_TEXT_NAME = "Item"


class LineItemStrategy(Protocol):
    name: str

    def extract(self, snapshot: DetailSnapshot, order: OrderSummary) -> Optional[List[LineItem]]:
        ...


@dataclass(frozen=True)
class AlignedAmounts:
    price: str = ""
    discount: str = ""
    discounted_price: str = ""
    taxes: str = ""


class PriceColumnAligner:
    """Assign a row's currency tokens to the Price/Discount/Disc. Price/Taxes columns.

    Each column takes the token whose horizontal centre is closest to the
    column header. Discounts and taxes are rendered red, prices are not.
    """

    def align(self, tokens: Sequence[PriceToken], headers: Dict[str, float]) -> AlignedAmounts:
        price = self._closest(tokens, headers.get(PRICE), lambda token: not token.red)
        discount = self._closest(tokens, headers.get(DISCOUNT), lambda token: token.red) or "N/A"
        discounted = self._closest(
            tokens,
            headers.get(DISCOUNTED_PRICE),
            lambda token: not token.red and token.text != price,
        )
        taxes = self._closest(tokens, headers.get(TAXES), lambda token: token.red)
        return AlignedAmounts(price=price, discount=discount, discounted_price=discounted, taxes=taxes)

    @staticmethod
    def _closest(tokens: Sequence[PriceToken], header_x: float | None, accept) -> str:
        if header_x is None:
            return ""
        best: PriceToken | None = None
        best_dx = float("inf")
        for token in tokens:
            if not accept(token):
                continue
            dx = abs(token.x - header_x)
            if dx < best_dx:
                best_dx = dx
                best = token
        return best.text if best else ""


class StructuredGroupStrategy:
    """Line items from descriptor groups that carry an item identifier."""

    name = "structured_groups"

    def __init__(self, aligner: PriceColumnAligner | None = None) -> None:
        self.aligner = aligner or PriceColumnAligner()

    def extract(self, snapshot: DetailSnapshot, order: OrderSummary) -> Optional[List[LineItem]]:
        groups = snapshot.line_groups
        if not groups:
            return None
        headers = snapshot.header_positions()
        return [self._build(group, headers, order, index) for index, group in enumerate(groups, start=1)]

    def _build(self, group: DescriptorGroup, headers: Dict[str, float], order: OrderSummary, line_number: int) -> LineItem:
        fields = group.fields
        row = group.best_row()
        amounts = self.aligner.align(row.tokens if row else (), headers)
        name = (row.name if row else "") or fields.get("PRODUCT_NAME") or FREE_TEXT_NAME
        taxes = money_to_plain(amounts.taxes)
        return LineItem(
            order_id=order.order_id,
            line_number=line_number,
            product_name=name,
            sku=fields.get("SKU", ""),
            upc=fields.get("UPC", ""),
            color=fields.get("COLOR", ""),
            size=fields.get("SIZE", ""),
            quantity=fields.get("QTY") or fields.get("QUANTITY") or "1",
            ax_item_number=fields.get("AX_ITEM_NUMBER", ""),
            jasper_product_id=fields.get("JASPER_PRODUCT_ID", ""),
            magento_sku=fields.get("MAGENTO_SKU", ""),
            variant_group_id=fields.get("VARIANT_GROUP_ID", ""),
            tax_class_id=fields.get("TAX_CLASS_ID", ""),
            product_id=fields.get("PRODUCT_ID", ""),
            status=order.status or DEFAULT_STATUS,
            unit_price=money_to_plain(amounts.price),
            line_discount=money_to_plain(amounts.discount),
            discounted_price=money_to_plain(amounts.discounted_price or amounts.price),
            taxes=taxes if money_to_decimal(taxes) > Decimal("0") else "0",
        )


class FreeTextStrategy:
    """Currency-bearing body text lines, skipped when any descriptor group exists."""

    name = "free_text"

    def extract(self, snapshot: DetailSnapshot, order: OrderSummary) -> Optional[List[LineItem]]:
        if snapshot.groups:
            return None
        items: List[LineItem] = []
        for raw_line in snapshot.body_text.splitlines():
            line = raw_line.strip()
            match = CURRENCY_TOKEN_RE.search(line)
            if not match or FREE_TEXT_EXCLUDE_RE.search(line):
                continue
            name = (line[: match.start()] + " " + line[match.end():]).strip(" \t:-|")
            name = re.sub(r"\s+", " ", name) or FREE_TEXT_NAME
            amount = money_to_plain(match.group(0))
            items.append(
                LineItem(
                    order_id=order.order_id,
                    line_number=len(items) + 1,
                    product_name=name,
                    status=order.status or DEFAULT_STATUS,
                    unit_price=amount,
                    line_discount="0",
                    discounted_price=amount,
                )
            )
        return items or None


def default_strategies() -> List[LineItemStrategy]:
    return [StructuredGroupStrategy(), FreeTextStrategy()]


def run_strategies(
    snapshot: DetailSnapshot,
    order: OrderSummary,
    strategies: Sequence[LineItemStrategy],
) -> tuple[List[LineItem], str]:
    """First strategy yielding at least one item wins; otherwise a single placeholder."""

    for strategy in strategies:
        items = strategy.extract(snapshot, order)
        if items:
            return [item.renumbered(index) for index, item in enumerate(items, start=1)], strategy.name
    return [placeholder_line_item(order)], "placeholder"


@dataclass
class LineItemResult:
    order_id: str
    items: List[LineItem]
    strategy: str
    error: str | None = None
    stats: SnapshotStats | None = None
    placeholder: bool = field(init=False)

    def __post_init__(self) -> None:
        self.placeholder = all(item.is_placeholder for item in self.items)


class LineItemExtractor:
    """Turns one order's detail view into line items, never raising for a single order."""

    def __init__(
        self,
        *,
        detail: DetailSurface,
        logger: JsonLogger,
        timeout_seconds: float = 60.0,
        strategies: Sequence[LineItemStrategy] | None = None,
    ) -> None:
        self.detail = detail
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self.strategies = list(strategies) if strategies is not None else default_strategies()

    async def extract(self, order: OrderSummary) -> LineItemResult:
        try:
            snapshot = await asyncio.wait_for(self.detail.snapshot(order.href), timeout=self.timeout_seconds)
            items, strategy = run_strategies(snapshot, order, self.strategies)
        except asyncio.TimeoutError:
            log_event(
                logger=self.logger,
                phase="line_items",
                status="warn",
                message="Order detail timed out; using error placeholder",
                order_id=order.order_id,
                timeout_seconds=self.timeout_seconds,
            )
            return LineItemResult(
                order_id=order.order_id,
                items=[placeholder_line_item(order, error=True)],
                strategy="error",
                error="timeout",
            )
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="line_items",
                status="warn",
                message="Order detail extraction failed; using error placeholder",
                order_id=order.order_id,
                error=str(exc),
            )
            return LineItemResult(
                order_id=order.order_id,
                items=[placeholder_line_item(order, error=True)],
                strategy="error",
                error=str(exc),
            )

        stats = SnapshotStats.of(snapshot)
        result = LineItemResult(order_id=order.order_id, items=items, strategy=strategy, stats=stats)
        log_event(
            logger=self.logger,
            phase="line_items",
            status="warn" if result.placeholder else "ok",
            message="Extracted line items" if not result.placeholder else "No line items found; using placeholder",
            order_id=order.order_id,
            strategy=strategy,
            items=len(items),
            groups=stats.groups,
            line_groups=stats.line_groups,
        )
        return result
