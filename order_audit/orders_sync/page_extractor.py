from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from order_audit.common.json_logger import JsonLogger, log_event
from order_audit.orders_sync.console import ListRow, ListSurface
from order_audit.orders_sync.models import OrderSummary

DEFAULT_PAGE_CAP = 500

# Grid cell index -> OrderSummary field; cell 0 holds the order link.
CELL_FIELDS = (
    (1, "customer_name"),
    (2, "date_time"),
    (3, "channel_type"),
    (4, "channel"),
    (5, "fulfillment_location"),
    (6, "total"),
    (7, "discount"),
    (8, "status"),
)


@dataclass
class PageExtract:
    orders: List[OrderSummary] = field(default_factory=list)
    pages: int = 0
    skipped_rows: int = 0
    duplicates: int = 0
    partial: bool = False
    error: str | None = None


def row_to_order(row: ListRow) -> OrderSummary | None:
    """Map a grid row to an order; ``None`` for rows without an order link."""

    if row.error or not row.link_text or not row.href:
        return None
    values = {name: (row.cells[idx] if idx < len(row.cells) else "") for idx, name in CELL_FIELDS}
    return OrderSummary(order_id=row.link_text.strip(), href=row.href, **values)


async def extract_orders(
    surface: ListSurface,
    *,
    logger: JsonLogger,
    page_cap: int = DEFAULT_PAGE_CAP,
) -> PageExtract:
    """Walk the paginated grid and collect unique orders in display order.

    Stops when a page has no rows, the continuation is missing or disabled, or
    ``page_cap`` pages were read. A failure while reading or advancing keeps
    what was collected and flags the extract as partial.
    """

    result = PageExtract()
    seen: set[str] = set()
    while result.pages < page_cap:
        try:
            rows = await surface.read_rows()
        except Exception as exc:
            result.partial = True
            result.error = str(exc)
            log_event(
                logger=logger,
                phase="orders",
                status="warn",
                message="Reading grid page failed; keeping collected orders",
                page=result.pages + 1,
                error=str(exc),
            )
            break
        result.pages += 1
        if not rows:
            log_event(logger=logger, phase="orders", status="debug", message="Empty page; ending pagination", page=result.pages)
            break

        page_added = 0
        page_duplicates = 0
        for row in rows:
            order = row_to_order(row)
            if order is None:
                result.skipped_rows += 1
                log_event(
                    logger=logger,
                    phase="orders",
                    status="debug",
                    message="Skipping malformed row",
                    page=result.pages,
                    row=row.index,
                    error=row.error,
                )
                continue
            if order.order_id in seen:
                result.duplicates += 1
                page_duplicates += 1
                log_event(
                    logger=logger,
                    phase="orders",
                    status="debug",
                    message="Duplicate order id across pages; keeping first occurrence",
                    page=result.pages,
                    order_id=order.order_id,
                )
                continue
            seen.add(order.order_id)
            result.orders.append(order)
            page_added += 1
        if page_duplicates and not page_added:
            log_event(
                logger=logger,
                phase="orders",
                status="warn",
                message="Every order on page was already collected; grid may not have advanced",
                page=result.pages,
                duplicates=page_duplicates,
            )

        try:
            advanced = await surface.next_page()
        except Exception as exc:
            result.partial = True
            result.error = str(exc)
            log_event(
                logger=logger,
                phase="orders",
                status="warn",
                message="Pagination failed; keeping collected orders",
                page=result.pages,
                error=str(exc),
            )
            break
        if not advanced:
            break
    else:
        log_event(
            logger=logger,
            phase="orders",
            status="warn",
            message="Page cap reached; stopping pagination",
            page_cap=page_cap,
        )

    log_event(
        logger=logger,
        phase="orders",
        message="Collected orders from grid",
        orders=len(result.orders),
        pages=result.pages,
        skipped_rows=result.skipped_rows,
        duplicates=result.duplicates,
        partial=result.partial,
    )
    return result
