from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

CURRENCY_TOKEN_RE = re.compile(r"\$[0-9][\d,]*\.?\d*")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def find_currency_token(text: str | None) -> str | None:
    """Return the first ``$``-prefixed amount in ``text``."""

    match = CURRENCY_TOKEN_RE.search(text or "")
    return match.group(0) if match else None


def money_to_plain(value: Any) -> str:
    """Strip everything but digits, sign and decimal point; empty amounts become ``"0"``."""

    if value is None:
        return "0"
    text = str(value).strip()
    if not text or text.upper() == "N/A":
        return "0"
    cleaned = _NON_NUMERIC_RE.sub("", text)
    if cleaned in {"", ".", "-", "-."}:
        return "0"
    try:
        Decimal(cleaned)
    except InvalidOperation:
        return "0"
    return cleaned


def money_to_decimal(value: Any) -> Decimal:
    return Decimal(money_to_plain(value))


def format_amount(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.01'))}"
