from decimal import Decimal

import pytest

from order_audit.common.money import find_currency_token, format_amount, money_to_decimal, money_to_plain


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("$1,234.50", "1234.50"),
        ("-$5.00", "-5.00"),
        ("N/A", "0"),
        ("", "0"),
        (None, "0"),
        ("$", "0"),
        ("12", "12"),
    ],
)
def test_money_to_plain(value, expected: str) -> None:
    assert money_to_plain(value) == expected


def test_find_currency_token_returns_first_amount() -> None:
    assert find_currency_token("Subtotal $1,200.00 then $5") == "$1,200.00"
    assert find_currency_token("no amounts here") is None


def test_money_to_decimal_and_format_amount() -> None:
    assert money_to_decimal("$19.99") == Decimal("19.99")
    assert format_amount(Decimal("3")) == "3.00"
