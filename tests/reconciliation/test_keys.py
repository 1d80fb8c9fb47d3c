import pytest

from order_audit.reconciliation.keys import ReconciliationKey, is_placeholder, normalize_component, normalize_key


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Men's  Tee", "mens tee"),
        ("mens tee", "mens tee"),
        ("Café Crème", "cafe creme"),
        ("T-Shirt / Navy", "t shirt navy"),
        ("“Quoted” Name", "quoted name"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_component(raw, expected: str) -> None:
    assert normalize_component(raw) == expected


@pytest.mark.parametrize(
    "key",
    ["Men's Tee|Red|M", "CAFÉ  crème|Off-White|XL", "A|B|C|D", "Only Product", "", "Straße|Grün|L"],
)
def test_normalization_is_idempotent(key: str) -> None:
    once = normalize_key(key)

    assert normalize_key(once) == once


def test_formatting_variants_collapse_to_one_normalized_key() -> None:
    assert normalize_key("Men's Tee|Red|M") == normalize_key("mens tee|red|m") == "mens tee|red|m"


def test_parse_keeps_separator_inside_product_name() -> None:
    key = ReconciliationKey.parse("Tee | Logo|Red|M")

    assert key == ReconciliationKey("Tee | Logo", "Red", "M")
    assert str(key) == "Tee | Logo|Red|M"
    assert ReconciliationKey.parse("Tee") == ReconciliationKey("Tee", "", "")


def test_of_collapses_whitespace() -> None:
    assert ReconciliationKey.of("  Oxford   Shirt ", " Red", None) == ReconciliationKey("Oxford Shirt", "Red", "")


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Store Purchase", True),
        ("Error - Store Purchase", True),
        ("error-store purchase", True),
        ("Processing Error", True),
        ("Store Purchase Gift Card", False),
        ("Oxford Shirt", False),
        (None, False),
    ],
)
def test_is_placeholder(name, expected: bool) -> None:
    assert is_placeholder(name) is expected
