import pytest

from order_audit.config import Config, ConfigError


def test_from_mapping_applies_defaults() -> None:
    config = Config.from_mapping({})

    assert config.run_env == "local"
    assert config.exports_dir == "orders_exports"
    assert config.headless is True
    assert config.order_delay_seconds == 1.0
    assert config.order_timeout_seconds == 60.0
    assert config.max_months == 60
    assert config.max_empty_months == 3
    assert config.filter_channel_type == "In-Store"
    assert config.page_size == 100
    assert config.reports_dir == "reports/validation"


def test_from_mapping_parses_values() -> None:
    config = Config.from_mapping(
        {
            "RUN_ENV": "prod",
            "HEADLESS": "off",
            "SLOWMO_MS": "250",
            "ORDER_DELAY_SECONDS": "2.5",
            "MAX_EMPTY_MONTHS": " 5 ",
            "CONSOLE_BASE_URL": "https://console.example.com/orders",
            "EXPORTS_DIR": "/data/exports",
        }
    )

    assert config.run_env == "prod"
    assert config.headless is False
    assert config.slowmo_ms == 250
    assert config.order_delay_seconds == 2.5
    assert config.max_empty_months == 5
    assert config.console_base_url == "https://console.example.com/orders"
    assert config.exports_dir == "/data/exports"


def test_blank_values_fall_back_to_defaults() -> None:
    config = Config.from_mapping({"MAX_MONTHS": "   ", "EXPORTS_DIR": ""})

    assert config.max_months == 60
    assert config.exports_dir == "orders_exports"


@pytest.mark.parametrize(
    "env",
    [
        {"HEADLESS": "maybe"},
        {"MAX_MONTHS": "abc"},
        {"MAX_EMPTY_MONTHS": "0"},
        {"ORDER_DELAY_SECONDS": "-1"},
        {"CONSOLE_BASE_URL": "console.example.com"},
    ],
)
def test_invalid_values_raise_config_error(env: dict) -> None:
    with pytest.raises(ConfigError):
        Config.from_mapping(env)


def test_config_is_frozen() -> None:
    config = Config()

    with pytest.raises(AttributeError):
        config.run_env = "prod"  # type: ignore[misc]
