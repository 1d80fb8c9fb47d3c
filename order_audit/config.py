"""
CONFIG.PY - SINGLE SOURCE OF TRUTH (SSOT)

This module is the ONLY place allowed to read environment variables.

Values are loaded from the OS environment, with a project-level ``.env`` file
filling in anything the environment does not set. Every value is parsed
strictly; an invalid value fails early with ``ConfigError``.

Config is loaded ONCE and cached in a single frozen ``Config`` object.
To use a config value, import:

    from order_audit.config import get_config

Do not access os.getenv directly from any other module.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping

from dotenv import load_dotenv

from order_audit.errors import ConfigError

PROJECT_ROOT = Path(__file__).resolve().parents[1]

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULTS: Dict[str, str] = {
    "RUN_ENV": "local",
    "PIPELINE_TIMEZONE": "UTC",
    "JSON_LOG_FILE": "",
    "DATABASE_URL": "",
    "CONSOLE_BASE_URL": "",
    "CONSOLE_USERNAME": "",
    "CONSOLE_PASSWORD": "",
    "STORAGE_STATE_PATH": "storageState.json",
    "EXPORTS_DIR": "orders_exports",
    "HEADLESS": "true",
    "SLOWMO_MS": "0",
    "VIEWPORT_WIDTH": "1680",
    "VIEWPORT_HEIGHT": "1050",
    "NAV_TIMEOUT_MS": "30000",
    "ORDER_TIMEOUT_SECONDS": "60",
    "ORDER_DELAY_SECONDS": "1.0",
    "MAX_MONTHS": "60",
    "MAX_EMPTY_MONTHS": "3",
    "START_MONTHS_BACK": "0",
    "FILTER_CHANNEL": "",
    "FILTER_CHANNEL_TYPE": "In-Store",
    "PAGE_SIZE": "100",
    "REFERENCE_ROOT": "reference_data",
    "REPORTS_DIR": "reports/validation",
}


def _read(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if value is None or not value.strip():
        return DEFAULTS[key]
    return value.strip()


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    message = f"Config key {key} must be a boolean string; got {value!r}"
    logger.error(message)
    raise ConfigError(message)


def _parse_int(value: str, *, key: str, minimum: int | None = None) -> int:
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be an integer; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    if minimum is not None and parsed < minimum:
        message = f"Config key {key} must be >= {minimum}; got {parsed}"
        logger.error(message)
        raise ConfigError(message)
    return parsed


def _parse_float(value: str, *, key: str) -> float:
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be a number; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    if parsed < 0:
        message = f"Config key {key} cannot be negative; got {parsed}"
        logger.error(message)
        raise ConfigError(message)
    return parsed


def _clean_url(value: str, *, key: str) -> str:
    stripped = value.strip()
    if stripped and not re.match(r"^https?://", stripped, flags=re.I):
        message = f"Config key {key} must be an http(s) URL; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    return stripped


@dataclass(slots=True, frozen=True)
class Config:
    run_env: str = "local"
    pipeline_timezone: str = "UTC"
    json_log_file: str = ""
    database_url: str = ""

    console_base_url: str = ""
    console_username: str = ""
    console_password: str = ""
    storage_state_path: str = "storageState.json"
    exports_dir: str = "orders_exports"
    headless: bool = True
    slowmo_ms: int = 0
    viewport_width: int = 1680
    viewport_height: int = 1050
    nav_timeout_ms: int = 30_000
    order_timeout_seconds: float = 60.0
    order_delay_seconds: float = 1.0
    max_months: int = 60
    max_empty_months: int = 3
    start_months_back: int = 0
    filter_channel: str = ""
    filter_channel_type: str = "In-Store"
    page_size: int = 100

    reference_root: str = "reference_data"
    reports_dir: str = "reports/validation"

    @classmethod
    def from_mapping(cls, env: Mapping[str, str]) -> Config:
        return cls(
            run_env=_read(env, "RUN_ENV") or "local",
            pipeline_timezone=_read(env, "PIPELINE_TIMEZONE") or "UTC",
            json_log_file=_read(env, "JSON_LOG_FILE"),
            database_url=_read(env, "DATABASE_URL"),
            console_base_url=_clean_url(_read(env, "CONSOLE_BASE_URL"), key="CONSOLE_BASE_URL"),
            console_username=_read(env, "CONSOLE_USERNAME"),
            console_password=_read(env, "CONSOLE_PASSWORD"),
            storage_state_path=_read(env, "STORAGE_STATE_PATH") or DEFAULTS["STORAGE_STATE_PATH"],
            exports_dir=_read(env, "EXPORTS_DIR") or DEFAULTS["EXPORTS_DIR"],
            headless=_parse_bool(_read(env, "HEADLESS"), key="HEADLESS"),
            slowmo_ms=_parse_int(_read(env, "SLOWMO_MS"), key="SLOWMO_MS", minimum=0),
            viewport_width=_parse_int(_read(env, "VIEWPORT_WIDTH"), key="VIEWPORT_WIDTH", minimum=1),
            viewport_height=_parse_int(_read(env, "VIEWPORT_HEIGHT"), key="VIEWPORT_HEIGHT", minimum=1),
            nav_timeout_ms=_parse_int(_read(env, "NAV_TIMEOUT_MS"), key="NAV_TIMEOUT_MS", minimum=1),
            order_timeout_seconds=_parse_float(_read(env, "ORDER_TIMEOUT_SECONDS"), key="ORDER_TIMEOUT_SECONDS"),
            order_delay_seconds=_parse_float(_read(env, "ORDER_DELAY_SECONDS"), key="ORDER_DELAY_SECONDS"),
            max_months=_parse_int(_read(env, "MAX_MONTHS"), key="MAX_MONTHS", minimum=1),
            max_empty_months=_parse_int(_read(env, "MAX_EMPTY_MONTHS"), key="MAX_EMPTY_MONTHS", minimum=1),
            start_months_back=_parse_int(_read(env, "START_MONTHS_BACK"), key="START_MONTHS_BACK", minimum=0),
            filter_channel=_read(env, "FILTER_CHANNEL"),
            filter_channel_type=_read(env, "FILTER_CHANNEL_TYPE"),
            page_size=_parse_int(_read(env, "PAGE_SIZE"), key="PAGE_SIZE", minimum=1),
            reference_root=_read(env, "REFERENCE_ROOT") or DEFAULTS["REFERENCE_ROOT"],
            reports_dir=_read(env, "REPORTS_DIR") or DEFAULTS["REPORTS_DIR"],
        )

    @classmethod
    def load_from_env(cls) -> Config:
        # OS env overrides values from .env
        load_dotenv(PROJECT_ROOT / ".env")
        if os.getenv("DEBUG_CONFIG") == "1":
            print("[CONFIG] Loaded .env from:", PROJECT_ROOT / ".env")
        return cls.from_mapping(os.environ)


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.load_from_env()
