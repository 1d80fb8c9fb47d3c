from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from playwright.async_api import Browser, BrowserContext

from order_audit.common.json_logger import JsonLogger, log_event
from order_audit.config import Config


async def launch_browser(*, playwright: Any, config: Config, logger: JsonLogger) -> Browser:
    launch_kwargs: Dict[str, Any] = {"headless": config.headless}
    if config.slowmo_ms:
        launch_kwargs["slow_mo"] = config.slowmo_ms
    log_event(
        logger=logger,
        phase="init",
        message="Launching Playwright with bundled Chromium",
        headless=config.headless,
        slowmo_ms=config.slowmo_ms,
    )
    return await playwright.chromium.launch(**launch_kwargs)


async def new_console_context(*, browser: Browser, config: Config, logger: JsonLogger) -> BrowserContext:
    """Open a context, reusing the saved storage state when there is one."""

    storage_state_path = Path(config.storage_state_path)
    storage_state_exists = storage_state_path.exists()
    context = await browser.new_context(
        storage_state=str(storage_state_path) if storage_state_exists else None,
        viewport={"width": config.viewport_width, "height": config.viewport_height},
    )
    context.set_default_timeout(config.nav_timeout_ms)
    context.set_default_navigation_timeout(config.nav_timeout_ms)
    log_event(
        logger=logger,
        phase="login",
        message="Reusing existing storage state" if storage_state_exists else "No storage state found; login required",
        storage_state=str(storage_state_path),
    )
    return context


async def save_storage_state(*, context: BrowserContext, config: Config, logger: JsonLogger) -> None:
    storage_state_path = Path(config.storage_state_path)
    storage_state_path.parent.mkdir(parents=True, exist_ok=True)
    await context.storage_state(path=str(storage_state_path))
    log_event(logger=logger, phase="login", message="Saved storage state", storage_state=str(storage_state_path))
