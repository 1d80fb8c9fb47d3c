"""Narrow interfaces over the remote orders console plus their Playwright implementations.

The extraction core only talks to ``SessionProvider``, ``ConsoleSession``,
``FilterConfigurator``, ``ListSurface`` and ``DetailSurface``; tests drive it
with in-memory fakes.
"""
from __future__ import annotations

import contextlib
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from playwright.async_api import Browser, BrowserContext, Locator, Page, TimeoutError, async_playwright

from order_audit.common.date_utils import YearMonth
from order_audit.common.json_logger import JsonLogger, log_event
from order_audit.config import Config
from order_audit.errors import AuthenticationError, ExtractionError
from order_audit.orders_sync.browser import launch_browser, new_console_context, save_storage_state
from order_audit.orders_sync.snapshot import SNAPSHOT_SCRIPT, DetailSnapshot

GRID_SELECTOR = '[role="grid"]'
ROW_SELECTOR = '[role="grid"] [role="rowgroup"] [role="row"]'
CELL_SELECTOR = '[role="gridcell"]'
EMPTY_SELECTOR = ".bp3-non-ideal-state, .ant-empty"
DETAIL_READY_SELECTOR = ".ant-descriptions"
LOGIN_TIMEOUT_MS = 30_000
PAGE_TURN_TIMEOUT_MS = 15_000

FIRST_ROW_TEXT_SCRIPT = "(selector) => { const row = document.querySelector(selector); return row ? row.innerText : null; }"
PAGE_CHANGED_SCRIPT = """([selector, before]) => {
  const row = document.querySelector(selector);
  return !row || row.innerText !== before;
}"""

T = TypeVar("T")


@dataclass(frozen=True)
class ListRow:
    """Raw cell texts of one grid row; ``error`` is set when the row could not be read."""

    index: int
    cells: List[str] = field(default_factory=list)
    link_text: str = ""
    href: str = ""
    error: str | None = None


class ListSurface(Protocol):
    async def read_rows(self) -> List[ListRow]:
        ...

    async def next_page(self) -> bool:
        """Advance to the next page; ``False`` when there is no enabled continuation."""
        ...


class DetailSurface(Protocol):
    async def snapshot(self, href: str) -> DetailSnapshot:
        ...

    async def close(self) -> None:
        ...


class ConsoleSession(Protocol):
    async def navigate(self, url: str) -> None:
        ...

    def list_surface(self) -> ListSurface:
        ...

    def detail_surface(self) -> DetailSurface:
        ...


class SessionProvider(Protocol):
    async def authenticate(self) -> ConsoleSession:
        ...

    async def close(self) -> None:
        ...


class FilterConfigurator(Protocol):
    async def apply(self, session: ConsoleSession, month: YearMonth) -> None:
        ...


async def within_session(provider: SessionProvider, fn: Callable[[ConsoleSession], Awaitable[T]]) -> T:
    try:
        session = await provider.authenticate()
        return await fn(session)
    finally:
        await provider.close()


def _norm(value: str | None) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


class UrlFilterConfigurator:
    """Apply channel, page-size and date-range filters through list URL query parameters."""

    def __init__(self, *, config: Config, logger: JsonLogger) -> None:
        self.config = config
        self.logger = logger

    def build_url(self, month: YearMonth) -> str:
        parts = urlsplit(self.config.console_base_url)
        query = dict(parse_qsl(parts.query))
        if self.config.filter_channel_type:
            query["channel_type"] = self.config.filter_channel_type
        if self.config.filter_channel:
            query["channel"] = self.config.filter_channel
        query["page_size"] = str(self.config.page_size)
        query["created_from"] = month.first_day.isoformat()
        query["created_to"] = month.last_day.isoformat()
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    async def apply(self, session: ConsoleSession, month: YearMonth) -> None:
        url = self.build_url(month)
        log_event(logger=self.logger, phase="filters", message="Applying list filters", month=str(month), url=url)
        await session.navigate(url)


class PlaywrightListSurface:
    def __init__(self, *, page: Page, base_url: str, logger: JsonLogger) -> None:
        self.page = page
        self.base_url = base_url
        self.logger = logger

    async def _first_visible(self, candidates: List[Locator]) -> Optional[Locator]:
        for candidate in candidates:
            with contextlib.suppress(Exception):
                if await candidate.count() and await candidate.is_visible():
                    return candidate
        return None

    async def read_rows(self) -> List[ListRow]:
        rows = self.page.locator(ROW_SELECTOR)
        count = await rows.count()
        result: List[ListRow] = []
        for idx in range(count):
            row = rows.nth(idx)
            try:
                cells = row.locator(CELL_SELECTOR)
                cell_count = await cells.count()
                texts = [_norm(await cells.nth(cell_idx).inner_text()) for cell_idx in range(cell_count)]
                link = await self._first_visible(
                    [
                        cells.nth(0).locator("a").first,
                        row.locator('a[href*="/orders"]').first,
                        row.get_by_role("link").first,
                    ]
                )
                link_text = _norm(await link.text_content()) if link else ""
                href = (await link.get_attribute("href") or "") if link else ""
                result.append(
                    ListRow(
                        index=idx,
                        cells=texts,
                        link_text=link_text,
                        href=urljoin(self.base_url, href) if href else "",
                    )
                )
            except Exception as exc:
                result.append(ListRow(index=idx, error=str(exc)))
        return result

    async def next_page(self) -> bool:
        button = await self._first_visible(
            [
                self.page.get_by_role("button", name=re.compile(r"Next|→")).first,
                self.page.locator('button[aria-label*="Next"]').first,
                self.page.locator('[data-testid*="next"]').first,
            ]
        )
        if button is None or not await button.is_enabled():
            return False
        before = await self.page.evaluate(FIRST_ROW_TEXT_SCRIPT, ROW_SELECTOR)
        await button.click()
        if before is not None:
            try:
                await self.page.wait_for_function(PAGE_CHANGED_SCRIPT, arg=[ROW_SELECTOR, before], timeout=PAGE_TURN_TIMEOUT_MS)
            except TimeoutError as exc:
                raise ExtractionError("Grid rows did not change after clicking Next") from exc
        with contextlib.suppress(TimeoutError):
            await self.page.wait_for_selector(f"{ROW_SELECTOR}, {EMPTY_SELECTOR}", timeout=PAGE_TURN_TIMEOUT_MS)
        return True


class PlaywrightDetailSurface:
    """Loads order detail pages in one auxiliary page, recreated once if it dies."""

    def __init__(self, *, context: BrowserContext, config: Config, logger: JsonLogger) -> None:
        self.context = context
        self.config = config
        self.logger = logger
        self.page: Page | None = None

    async def _ensure_page(self) -> Page:
        if self.page is None or self.page.is_closed():
            self.page = await self.context.new_page()
        return self.page

    async def snapshot(self, href: str) -> DetailSnapshot:
        page = await self._ensure_page()
        try:
            await page.goto(href, wait_until="domcontentloaded")
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="line_items",
                status="debug",
                message="Detail page navigation failed; recreating page",
                href=href,
                error=str(exc),
            )
            await self.close()
            page = await self._ensure_page()
            await page.goto(href, wait_until="domcontentloaded")
        with contextlib.suppress(TimeoutError):
            await page.wait_for_selector(DETAIL_READY_SELECTOR, timeout=10_000)
        payload = await page.evaluate(SNAPSHOT_SCRIPT)
        return DetailSnapshot.from_payload(payload)

    async def close(self) -> None:
        if self.page is not None:
            with contextlib.suppress(Exception):
                await self.page.close()
        self.page = None


class PlaywrightConsoleSession:
    def __init__(self, *, context: BrowserContext, page: Page, config: Config, logger: JsonLogger) -> None:
        self.context = context
        self.page = page
        self.config = config
        self.logger = logger

    async def navigate(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded")
        with contextlib.suppress(TimeoutError):
            await self.page.wait_for_selector(f"{ROW_SELECTOR}, {EMPTY_SELECTOR}", timeout=15_000)

    def list_surface(self) -> ListSurface:
        return PlaywrightListSurface(page=self.page, base_url=self.config.console_base_url, logger=self.logger)

    def detail_surface(self) -> DetailSurface:
        return PlaywrightDetailSurface(context=self.context, config=self.config, logger=self.logger)


class PlaywrightSessionProvider:
    """Reuse the saved storage state; fall back to a scripted login when the grid does not appear."""

    def __init__(self, *, config: Config, logger: JsonLogger) -> None:
        self.config = config
        self.logger = logger
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    async def authenticate(self) -> ConsoleSession:
        if not self.config.console_base_url:
            raise AuthenticationError("CONSOLE_BASE_URL is not configured")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await launch_browser(playwright=self._playwright, config=self.config, logger=self.logger)
            self._context = await new_console_context(browser=self._browser, config=self.config, logger=self.logger)
            page = await self._context.new_page()
            await page.goto(self.config.console_base_url, wait_until="domcontentloaded")
        except Exception as exc:
            raise AuthenticationError(f"Console unreachable: {exc}") from exc
        if await self._grid_ready(page, timeout_ms=10_000):
            log_event(logger=self.logger, phase="login", message="Using existing session from storage state")
            return PlaywrightConsoleSession(context=self._context, page=page, config=self.config, logger=self.logger)

        log_event(logger=self.logger, phase="login", status="warn", message="Session expired or invalid; logging in")
        await self._perform_login(page)
        if not await self._grid_ready(page, timeout_ms=LOGIN_TIMEOUT_MS):
            raise AuthenticationError("Orders grid did not appear after login")
        await save_storage_state(context=self._context, config=self.config, logger=self.logger)
        return PlaywrightConsoleSession(context=self._context, page=page, config=self.config, logger=self.logger)

    @staticmethod
    async def _grid_ready(page: Page, *, timeout_ms: int) -> bool:
        try:
            await page.wait_for_selector(GRID_SELECTOR, timeout=timeout_ms)
        except TimeoutError:
            return False
        return True

    async def _perform_login(self, page: Page) -> None:
        if not self.config.console_username or not self.config.console_password:
            raise AuthenticationError("CONSOLE_USERNAME/CONSOLE_PASSWORD are required for login")
        try:
            await page.goto(self.config.console_base_url, wait_until="domcontentloaded")
            await page.get_by_role("link", name=re.compile(r"Login with my company email", re.I)).click()
            await page.get_by_role("textbox", name=re.compile(r"Enter your email", re.I)).fill(
                self.config.console_username
            )
            await page.get_by_role("button", name="Next").click()
            await page.get_by_role("textbox", name=re.compile(r"Enter the password", re.I)).fill(
                self.config.console_password
            )
            await page.get_by_role("button", name="Sign in").click()
        except Exception as exc:
            raise AuthenticationError(f"Login failed: {exc}") from exc
        try:
            await page.get_by_role("button", name="Yes").click(timeout=10_000)
        except TimeoutError:
            log_event(logger=self.logger, phase="login", status="debug", message="No stay-signed-in prompt")
        log_event(logger=self.logger, phase="login", message="Login submitted")

    async def close(self) -> None:
        for closer in (
            self._context.close if self._context else None,
            self._browser.close if self._browser else None,
            self._playwright.stop if self._playwright else None,
        ):
            if closer is None:
                continue
            with contextlib.suppress(Exception):
                await closer()
        self._context = None
        self._browser = None
        self._playwright = None
