"""Page driver capability and its Playwright adapter.

The pipeline only talks to ``PageDriver``; ``PlaywrightDriver`` is the one
production implementation, tests use in-memory fakes.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional, Protocol, Tuple

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from .errors import NavigationError, NavigationTimeout
from .settings import ScrapeSettings, SiteProfile

LOGGER = logging.getLogger(__name__)

# Some storefronts push "install the app" when they see an automation flag.
_MASK_WEBDRIVER = "Object.defineProperty(navigator, 'webdriver', { get: () => false });"


class PageDriver(Protocol):
    """Minimal capability the pipeline needs from an automation engine."""

    async def navigate(self, url: str, *, wait_until: str = "domcontentloaded", timeout_ms: int = 60_000) -> None:
        """Load ``url``; raise ``NavigationTimeout``/``NavigationError`` on failure."""
        ...

    async def current_url(self) -> str:
        """URL after any redirects."""
        ...

    async def query_selector_text(self, selector: str) -> Optional[str]:
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def settle(self, timeout_ms: int) -> None:
        """Wait for network quiet; returns silently on timeout."""
        ...

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        ...

    async def click(self, selector: str, timeout_ms: int) -> bool:
        ...

    async def close(self) -> None:
        ...


class PlaywrightDriver:
    """``PageDriver`` over a Playwright async ``Page``."""

    def __init__(self, page: Page) -> None:
        self.page = page

    async def navigate(self, url: str, *, wait_until: str = "domcontentloaded", timeout_ms: int = 60_000) -> None:
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"timeout after {timeout_ms}ms loading {url}") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"{url}: {exc.message}") from exc

    async def current_url(self) -> str:
        return self.page.url

    async def query_selector_text(self, selector: str) -> Optional[str]:
        element = await self.page.query_selector(selector)
        if element is None:
            return None
        text = await element.text_content()
        return text.strip() if text else text

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def settle(self, timeout_ms: int) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            LOGGER.debug("Network not idle after %dms on %s", timeout_ms, self.page.url)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self.page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def click(self, selector: str, timeout_ms: int) -> bool:
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return False
            await element.click(timeout=timeout_ms)
            return True
        except PlaywrightError as exc:
            LOGGER.debug("Click on %s failed: %s", selector, exc.message)
            return False

    async def close(self) -> None:
        await self.page.context.close()


class BrowserSession:
    """Owns one browser; hands out an isolated context+page per task."""

    def __init__(self, scrape: ScrapeSettings, site: SiteProfile) -> None:
        self.scrape = scrape
        self.site = site
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "BrowserSession":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()

    async def setup(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.scrape.headless)
        LOGGER.info("Browser started (headless=%s)", self.scrape.headless)

    async def cleanup(self) -> None:
        if self._browser:
            await self._browser.close()
            self._browser = None
            LOGGER.info("Browser closed")
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _new_context(self) -> BrowserContext:
        if not self._browser:
            raise RuntimeError("Browser not initialized. Call setup() first")
        width, height = self.site.viewport
        context = await self._browser.new_context(
            user_agent=self.site.user_agent,
            locale=self.site.locale,
            viewport={"width": width, "height": height},
            extra_http_headers={"accept-language": f"{self.site.locale},en;q=0.9"},
        )
        await context.add_init_script(_MASK_WEBDRIVER)
        return context

    @asynccontextmanager
    async def page_context(self) -> AsyncIterator[PlaywrightDriver]:
        """One context and page per task, released on every exit path."""
        context = await self._new_context()
        try:
            page = await context.new_page()
            yield PlaywrightDriver(page)
        finally:
            await context.close()


async def navigate_with_retry(
    driver: PageDriver,
    url: str,
    *,
    timeout_ms: int,
    attempts: int = 2,
    wait: Tuple[float, float] = (1.0, 3.0),
    wait_until: str = "domcontentloaded",
) -> None:
    """Navigate, retrying transient navigation failures before giving up."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random(*wait),
        retry=retry_if_exception_type(NavigationError),
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            await driver.navigate(url, wait_until=wait_until, timeout_ms=timeout_ms)


async def dismiss_dialogs(driver: PageDriver, selectors: Iterable[str], timeout_ms: int) -> int:
    """Click away app-install prompts; each attempt is bounded by ``timeout_ms``."""
    dismissed = 0
    for selector in selectors:
        if await driver.click(selector, timeout_ms):
            LOGGER.debug("Dismissed dialog via %s", selector)
            dismissed += 1
    return dismissed
