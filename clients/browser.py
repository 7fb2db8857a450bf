"""Playwright-driven browser used by both the crawler and the recorder."""

from __future__ import annotations

from typing import Any, Callable, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import settings


async def goto_with_fallback(page: Page, url: str, timeout_ms: Optional[int] = None) -> None:
    """
    Navigate to ``url`` waiting for network idle, falling back once to a
    DOM-content-loaded wait when the strict wait times out.

    Raises the Playwright error of the fallback attempt if that also fails.
    """
    timeout_ms = timeout_ms or settings.navigation_timeout_ms
    try:
        await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
    except PlaywrightTimeoutError:
        logger.debug(f"Network idle timeout for {url}, retrying with domcontentloaded")
        await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)


class BrowserAgent:
    """
    A single Chromium browser with one context and one page.

    Use as an async context manager, or call ``launch()`` / ``close()``
    explicitly when the lifetime spans several requests (recording sessions).
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        slow_mo_ms: Optional[int] = None,
    ) -> None:
        self._headless = settings.headless if headless is None else headless
        self._slow_mo_ms = settings.slow_mo_ms if slow_mo_ms is None else slow_mo_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "BrowserAgent":
        await self.launch()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def page(self) -> Page:
        assert self._page is not None, "Browser not launched."
        return self._page

    async def launch(self, url: Optional[str] = None) -> Page:
        """Start Chromium and open a page, optionally navigating to ``url``."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._headless,
            slow_mo=self._slow_mo_ms,
            args=["--start-maximized"],
        )
        self._context = await self._browser.new_context(
            viewport={"width": settings.viewport_width, "height": settings.viewport_height},
        )
        self._page = await self._context.new_page()
        if url:
            await self._page.goto(url, wait_until="domcontentloaded")
        logger.debug(f"Browser launched (headless={self._headless})")
        return self._page

    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def on_disconnect(self, callback: Callable[[], Any]) -> None:
        """Invoke ``callback`` when the browser goes away (e.g. the user closes the window)."""
        assert self._browser is not None, "Browser not launched."
        self._browser.on("disconnected", lambda _browser: callback())

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                # Already gone when the user closed the window.
                logger.debug(f"Error closing browser: {exc}")
        if self._playwright is not None:
            await self._playwright.stop()
        self._browser = None
        self._context = None
        self._page = None
        self._playwright = None
