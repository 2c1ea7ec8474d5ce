"""
Playwright-backed UI driver.

Provides a UIDriver over a Playwright page and a provider that launches
headless Chromium for the duration of one test case.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from playwright.async_api import async_playwright, Page

from ..core.config import Config
from ..core.exceptions import DriverSetupError
from ..core.logging_config import get_logger
from .protocols import ElementHandle

DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class PlaywrightDriver:
    """UIDriver implementation wrapping a Playwright page."""

    def __init__(self, page: Page, browser_version: str):
        self.page = page
        self._browser_version = browser_version

    async def navigate(self, url: str, timeout_ms: int) -> None:
        await self.page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")

    async def click(self, selector: str, timeout_ms: int) -> None:
        await self.page.click(selector, timeout=timeout_ms)

    async def fill(self, selector: str, value: str, timeout_ms: int) -> None:
        await self.page.fill(selector, value, timeout=timeout_ms)

    async def wait_for_selector(
        self, selector: str, timeout_ms: int, state: str = "attached"
    ) -> Optional[ElementHandle]:
        # Playwright element handles already expose is_visible/text_content/input_value
        return await self.page.wait_for_selector(selector, timeout=timeout_ms, state=state)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(type="png", full_page=True)

    async def version(self) -> str:
        return self._browser_version


class PlaywrightDriverProvider:
    """
    Launches a browser session per test case.

    session() is an async context manager; the page, context, browser and
    Playwright instance are closed on every exit path.
    """

    def __init__(
        self,
        headless: bool = True,
        default_timeout_ms: int = 30000,
        navigation_timeout_ms: int = 30000,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        logger: Optional[logging.Logger] = None,
    ):
        self.headless = headless
        self.default_timeout_ms = default_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.viewport = viewport or dict(DEFAULT_VIEWPORT)
        self.user_agent = user_agent
        self.logger = logger or get_logger(__name__)

    @classmethod
    def from_config(cls, config: Config) -> "PlaywrightDriverProvider":
        return cls(
            headless=config.get_effective_headless_mode(),
            default_timeout_ms=config.navigation_timeout_ms,
            navigation_timeout_ms=config.navigation_timeout_ms,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PlaywrightDriver]:
        playwright = browser = context = page = None
        try:
            try:
                self.logger.info("Initializing browser session")
                playwright = await async_playwright().start()
                browser = await playwright.chromium.launch(headless=self.headless)
                context = await browser.new_context(
                    viewport=self.viewport,
                    user_agent=self.user_agent,
                    ignore_https_errors=True,
                )
                page = await context.new_page()
                page.set_default_timeout(self.default_timeout_ms)
                page.set_default_navigation_timeout(self.navigation_timeout_ms)
            except Exception as e:
                self.logger.error(f"Failed to initialize browser: {e}")
                raise DriverSetupError(
                    f"Browser initialization failed: {e}", browser="chromium"
                ) from e

            self.logger.info(
                "Browser session ready",
                extra={"metadata": {"browser_version": browser.version}},
            )
            yield PlaywrightDriver(page, browser.version)
        finally:
            await self._cleanup(playwright, browser, context, page)

    async def _cleanup(self, playwright, browser, context, page) -> None:
        """Close everything that was opened, logging but not raising on errors."""
        steps = [
            ("page", page, lambda: page.close()),
            ("context", context, lambda: context.close()),
            ("browser", browser, lambda: browser.close()),
            ("playwright", playwright, lambda: playwright.stop()),
        ]
        for name, resource, close in steps:
            if resource is None:
                continue
            try:
                await close()
            except Exception as e:
                self.logger.warning(f"Error closing {name} during cleanup: {e}")
        self.logger.debug("Browser cleanup completed")
