"""Lazily started Playwright browser context shared by every workspace."""
import asyncio
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from rpa_agent.config import BrowserConfig
from rpa_agent.exceptions import BrowserNotStartedError
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.runtime.context")


class BrowserContextManager:
    """Owns the Playwright driver, the browser and one BrowserContext.

    The browser is launched on the first `get_context()` call and reused
    afterwards. When `user_data_dir` is configured a persistent context is
    launched instead of a throwaway one.
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()
        self._closed = False

    async def get_context(self) -> BrowserContext:
        """Return the shared context, launching the browser if needed."""
        if self._context is not None:
            return self._context
        async with self._lock:
            if self._context is None:
                if self._closed:
                    raise BrowserNotStartedError("browser context manager already closed")
                self._context = await self._launch()
        return self._context

    async def _launch(self) -> BrowserContext:
        self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, self.config.browser_type)
        launch_options = {"headless": self.config.headless, "args": list(self.config.launch_args)}
        if self.config.channel:
            launch_options["channel"] = self.config.channel
        viewport = {"width": self.config.viewport.width, "height": self.config.viewport.height}

        try:
            if self.config.user_data_dir:
                context = await browser_type.launch_persistent_context(
                    user_data_dir=self.config.user_data_dir,
                    viewport=viewport,
                    **launch_options,
                )
                self._browser = context.browser
            else:
                self._browser = await browser_type.launch(**launch_options)
                context = await self._browser.new_context(viewport=viewport)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

        context.on("close", self._handle_context_close)

        logger.info(
            f"Browser {self.config.browser_type} launched",
            emoji_key="browser",
            headless=self.config.headless,
            persistent=bool(self.config.user_data_dir),
        )
        return context

    def _handle_context_close(self, _context: BrowserContext) -> None:
        self._context = None

    async def new_page(self) -> Page:
        context = await self.get_context()
        return await context.new_page()

    async def close(self) -> None:
        """Close the context, the browser and the driver. Safe to call twice."""
        self._closed = True
        context, browser, playwright = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = None
        if context is not None:
            await context.close()
        if browser is not None and browser.is_connected():
            await browser.close()
        if playwright is not None:
            await playwright.stop()
        if context is not None or playwright is not None:
            logger.info("Browser closed", emoji_key="browser")
