"""
Playwright browser driver implementation.
"""

import asyncio
import random
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    async_playwright,
)

from browserflow.config.settings import Settings, get_settings
from browserflow.error_handling.exceptions import BrowserError
from browserflow.monitoring.logger import get_logger, log_performance_metric

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--hide-scrollbars",
    "--mute-audio",
]

HIDE_WEBDRIVER_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""

# Forces every shadow root open so snapshots can flatten it.
OPEN_SHADOW_ROOTS_SCRIPT = """
(() => {
    if (!Element.prototype.attachShadow) return;
    const original = Element.prototype.attachShadow;
    Element.prototype.attachShadow = function (init) {
        const options = init ? { ...init, mode: 'open' } : { mode: 'open' };
        return original.call(this, options);
    };
})();
"""


class PlaywrightDriver:
    """Owns the Playwright browser, context and page of one run."""

    def __init__(
        self,
        headless: Optional[bool] = None,
        viewport_width: Optional[int] = None,
        viewport_height: Optional[int] = None,
        timeout: Optional[int] = None,
        include_shadow_dom: Optional[bool] = None,
        stateless: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the Playwright driver.

        Args:
            headless: Run browser in headless mode
            viewport_width: Browser viewport width
            viewport_height: Browser viewport height
            timeout: Default timeout in milliseconds
            include_shadow_dom: Force shadow roots open for snapshots
            stateless: Skip loading and saving storage state
            settings: Settings instance; global settings if omitted
        """
        self.settings = settings or get_settings()
        self.headless = headless if headless is not None else self.settings.browser_headless
        self.viewport_width = viewport_width or self.settings.browser_viewport_width
        self.viewport_height = viewport_height or self.settings.browser_viewport_height
        self.timeout = timeout or self.settings.browser_timeout
        self.include_shadow_dom = (
            include_shadow_dom if include_shadow_dom is not None else self.settings.include_shadow_dom
        )
        self.stateless = stateless if stateless is not None else self.settings.stateless_execution
        self.storage_state_file: Path = self.settings.storage_state_file

        self.logger = get_logger("browser.driver")
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    def _viewport(self) -> Dict[str, int]:
        if self.settings.rotate_viewport:
            return {
                "width": 1280 + random.randint(0, 639),
                "height": 720 + random.randint(0, 359),
            }
        return {"width": self.viewport_width, "height": self.viewport_height}

    def _context_options(self) -> Dict[str, Any]:
        viewport = self._viewport()
        options: Dict[str, Any] = {
            "viewport": viewport,
            "screen": viewport,
            "device_scale_factor": 1,
            "locale": "en-US",
        }
        if not self.stateless and self.storage_state_file.is_file():
            options["storage_state"] = str(self.storage_state_file)
        return options

    async def start(self) -> None:
        """
        Start the browser and create a page.

        Raises:
            BrowserError: If the browser or its context cannot be created
        """
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self._browser is None:
                self.logger.info(
                    "Starting browser",
                    extra={
                        "headless": self.headless,
                        "channel": self.settings.browser_channel,
                    },
                )
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    channel=self.settings.browser_channel,
                    args=LAUNCH_ARGS,
                )

            if self._context is None:
                self._context = await self._browser.new_context(**self._context_options())
                self._context.set_default_timeout(self.timeout)
                await self._context.add_init_script(HIDE_WEBDRIVER_SCRIPT)
                if self.include_shadow_dom:
                    await self._context.add_init_script(OPEN_SHADOW_ROOTS_SCRIPT)

            if self._page is None:
                self._page = await self._context.new_page()
        except PlaywrightError as exc:
            await self.stop(persist_state=False)
            raise BrowserError(f"Failed to start browser: {exc}", action="start", cause=exc) from exc

    async def stop(self, persist_state: bool = True) -> None:
        """
        Stop the browser and cleanup resources.

        Args:
            persist_state: Save cookies/localStorage first unless stateless
        """
        if persist_state and not self.stateless:
            await self.save_storage_state()

        for resource in (self._page, self._context, self._browser):
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as exc:
                self.logger.debug(f"Ignoring close failure: {exc}")
        self._page = None
        self._context = None
        self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        self.logger.info("Browser stopped")

    async def save_storage_state(self) -> None:
        """Persist the context's storage state; failures are logged only."""
        if self._context is None:
            return
        try:
            self.storage_state_file.parent.mkdir(parents=True, exist_ok=True)
            await self._context.storage_state(path=str(self.storage_state_file))
        except (PlaywrightError, OSError) as exc:
            self.logger.warning(f"Could not save storage state: {exc}")

    async def navigate(self, url: str, timeout: Optional[int] = None) -> str:
        """
        Navigate to a URL and wait for DOMContentLoaded.

        Returns:
            The URL after navigation and redirects
        """
        if not self._page:
            await self.start()

        self.logger.info("Navigating to URL", extra={"url": url})
        start_time = asyncio.get_running_loop().time()

        await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout or self.timeout)

        elapsed_ms = (asyncio.get_running_loop().time() - start_time) * 1000
        log_performance_metric("page_navigation", elapsed_ms, context={"url": url})
        return self._page.url

    @property
    def url(self) -> str:
        """Current page URL, empty before a page exists."""
        return self._page.url if self._page else ""

    @property
    def page(self) -> Optional[Page]:
        """Get the current page object."""
        return self._page

    async def __aenter__(self) -> "PlaywrightDriver":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
