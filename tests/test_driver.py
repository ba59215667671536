"""
Tests for the Playwright driver with a mocked Playwright runtime.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError

from browserflow.browser.driver import (
    HIDE_WEBDRIVER_SCRIPT,
    LAUNCH_ARGS,
    OPEN_SHADOW_ROOTS_SCRIPT,
    PlaywrightDriver,
)
from browserflow.error_handling.exceptions import BrowserError


@pytest.fixture
def runtime():
    """Mocked playwright, browser, context and page."""
    page = MagicMock(url="https://shop.test/", goto=AsyncMock(), close=AsyncMock())
    context = MagicMock(
        add_init_script=AsyncMock(),
        new_page=AsyncMock(return_value=page),
        storage_state=AsyncMock(),
        close=AsyncMock(),
    )
    browser = MagicMock(new_context=AsyncMock(return_value=context), close=AsyncMock())
    playwright = MagicMock(stop=AsyncMock())
    playwright.chromium.launch = AsyncMock(return_value=browser)

    with patch("browserflow.browser.driver.async_playwright") as async_playwright:
        async_playwright.return_value.start = AsyncMock(return_value=playwright)
        yield MagicMock(playwright=playwright, browser=browser, context=context, page=page)


class TestStart:
    """Test cases for browser start-up."""

    @pytest.mark.asyncio
    async def test_start(self, runtime, settings):
        """Test launch options, context options and init scripts."""
        driver = PlaywrightDriver(settings=settings)

        await driver.start()

        runtime.playwright.chromium.launch.assert_awaited_once_with(
            headless=settings.browser_headless, channel=None, args=LAUNCH_ARGS
        )
        options = runtime.browser.new_context.await_args.kwargs
        assert options["viewport"] == {"width": 1366, "height": 768}
        assert options["locale"] == "en-US"
        assert "storage_state" not in options
        runtime.context.set_default_timeout.assert_called_once_with(settings.browser_timeout)
        scripts = [call.args[0] for call in runtime.context.add_init_script.await_args_list]
        assert scripts == [HIDE_WEBDRIVER_SCRIPT, OPEN_SHADOW_ROOTS_SCRIPT]
        assert driver.page is runtime.page
        assert driver.url == "https://shop.test/"

    @pytest.mark.asyncio
    async def test_without_shadow_dom(self, runtime, settings):
        """Test shadow roots are left alone when not snapshotted."""
        await PlaywrightDriver(include_shadow_dom=False, headless=False, settings=settings).start()

        runtime.context.add_init_script.assert_awaited_once_with(HIDE_WEBDRIVER_SCRIPT)
        assert runtime.playwright.chromium.launch.await_args.kwargs["headless"] is False

    @pytest.mark.asyncio
    async def test_loads_storage_state(self, runtime, settings):
        """Test saved storage state is restored unless stateless."""
        settings.storage_state_file.parent.mkdir(parents=True, exist_ok=True)
        settings.storage_state_file.write_text("{}")

        await PlaywrightDriver(settings=settings).start()
        await PlaywrightDriver(stateless=True, settings=settings).start()

        first, second = runtime.browser.new_context.await_args_list
        assert first.kwargs["storage_state"] == str(settings.storage_state_file)
        assert "storage_state" not in second.kwargs

    @pytest.mark.asyncio
    async def test_rotated_viewport(self, runtime, settings):
        """Test rotation picks a size within the desktop range."""
        settings.rotate_viewport = True

        await PlaywrightDriver(settings=settings).start()

        viewport = runtime.browser.new_context.await_args.kwargs["viewport"]
        assert 1280 <= viewport["width"] < 1920
        assert 720 <= viewport["height"] < 1080

    @pytest.mark.asyncio
    async def test_launch_failure(self, runtime, settings):
        """Test launch errors are fatal and release the runtime."""
        runtime.playwright.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")

        with pytest.raises(BrowserError, match="Failed to start browser"):
            await PlaywrightDriver(settings=settings).start()

        runtime.playwright.stop.assert_awaited_once()


class TestSession:
    """Test cases for navigation and shutdown."""

    @pytest.mark.asyncio
    async def test_navigate(self, runtime, settings):
        """Test navigation waits for DOMContentLoaded."""
        async with PlaywrightDriver(settings=settings) as driver:
            final_url = await driver.navigate("https://shop.test/", timeout=5000)

        runtime.page.goto.assert_awaited_once_with(
            "https://shop.test/", wait_until="domcontentloaded", timeout=5000
        )
        assert final_url == "https://shop.test/"

    @pytest.mark.asyncio
    async def test_stop_persists_state(self, runtime, settings):
        """Test state is saved and every resource closed."""
        driver = PlaywrightDriver(settings=settings)
        await driver.start()

        await driver.stop()

        runtime.context.storage_state.assert_awaited_once_with(path=str(settings.storage_state_file))
        runtime.page.close.assert_awaited_once()
        runtime.context.close.assert_awaited_once()
        runtime.browser.close.assert_awaited_once()
        runtime.playwright.stop.assert_awaited_once()
        assert driver.page is None

    @pytest.mark.asyncio
    async def test_stop_without_persisting(self, runtime, settings):
        """Test stateless runs and explicit opt-outs skip the save."""
        stateless = PlaywrightDriver(stateless=True, settings=settings)
        await stateless.start()
        await stateless.stop()

        opted_out = PlaywrightDriver(settings=settings)
        await opted_out.start()
        await opted_out.stop(persist_state=False)

        runtime.context.storage_state.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_failures_are_ignored(self, runtime, settings):
        """Test a page that is already gone does not block shutdown."""
        runtime.page.close.side_effect = PlaywrightError("Target closed")
        driver = PlaywrightDriver(settings=settings)
        await driver.start()

        await driver.stop(persist_state=False)

        runtime.browser.close.assert_awaited_once()
