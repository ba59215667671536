"""
Tests for end-to-end task execution with a fake browser session.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from browserflow.browser.snapshot import CLEAN_HTML_SCRIPT
from browserflow.core.types import ProgressEvent, ScriptResult, StopOutcome, TaskRequest
from browserflow.error_handling.exceptions import BrowserError, UrlNotAllowedError
from browserflow.orchestration.run_registry import RunRegistry
from browserflow.orchestration.task_runner import TaskRunner

SNAPSHOT = "<html><body><h1>Catalog</h1></body></html>"


class FakeDriver:
    """Stands in for PlaywrightDriver; records how it was built and used."""

    def __init__(self, page, **options):
        self.page = page
        self.options = options
        self.start = AsyncMock()
        self.stop = AsyncMock()
        self.navigate = AsyncMock(return_value=page.url)


@pytest.fixture
def page():
    """Mocked page returning a fixed snapshot."""
    page = MagicMock(url="https://shop.test/catalog")
    page.evaluate = AsyncMock(return_value=SNAPSHOT)
    page.wait_for_timeout = AsyncMock()
    page.screenshot = AsyncMock()
    return page


@pytest.fixture
def drivers():
    return []


@pytest.fixture
def sandbox():
    """Sandbox returning a fixed extraction result."""
    return MagicMock(run=AsyncMock(return_value=ScriptResult(result=[{"name": "Apple"}], logs=[])))


@pytest.fixture
def runner(settings, page, drivers, sandbox):
    """Runner wired to fakes."""
    settings.block_private_networks = False

    def factory(**options):
        driver = FakeDriver(page, **options)
        drivers.append(driver)
        return driver

    return TaskRunner(
        settings=settings,
        registry=RunRegistry(),
        sandbox=sandbox,
        subtask_client=MagicMock(),
        driver_factory=factory,
    )


def _request(**fields):
    payload = {
        "runId": "run-1",
        "url": "https://{$host}/catalog",
        "variables": {"host": "shop.test"},
        "actions": [{"type": "set", "varName": "title", "value": "Catalog"}],
        "extractionScript": "return '{$title}'",
    }
    payload.update(fields)
    return TaskRequest.model_validate(payload)


class TestTaskRunner:
    """Test cases for TaskRunner.run."""

    @pytest.mark.asyncio
    async def test_successful_run(self, runner, drivers, page, sandbox, settings):
        """Test the full pipeline from navigation to extraction."""
        result = await runner.run(_request())

        driver = drivers[0]
        assert driver.options == {"include_shadow_dom": True, "stateless": False, "settings": settings}
        driver.navigate.assert_awaited_once_with(
            "https://shop.test/catalog", timeout=settings.navigation_timeout
        )
        sandbox.run.assert_awaited_once_with(
            "return 'Catalog'", SNAPSHOT, "https://shop.test/catalog", True
        )
        page.evaluate.assert_any_await(CLEAN_HTML_SCRIPT, True)
        driver.stop.assert_awaited_once_with(persist_state=True)

        assert result.run_id == "run-1"
        assert result.final_url == "https://shop.test/catalog"
        assert result.html == SNAPSHOT
        assert result.data == [{"name": "Apple"}]
        assert result.logs == ["Set variable title"]
        assert result.variables["title"] == "Catalog"
        assert result.screenshot_url.startswith("/captures/run-1_agent_")
        assert result.stop_outcome == StopOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_csv_format(self, runner):
        """Test CSV extraction output is serialized."""
        result = await runner.run(_request(extractionFormat="CSV"))

        assert result.data == "name\nApple"

    @pytest.mark.asyncio
    async def test_console_output_when_no_result(self, runner, sandbox):
        """Test script logs become the data when nothing is returned."""
        sandbox.run.return_value = ScriptResult(result=None, logs=["one", "two"])

        result = await runner.run(_request())

        assert result.data == "one\ntwo"

    @pytest.mark.asyncio
    async def test_request_overrides(self, runner, drivers, page, sandbox):
        """Test per-request session options and the trailing wait."""
        await runner.run(_request(includeShadowDom=False, statelessExecution=True, wait=2))

        assert drivers[0].options["include_shadow_dom"] is False
        assert drivers[0].options["stateless"] is True
        page.wait_for_timeout.assert_any_await(2000)
        assert sandbox.run.await_args.args[3] is False
        drivers[0].stop.assert_awaited_once_with(persist_state=False)

    @pytest.mark.asyncio
    async def test_without_initial_url(self, runner, drivers):
        """Test a run may start on the blank page."""
        await runner.run(_request(url=None))

        drivers[0].navigate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_private_initial_url(self, runner, drivers, settings):
        """Test a private initial URL is refused before the browser starts."""
        settings.block_private_networks = True

        with pytest.raises(UrlNotAllowedError):
            await runner.run(_request(url="http://10.0.0.8/admin"))

        assert drivers == []

    @pytest.mark.asyncio
    async def test_navigation_failure_is_fatal(self, runner, drivers, sandbox):
        """Test the session is closed when the initial URL cannot be opened."""

        def factory(**options):
            driver = FakeDriver(MagicMock(url=""), **options)
            driver.navigate.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
            drivers.append(driver)
            return driver

        runner.driver_factory = factory

        with pytest.raises(BrowserError, match="ERR_NAME_NOT_RESOLVED"):
            await runner.run(_request())

        drivers[0].stop.assert_awaited_once()
        sandbox.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_not_fatal(self, runner, page):
        """Test a failing final screenshot leaves the result intact."""
        page.screenshot.side_effect = PlaywrightError("Target closed")

        result = await runner.run(_request())

        assert result.screenshot_url is None
        assert result.data == [{"name": "Apple"}]

    @pytest.mark.asyncio
    async def test_stop_action_outcome(self, runner):
        """Test the program's stop outcome is reported."""
        result = await runner.run(_request(actions=[{"type": "stop", "value": "error"}]))

        assert result.stop_outcome == StopOutcome.ERROR
        assert result.logs == ["Stop task (error)."]

    @pytest.mark.asyncio
    async def test_progress_is_published(self, runner):
        """Test listeners see the run's events and the run is cleaned up."""
        events = []
        runner.registry.subscribe(lambda run_id, event: events.append((run_id, event)))

        await runner.run(_request(actions=[{"type": "set", "id": "s1", "varName": "x", "value": "1"}]))

        assert [(run_id, event.action_id) for run_id, event in events] == [
            ("run-1", "s1"),
            ("run-1", "s1"),
        ]
        assert all(isinstance(event, ProgressEvent) for _, event in events)
        assert runner.registry.history("run-1") == []

    @pytest.mark.asyncio
    async def test_generated_run_id(self, runner):
        """Test runs without an id get one."""
        result = await runner.run(_request(runId=None))

        assert result.run_id.startswith("run_")
        assert result.run_id.endswith("_unknown")
