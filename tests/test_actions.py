"""
Tests for the Playwright leaf-action executor with a mocked page.
"""

from unittest.mock import ANY, AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from browserflow.browser.actions import (
    COLLECT_ITEMS_SCRIPT,
    EVAL_SCRIPT,
    EXPRESSION_SCRIPT,
    SMOOTH_SCROLL_SCRIPT,
    PlaywrightActionExecutor,
)
from browserflow.core.interfaces import ActionContext
from browserflow.core.types import StealthOptions, parse_actions
from browserflow.engine.variables import RuntimeVars
from browserflow.error_handling.exceptions import (
    ActionError,
    ConditionError,
    SubtaskError,
    UrlNotAllowedError,
)
from browserflow.orchestration.subtask import SubtaskClient
from browserflow.security.url_guard import PRIVATE_NETWORK_MESSAGE


def action(**fields):
    return parse_actions([fields])[0]


@pytest.fixture
def page():
    """Mocked Playwright page."""
    page = MagicMock()
    page.url = "https://shop.test/"
    page.viewport_size = {"width": 1280, "height": 720}
    for name in (
        "goto", "click", "fill", "type", "focus", "wait_for_selector", "wait_for_timeout",
        "select_option", "evaluate", "eval_on_selector_all", "screenshot", "query_selector",
    ):
        setattr(page, name, AsyncMock())
    page.query_selector.return_value = None
    page.mouse = MagicMock(click=AsyncMock(), move=AsyncMock())
    page.keyboard = MagicMock(type=AsyncMock(), press=AsyncMock(), insert_text=AsyncMock())
    return page


@pytest.fixture
def logs():
    return []


@pytest.fixture
def context(logs):
    """Action context with a few variables."""
    return ActionContext(
        run_id="run-1",
        vars=RuntimeVars({"host": "shop.test", "query": "shoes", "a": [1], "b": [2]}),
        log=logs.append,
        step=0,
    )


@pytest.fixture
def executor(page, settings):
    """Executor without stealth behaviour."""
    return PlaywrightActionExecutor(page, run_id="run-1", settings=settings)


class TestNavigation:
    """Test cases for navigate actions."""

    @pytest.mark.asyncio
    async def test_navigate(self, executor, page, context, logs, settings):
        """Test the resolved URL is loaded."""
        settings.block_private_networks = False

        result = await executor.execute(
            action(type="navigate", value="https://{$host}/cart"), context
        )

        page.goto.assert_awaited_once_with("https://shop.test/cart", wait_until="domcontentloaded")
        assert result == "https://shop.test/"
        assert logs == ["Navigating to: https://shop.test/cart"]

    @pytest.mark.asyncio
    async def test_private_target_is_refused(self, executor, page, context):
        """Test private network targets never reach the browser."""
        with pytest.raises(UrlNotAllowedError, match=PRIVATE_NETWORK_MESSAGE):
            await executor.execute(action(type="goto", value="http://192.168.0.1/admin"), context)

        page.goto.assert_not_awaited()


class TestPointerActions:
    """Test cases for click and hover."""

    @pytest.mark.asyncio
    async def test_click_selector(self, executor, page, context, logs, settings):
        """Test a selector click waits for the element first."""
        result = await executor.execute(action(type="click", selector="#buy"), context)

        page.wait_for_selector.assert_awaited_once_with("#buy", timeout=settings.action_timeout)
        page.click.assert_awaited_once_with("#buy", delay=ANY)
        assert result is True
        assert logs == ["Clicking: #buy"]

    @pytest.mark.asyncio
    async def test_click_coordinates(self, executor, page, context):
        """Test 'x,y' targets click the viewport position."""
        await executor.execute(action(type="click", selector="100, 200.5"), context)

        page.mouse.click.assert_awaited_once_with(100.0, 200.5, delay=ANY)
        page.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_click_uses_action_timeout(self, executor, page, context):
        """Test a per-action timeout overrides the default."""
        await executor.execute(action(type="click", selector="#buy", timeout=750), context)

        page.wait_for_selector.assert_awaited_once_with("#buy", timeout=750)

    @pytest.mark.asyncio
    async def test_click_moves_to_element(self, executor, page, context):
        """Test the mouse travels to the element before clicking."""
        handle = MagicMock(bounding_box=AsyncMock(return_value={"x": 0, "y": 0, "width": 10, "height": 10}))
        page.query_selector.return_value = handle

        await executor.execute(action(type="click", selector="#buy"), context)

        assert page.mouse.move.await_count >= 8

    @pytest.mark.asyncio
    async def test_click_without_selector(self, executor, context):
        """Test a click needs a target."""
        with pytest.raises(ActionError, match="Missing selector for click action."):
            await executor.execute(action(type="click"), context)

    @pytest.mark.asyncio
    async def test_hover_coordinates(self, executor, page, context, logs):
        """Test hovering a position moves the mouse there."""
        await executor.execute(action(type="hover", selector="5,5"), context)

        assert page.mouse.move.await_count >= 8
        assert logs == ["Hovering: 5,5"]


class TestKeyboardActions:
    """Test cases for type and press."""

    @pytest.mark.asyncio
    async def test_type_replaces_content(self, executor, page, context, logs):
        """Test the default mode fills the field."""
        result = await executor.execute(
            action(type="type", selector="#q", value="{$query}"), context
        )

        page.fill.assert_awaited_once_with("#q", "shoes")
        assert result == "shoes"
        assert logs == ["Typing into #q: shoes"]

    @pytest.mark.asyncio
    async def test_type_appends(self, executor, page, context):
        """Test append mode types after the existing content."""
        await executor.execute(
            action(type="type", selector="#q", value="red", typeMode="append"), context
        )

        page.type.assert_awaited_once_with("#q", "red", delay=ANY)
        page.fill.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_type_without_selector(self, executor, page, context, logs):
        """Test typing into whatever has focus."""
        await executor.execute(action(type="fill", value="hello"), context)

        page.keyboard.type.assert_awaited_once_with("hello", delay=ANY)
        assert logs == ["Typing (global): hello"]

    @pytest.mark.asyncio
    async def test_type_at_coordinates(self, executor, page, context):
        """Test a coordinate target is clicked then typed into."""
        await executor.execute(action(type="type", selector="10,20", value="x"), context)

        page.mouse.click.assert_awaited_once_with(10.0, 20.0, delay=ANY)
        page.keyboard.type.assert_awaited_once_with("x", delay=ANY)

    @pytest.mark.asyncio
    async def test_human_typing(self, page, context, settings):
        """Test human typing clears the field and presses every key."""
        executor = PlaywrightActionExecutor(
            page, stealth=StealthOptions(human_typing=True), settings=settings
        )

        await executor.execute(action(type="type", selector="#q", value="abc"), context)

        page.fill.assert_awaited_once_with("#q", "")
        page.focus.assert_awaited_once_with("#q")
        pressed = [call.args[0] for call in page.keyboard.press.await_args_list]
        assert pressed == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_press(self, executor, page, context, logs):
        """Test a key press."""
        result = await executor.execute(action(type="press", key="Enter"), context)

        page.keyboard.press.assert_awaited_once_with("Enter", delay=ANY)
        assert result == "Enter"
        assert logs == ["Pressing key: Enter"]

    @pytest.mark.asyncio
    async def test_press_without_key(self, executor, context):
        """Test a press needs a key."""
        with pytest.raises(ActionError, match="Missing key for press action."):
            await executor.execute(action(type="press"), context)


class TestTimingActions:
    """Test cases for wait, select and scroll."""

    @pytest.mark.parametrize("value,expected", [("1.5", 1500), (None, 2000), ("soon", 2000)])
    @pytest.mark.asyncio
    async def test_wait(self, executor, page, context, logs, value, expected):
        """Test seconds are converted and invalid values fall back to 2s."""
        result = await executor.execute(action(type="wait", value=value), context)

        page.wait_for_timeout.assert_awaited_once_with(expected)
        assert result == expected
        assert logs == [f"Waiting: {expected}ms"]

    @pytest.mark.asyncio
    async def test_wait_with_idle_movements(self, page, context, logs, settings):
        """Test the cursor drifts while waiting."""
        executor = PlaywrightActionExecutor(
            page, stealth=StealthOptions(idle_movements=True), settings=settings
        )

        await executor.execute(action(type="wait", value="1"), context)

        page.wait_for_timeout.assert_any_await(1000)
        assert logs == ["Waiting: 1000ms", "Simulating cursor restlessness..."]

    @pytest.mark.asyncio
    async def test_select(self, executor, page, context, logs):
        """Test an option is selected by value."""
        await executor.execute(action(type="select", selector="#size", value="M"), context)

        page.select_option.assert_awaited_once_with("#size", "M")
        assert logs == ["Selecting M from #size"]

    @pytest.mark.asyncio
    async def test_scroll(self, executor, page, context, logs):
        """Test a smooth scroll of the requested distance and duration."""
        result = await executor.execute(action(type="scroll", value="300", key="800"), context)

        page.evaluate.assert_awaited_once_with(
            SMOOTH_SCROLL_SCRIPT, {"selector": None, "y": 300, "duration": 800}
        )
        assert result == 300
        assert logs == ["Scrolling page: 300px over 800ms..."]

    @pytest.mark.asyncio
    async def test_scroll_defaults(self, executor, page, context):
        """Test the default distance range and duration."""
        amount = await executor.execute(action(type="scroll", selector=".list"), context)

        assert 400 <= amount < 800
        payload = page.evaluate.await_args.args[1]
        assert payload["selector"] == ".list"
        assert payload["duration"] == 500

    @pytest.mark.asyncio
    async def test_overscroll(self, page, context, settings):
        """Test overscroll overshoots and settles on the target."""
        executor = PlaywrightActionExecutor(
            page, stealth=StealthOptions(overscroll=True), settings=settings
        )

        await executor.execute(action(type="scroll", value="500"), context)

        assert page.evaluate.await_args_list[1].args[1] == 500


class TestPageActions:
    """Test cases for screenshot and javascript."""

    @pytest.mark.asyncio
    async def test_screenshot(self, executor, page, context, logs, settings):
        """Test the image is saved under the captures directory."""
        result = await executor.execute(action(type="screenshot", label="he ro!"), context)

        assert result.startswith("/captures/run-1_agent_")
        assert result.endswith("_hero.png")
        saved_path = page.screenshot.await_args.kwargs["path"]
        assert saved_path.startswith(str(settings.captures_dir))
        assert logs == ["Capturing screenshot...", f"Screenshot saved: {result}"]

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_not_fatal(self, executor, page, context, logs):
        """Test a failing capture returns nothing."""
        page.screenshot.side_effect = RuntimeError("page crashed")

        result = await executor.execute(action(type="screenshot"), context)

        assert result is None
        assert logs[-1] == "Screenshot failed: page crashed"

    @pytest.mark.asyncio
    async def test_javascript(self, executor, page, context):
        """Test custom code is evaluated after resolution."""
        page.evaluate.return_value = 42

        result = await executor.execute(
            action(type="javascript", value="document.title = '{$query}'"), context
        )

        page.evaluate.assert_awaited_once_with(EVAL_SCRIPT, "document.title = 'shoes'")
        assert result == 42


class TestDataActions:
    """Test cases for csv, merge, set, stop and start."""

    @pytest.mark.asyncio
    async def test_csv_from_value(self, executor, context, logs):
        """Test CSV text is parsed into rows."""
        rows = await executor.execute(action(type="csv", value="a,b\n1,2"), context)

        assert rows == [{"a": "1", "b": "2"}]
        assert logs == ["Parsed 1 CSV rows."]

    @pytest.mark.asyncio
    async def test_csv_from_block_output(self, executor, context):
        """Test the previous output is used without a value."""
        context.vars.set_block_output("x\n1\n2")

        rows = await executor.execute(action(type="csv"), context)

        assert rows == [{"x": "1"}, {"x": "2"}]

    @pytest.mark.asyncio
    async def test_merge(self, executor, context, logs):
        """Test merged output is stored in the target variable."""
        merged = await executor.execute(
            action(type="merge", value="{$a}, b", varName="{$all}"), context
        )

        assert merged == [1, 2]
        assert context.vars.get("all") == [1, 2]
        assert logs == ["Merged 2 item(s)."]

    @pytest.mark.asyncio
    async def test_set(self, executor, context, logs):
        """Test values are parsed before they are stored."""
        result = await executor.execute(
            action(type="set", varName="filters", value='{"q": "{$query}"}'), context
        )

        assert result == {"q": "shoes"}
        assert context.vars.get("filters") == {"q": "shoes"}
        assert logs == ["Set variable filters"]

    @pytest.mark.asyncio
    async def test_set_without_name(self, executor, context):
        """Test a set without a variable does nothing."""
        assert await executor.execute(action(type="set", value="1"), context) is None

    @pytest.mark.asyncio
    async def test_stop(self, executor, context, logs):
        """Test stop reports its outcome."""
        assert await executor.execute(action(type="stop", value="error"), context) == "error"
        assert await executor.execute(action(type="stop"), context) == "success"
        assert logs == ["Stop task (error).", "Stop task (success)."]

    @pytest.mark.asyncio
    async def test_start(self, page, context, logs, settings):
        """Test a sub-task receives the current variables."""
        client = MagicMock(start=AsyncMock(return_value={"rows": 3}))
        executor = PlaywrightActionExecutor(page, settings=settings, subtask_client=client)

        result = await executor.execute(action(type="start", value="task-7"), context)

        assert result == {"rows": 3}
        client.start.assert_awaited_once_with("task-7", context.vars.snapshot())
        assert logs == ["Starting task: task-7"]

    @pytest.mark.asyncio
    async def test_start_without_task(self, executor, context):
        """Test a start needs a task id."""
        with pytest.raises(SubtaskError, match="Missing task id."):
            await executor.execute(action(type="start"), context)

    def test_subtask_client_is_created_lazily(self, executor, settings):
        """Test the default client uses the executor's settings."""
        client = executor.subtask_client

        assert isinstance(client, SubtaskClient)
        assert executor.subtask_client is client
        assert client.base_url == settings.internal_api_base_url.rstrip("/")


class TestExecutorInterface:
    """Test cases for the interpreter-facing hooks."""

    @pytest.mark.asyncio
    async def test_unsupported_action(self, executor, context):
        """Test block markers are not leaf actions."""
        with pytest.raises(ActionError, match="Unsupported action type: end"):
            await executor.execute(action(type="end"), context)

    @pytest.mark.asyncio
    async def test_evaluate_expression(self, executor, page):
        """Test expressions run in the page with vars and block output."""
        page.evaluate.return_value = 1

        assert await executor.evaluate_expression("vars.n > 1", {"n": 2}, "x") is True
        page.evaluate.assert_awaited_once_with(
            EXPRESSION_SCRIPT, {"expression": "vars.n > 1", "vars": {"n": 2}, "blockOutput": "x"}
        )

    @pytest.mark.asyncio
    async def test_evaluate_expression_error(self, executor, page):
        """Test page errors surface as condition errors."""
        page.evaluate.side_effect = PlaywrightError("SyntaxError: Unexpected token")

        with pytest.raises(ConditionError) as exc_info:
            await executor.evaluate_expression("vars.n >", {}, None)

        assert exc_info.value.expression == "vars.n >"

    @pytest.mark.asyncio
    async def test_collect_items(self, executor, page):
        """Test elements are collected as text and html."""
        page.eval_on_selector_all.return_value = [{"text": "a", "html": "a"}]

        assert await executor.collect_items(".row") == [{"text": "a", "html": "a"}]
        page.eval_on_selector_all.assert_awaited_once_with(".row", COLLECT_ITEMS_SCRIPT)
