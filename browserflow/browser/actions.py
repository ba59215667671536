"""
Leaf-action executor driving a Playwright page.
"""

import asyncio
import random
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from browserflow.browser.human import (
    base_delay,
    human_type,
    idle_mouse,
    move_mouse_humanlike,
    overshoot_scroll,
    parse_coords,
)
from browserflow.config.settings import Settings, get_settings
from browserflow.core.interfaces import ActionContext, ActionExecutor
from browserflow.core.types import ActionBase, StealthOptions, StopOutcome, TypeMode
from browserflow.engine.csv_codec import parse_csv
from browserflow.engine.interpreter import parse_count
from browserflow.engine.variables import (
    collect_merge_sources,
    merge_sources,
    normalize_var_ref,
    parse_value,
    render_value,
)
from browserflow.error_handling.exceptions import (
    ActionError,
    ConditionError,
    SubtaskError,
    UrlNotAllowedError,
)
from browserflow.monitoring.logger import get_logger
from browserflow.security.url_guard import PRIVATE_NETWORK_MESSAGE, validate_url

if TYPE_CHECKING:
    from browserflow.orchestration.subtask import SubtaskClient

logger = get_logger(__name__)

_UNSAFE_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

EXPRESSION_SCRIPT = """
({ expression, vars, blockOutput }) => {
    const exists = (selector) => {
        if (!selector) return false;
        return !!document.querySelector(selector);
    };
    const text = (selector) => {
        if (!selector) return '';
        const el = document.querySelector(selector);
        return el ? (el.textContent || '').trim() : '';
    };
    const url = () => window.location.href;
    const html = document.documentElement.outerHTML;
    const block = { output: blockOutput };
    const fn = new Function('vars', 'block', 'exists', 'text', 'url', 'html', `return !!(${expression});`);
    return fn(vars || {}, block, exists, text, url, html);
}
"""

COLLECT_ITEMS_SCRIPT = """
(elements) => elements.map((el) => ({
    text: (el.textContent || '').trim(),
    html: el.innerHTML || ''
}))
"""

EVAL_SCRIPT = "(code) => eval(code)"

# Eased scroll of the window, or of the element matched by ``selector``.
SMOOTH_SCROLL_SCRIPT = """
({ selector, y, duration }) => {
    const el = selector ? document.querySelector(selector) : null;
    if (selector && !el) return;
    const start = el ? el.scrollTop : (window.scrollY || 0);
    const target = start + y;
    const startTime = performance.now();
    const easeOut = (t) => 1 - Math.pow(1 - t, 3);
    const step = (now) => {
        const t = Math.min(1, (now - startTime) / duration);
        const next = start + (target - start) * easeOut(t);
        if (el) {
            el.scrollTop = next;
        } else {
            window.scrollTo(0, next);
        }
        if (t < 1) requestAnimationFrame(step);
    };
    requestAnimationFrame(step);
}
"""


class PlaywrightActionExecutor(ActionExecutor):
    """Runs leaf actions against one page, optionally with human-like input."""

    def __init__(
        self,
        page: Page,
        stealth: Optional[StealthOptions] = None,
        run_id: Optional[str] = None,
        settings: Optional[Settings] = None,
        subtask_client: Optional["SubtaskClient"] = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            page: Page every action runs against
            stealth: Human-like behaviour toggles
            run_id: Prefix of screenshot file names
            settings: Settings instance; global settings if omitted
            subtask_client: Client for ``start`` actions; created on first use
        """
        self.page = page
        self.stealth = stealth or StealthOptions()
        self.run_id = run_id or "run"
        self.settings = settings or get_settings()
        self._subtask_client = subtask_client

        self._handlers: Dict[str, Callable[[ActionBase, ActionContext], Awaitable[Any]]] = {
            "navigate": self._navigate,
            "goto": self._navigate,
            "click": self._click,
            "type": self._type,
            "fill": self._type,
            "hover": self._hover,
            "press": self._press,
            "wait": self._wait,
            "select": self._select,
            "scroll": self._scroll,
            "screenshot": self._screenshot,
            "javascript": self._javascript,
            "csv": self._csv,
            "merge": self._merge,
            "set": self._set,
            "stop": self._stop,
            "start": self._start,
        }

    @property
    def subtask_client(self) -> "SubtaskClient":
        if self._subtask_client is None:
            # Lazy import to avoid circular dependency
            from browserflow.orchestration.subtask import SubtaskClient

            self._subtask_client = SubtaskClient(settings=self.settings)
        return self._subtask_client

    async def execute(self, action: ActionBase, context: ActionContext) -> Any:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise ActionError(f"Unsupported action type: {action.type}", action_type=action.type)
        return await handler(action, context)

    async def evaluate_expression(
        self, expression: str, variables: Dict[str, Any], block_output: Any
    ) -> bool:
        try:
            result = await self.page.evaluate(
                EXPRESSION_SCRIPT,
                {"expression": expression, "vars": variables, "blockOutput": block_output},
            )
        except PlaywrightError as exc:
            raise ConditionError(
                f"Condition could not be evaluated: {exc}", expression=expression, cause=exc
            ) from exc
        return bool(result)

    async def collect_items(self, selector: str) -> List[Dict[str, str]]:
        return await self.page.eval_on_selector_all(selector, COLLECT_ITEMS_SCRIPT)

    async def capture_screenshot(self, label: Any = "") -> str:
        """
        Save a viewport screenshot under the captures directory.

        Returns:
            Public path of the image, ``/captures/<name>.png``
        """
        safe_label = _UNSAFE_LABEL_CHARS.sub("", str(label or ""))[:24]
        suffix = f"_{safe_label}" if safe_label else ""
        name = f"{self.run_id}_agent_{int(time.time() * 1000)}{suffix}.png"

        captures_dir = Path(self.settings.captures_dir)
        captures_dir.mkdir(parents=True, exist_ok=True)
        await self.page.screenshot(path=str(captures_dir / name), full_page=False)
        return f"/captures/{name}"

    # Helpers

    def _delay(self, ms: float, context: ActionContext) -> float:
        return base_delay(ms, context.step, self.stealth.fatigue)

    def _timeout(self, action: ActionBase) -> int:
        return action.timeout or self.settings.action_timeout

    def _require_selector(self, action: ActionBase, selector: Any) -> str:
        if not selector:
            raise ActionError(
                f"Missing selector for {action.type} action.", action_type=action.type
            )
        return str(selector)

    async def _move_to_element(self, selector: str) -> Optional[tuple]:
        handle = await self.page.query_selector(selector)
        box = await handle.bounding_box() if handle else None
        if not box:
            return None
        center_x = box["x"] + box["width"] / 2 + (random.random() - 0.5) * 5
        center_y = box["y"] + box["height"] / 2 + (random.random() - 0.5) * 5
        await move_mouse_humanlike(self.page, center_x, center_y)
        return center_x, center_y, box

    # Browser actions

    async def _navigate(self, action: ActionBase, context: ActionContext) -> Any:
        target_url = context.resolve(action.value)
        if self.settings.block_private_networks:
            try:
                await validate_url(target_url)
            except UrlNotAllowedError as exc:
                raise UrlNotAllowedError(PRIVATE_NETWORK_MESSAGE, url=target_url, cause=exc) from exc

        context.log(f"Navigating to: {target_url}")
        await self.page.goto(target_url, wait_until="domcontentloaded")
        return self.page.url

    async def _click(self, action: ActionBase, context: ActionContext) -> Any:
        selector = context.resolve(action.selector)
        context.log(f"Clicking: {render_value(selector)}")
        coords = parse_coords(str(selector or ""))
        if coords:
            await self.page.mouse.click(coords[0], coords[1], delay=self._delay(50, context))
            return True

        selector = self._require_selector(action, selector)
        await self.page.wait_for_selector(selector, timeout=self._timeout(action))

        dead_clicks = self.stealth.dead_clicks
        if dead_clicks and random.random() < 0.4:
            context.log("Performing neutral dead-click...")
            viewport = self.page.viewport_size or {"width": 1280, "height": 720}
            await self.page.mouse.click(
                10 + random.random() * viewport["width"] * 0.2,
                10 + random.random() * viewport["height"] * 0.2,
            )
            await self.page.wait_for_timeout(self._delay(200, context))

        target = await self._move_to_element(selector)
        if target and dead_clicks and random.random() < 0.25:
            center_x, center_y, box = target
            offset_x = (random.random() - 0.5) * min(20, box["width"] / 3)
            offset_y = (random.random() - 0.5) * min(20, box["height"] / 3)
            await self.page.mouse.click(
                center_x + offset_x, center_y + offset_y, delay=self._delay(30, context)
            )
            await self.page.wait_for_timeout(self._delay(120, context))

        await self.page.wait_for_timeout(self._delay(50, context))
        await self.page.click(selector, delay=self._delay(50, context))
        return True

    async def _type_into(self, selector: str, text: str, mode: TypeMode, context: ActionContext) -> None:
        stealth = self.stealth
        human_options = {
            "allow_typos": stealth.allow_typos,
            "natural_typing": stealth.natural_typing,
            "fatigue": stealth.fatigue,
        }
        if mode == TypeMode.REPLACE:
            if stealth.human_typing:
                await self.page.fill(selector, "")
                await human_type(self.page, selector, text, **human_options)
            else:
                await self.page.fill(selector, text)
        elif stealth.human_typing:
            await human_type(self.page, selector, text, **human_options)
        else:
            await self.page.type(selector, text, delay=self._delay(50, context))

    async def _type(self, action: ActionBase, context: ActionContext) -> Any:
        selector = context.resolve(action.selector) if action.selector else None
        text = render_value(context.resolve(action.value))

        if not selector:
            context.log(f"Typing (global): {text}")
            if self.stealth.human_typing:
                await human_type(
                    self.page,
                    None,
                    text,
                    allow_typos=self.stealth.allow_typos,
                    natural_typing=self.stealth.natural_typing,
                    fatigue=self.stealth.fatigue,
                )
            else:
                await self.page.keyboard.type(text, delay=self._delay(50, context))
            return text

        selector = str(selector)
        context.log(f"Typing into {selector}: {text}")
        coords = parse_coords(selector)
        if coords:
            # Coordinates focus by clicking; typing then goes to the focused field.
            await self.page.mouse.click(coords[0], coords[1], delay=self._delay(50, context))
            await self.page.keyboard.type(text, delay=self._delay(50, context))
            return text

        await self.page.wait_for_selector(selector, timeout=self._timeout(action))
        await self._type_into(selector, text, action.type_mode, context)
        return text

    async def _hover(self, action: ActionBase, context: ActionContext) -> Any:
        selector = context.resolve(action.selector)
        context.log(f"Hovering: {render_value(selector)}")
        coords = parse_coords(str(selector or ""))
        if coords:
            await move_mouse_humanlike(self.page, coords[0], coords[1])
            return True

        selector = self._require_selector(action, selector)
        await self.page.wait_for_selector(selector, timeout=self._timeout(action))
        await self._move_to_element(selector)
        await self.page.wait_for_timeout(self._delay(150, context))
        return True

    async def _press(self, action: ActionBase, context: ActionContext) -> Any:
        key = context.resolve(action.key)
        if not key:
            raise ActionError("Missing key for press action.", action_type=action.type)
        context.log(f"Pressing key: {key}")
        await self.page.keyboard.press(str(key), delay=self._delay(50, context))
        return key

    async def _wait(self, action: ActionBase, context: ActionContext) -> Any:
        ms: float = 2000.0
        if action.value:
            try:
                ms = float(context.resolve(action.value)) * 1000
            except (TypeError, ValueError):
                ms = 2000.0
        if ms.is_integer():
            ms = int(ms)
        context.log(f"Waiting: {ms}ms")

        if self.stealth.idle_movements:
            context.log("Simulating cursor restlessness...")
            tasks = [
                asyncio.ensure_future(idle_mouse(self.page)),
                asyncio.ensure_future(self.page.wait_for_timeout(ms)),
            ]
            _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        else:
            await self.page.wait_for_timeout(ms)
        return ms

    async def _select(self, action: ActionBase, context: ActionContext) -> Any:
        selector = self._require_selector(action, context.resolve(action.selector))
        value = context.resolve(action.value)
        context.log(f"Selecting {render_value(value)} from {selector}")
        await self.page.wait_for_selector(selector, timeout=self._timeout(action))
        await self.page.select_option(selector, render_value(value))
        return value

    async def _scroll(self, action: ActionBase, context: ActionContext) -> Any:
        if action.value:
            amount = parse_count(context.resolve(action.value))
        else:
            amount = 400 + random.randint(0, 399)
        duration = parse_count(context.resolve(action.key)) if action.key else 500
        if duration <= 0:
            duration = 500
        context.log(f"Scrolling page: {amount}px over {duration}ms...")

        if self.stealth.overscroll:
            await overshoot_scroll(self.page, amount)
            await self.page.wait_for_timeout(self._delay(200, context))
            return amount

        selector = context.resolve(action.selector) if action.selector else None
        await self.page.evaluate(
            SMOOTH_SCROLL_SCRIPT,
            {"selector": selector or None, "y": amount, "duration": duration},
        )
        await self.page.wait_for_timeout(self._delay(duration, context))
        return amount

    async def _screenshot(self, action: ActionBase, context: ActionContext) -> Any:
        context.log("Capturing screenshot...")
        try:
            shot_url = await self.capture_screenshot(action.label or action.value or "")
        except Exception as exc:
            # Screenshots never fail the action.
            context.log(f"Screenshot failed: {exc}")
            logger.warning("Screenshot failed", extra={"error": str(exc)})
            return None
        context.log(f"Screenshot saved: {shot_url}")
        return shot_url

    async def _javascript(self, action: ActionBase, context: ActionContext) -> Any:
        context.log("Running custom JavaScript...")
        if not action.value:
            return None
        return await self.page.evaluate(EVAL_SCRIPT, context.resolve(action.value))

    # Data actions

    async def _csv(self, action: ActionBase, context: ActionContext) -> Any:
        source = context.resolve(action.value) if action.value else context.vars.block_output
        if isinstance(source, str):
            rows: Any = parse_csv(source)
        elif isinstance(source, (list, dict)):
            rows = source
        else:
            rows = []
        context.log(f"Parsed {len(rows) if isinstance(rows, list) else 0} CSV rows.")
        return rows

    async def _merge(self, action: ActionBase, context: ActionContext) -> Any:
        merged = merge_sources(collect_merge_sources(action.value, context.vars))
        if action.var_name:
            context.vars.set(normalize_var_ref(action.var_name), merged)

        if isinstance(merged, list):
            context.log(f"Merged {len(merged)} item(s).")
        elif isinstance(merged, dict):
            context.log(f"Merged {len(merged)} field(s).")
        else:
            context.log("Merged values.")
        return merged

    async def _set(self, action: ActionBase, context: ActionContext) -> Any:
        if not action.var_name:
            return None
        parsed = parse_value(context.resolve(action.value or ""))
        context.vars.set(normalize_var_ref(action.var_name), parsed)
        context.log(f"Set variable {action.var_name}")
        return parsed

    async def _stop(self, action: ActionBase, context: ActionContext) -> Any:
        outcome = StopOutcome.ERROR if action.value == "error" else StopOutcome.SUCCESS
        context.log(f"Stop task ({outcome.value}).")
        return outcome.value

    async def _start(self, action: ActionBase, context: ActionContext) -> Any:
        task_id = context.resolve(action.value)
        if not task_id:
            raise SubtaskError("Missing task id.")
        context.log(f"Starting task: {task_id}")
        return await self.subtask_client.start(task_id, context.vars.snapshot())
