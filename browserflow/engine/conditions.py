"""
Structured condition evaluation for ``if`` and ``while``.

The left operand names a variable (typed value) or a literal; the right
operand is always template-resolved text. Comparison depends on
``conditionVarType``:

- ``boolean``: ``is_true`` (default), ``is_false``
- ``number``: ``equals`` (default), ``not_equals``, ``gt``, ``gte``, ``lt``, ``lte``
- ``string``: ``equals`` (default), ``not_equals``, ``contains``,
  ``starts_with``, ``ends_with``, ``matches``

Patterns for ``matches`` come from task authors, so they run in a worker
process that is killed when it exceeds its budget.
"""

import asyncio
import math
import multiprocessing
import re
from multiprocessing.pool import Pool
from typing import Any, Optional

from browserflow.core.types import ConditionalAction, VarType
from browserflow.engine.variables import RuntimeVars, parse_value, render_value
from browserflow.monitoring.logger import get_logger

logger = get_logger(__name__)

DEFAULT_REGEX_TIMEOUT_MS = 100


def _regex_search(pattern: str, text: str) -> bool:
    return re.search(pattern, text) is not None


def _ping() -> bool:
    return True


class RegexMatcher:
    """
    Runs regex searches in a single-worker pool with a hard time limit.

    The event loop never waits on the pool directly: results arrive through
    pool callbacks, and pool start-up and teardown run in the default
    executor.
    """

    def __init__(self, timeout_ms: int = DEFAULT_REGEX_TIMEOUT_MS) -> None:
        self.timeout_ms = timeout_ms
        self._pool: Optional[Pool] = None

    def _ensure_pool(self) -> Pool:
        if self._pool is None:
            self._pool = multiprocessing.get_context().Pool(processes=1)
            # Worker start-up is not charged to the first pattern.
            self._pool.apply(_ping)
        return self._pool

    async def search(self, pattern: str, text: str) -> bool:
        """
        Return True if ``pattern`` matches anywhere in ``text``.

        Invalid patterns and searches that exceed the budget return False.
        """
        try:
            re.compile(pattern)
        except re.error as exc:
            logger.debug(f"Invalid condition pattern {pattern!r}: {exc}")
            return False

        loop = asyncio.get_running_loop()
        pool = self._pool
        if pool is None:
            pool = await loop.run_in_executor(None, self._ensure_pool)
        outcome: asyncio.Future = loop.create_future()

        def deliver(value: Any) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_settle, outcome, value)

        pool.apply_async(
            _regex_search, (pattern, text), callback=deliver, error_callback=deliver
        )
        try:
            result = await asyncio.wait_for(outcome, self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(
                f"Condition pattern timed out after {self.timeout_ms}ms",
                extra={"pattern": pattern[:100]},
            )
            await self.aclose()
            return False

        if isinstance(result, BaseException):
            logger.debug(f"Condition pattern failed: {result}")
            return False
        return result

    def close(self) -> None:
        """Terminate the worker process, if one is running."""
        if self._pool is not None:
            pool, self._pool = self._pool, None
            pool.terminate()
            pool.join()

    async def aclose(self) -> None:
        """:meth:`close` without blocking the event loop."""
        if self._pool is not None:
            await asyncio.get_running_loop().run_in_executor(None, self.close)


def _settle(outcome: asyncio.Future, value: Any) -> None:
    if not outcome.done():
        outcome.set_result(value)


def js_truthy(value: Any) -> bool:
    """Truthiness with browser semantics: empty containers are truthy."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        parsed = parse_value(value)
        if isinstance(parsed, bool):
            return parsed
    return js_truthy(value)


def to_number(value: Any) -> float:
    """Convert an operand to a float; NaN when it is not numeric."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        parsed = parse_value(value)
        if isinstance(parsed, (int, float)) and not isinstance(parsed, bool):
            return float(parsed)
        stripped = value.strip()
        if not stripped:
            return 0.0
        try:
            number = float(stripped)
        except ValueError:
            return math.nan
        return number if math.isfinite(number) else math.nan
    return math.nan


def has_structured_condition(action: ConditionalAction) -> bool:
    """True when any structured condition field is set on ``action``."""
    return action.has_structured_condition


async def evaluate_structured_condition(
    action: ConditionalAction,
    variables: RuntimeVars,
    matcher: Optional[RegexMatcher] = None,
) -> bool:
    """
    Evaluate the structured condition of an ``if``/``while`` action.

    Args:
        action: Action carrying ``conditionVar``/``Op``/``Value``/``VarType``
        variables: Live run variables
        matcher: Regex runner for ``matches``; a temporary one is used if omitted

    Returns:
        The condition outcome
    """
    var_type = action.condition_var_type or VarType.STRING
    op = action.condition_op or ("is_true" if var_type == VarType.BOOLEAN else "equals")
    left_raw = variables.lookup_ref(action.condition_var or "")
    right = variables.resolve(action.condition_value or "")

    if var_type == VarType.BOOLEAN:
        left_bool = coerce_boolean(left_raw)
        return not left_bool if op == "is_false" else left_bool

    if var_type == VarType.NUMBER:
        left_num = to_number(left_raw)
        right_num = to_number(right)
        if not (math.isfinite(left_num) and math.isfinite(right_num)):
            return False
        if op == "not_equals":
            return left_num != right_num
        if op == "gt":
            return left_num > right_num
        if op == "gte":
            return left_num >= right_num
        if op == "lt":
            return left_num < right_num
        if op == "lte":
            return left_num <= right_num
        return left_num == right_num

    left_text = render_value(left_raw)
    if op == "not_equals":
        return left_text != right
    if op == "contains":
        return right in left_text
    if op == "starts_with":
        return left_text.startswith(right)
    if op == "ends_with":
        return left_text.endswith(right)
    if op == "matches":
        if matcher is not None:
            return await matcher.search(right, left_text)
        temporary = RegexMatcher()
        try:
            return await temporary.search(right, left_text)
        finally:
            await temporary.aclose()
    return left_text == right
