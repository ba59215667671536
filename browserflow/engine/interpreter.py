"""
Block-structured interpreter for action programs.

The program is a flat list; blocks are delimited by start actions
(``if``/``while``/``repeat``/``foreach``/``on_error``), ``else`` and
``end``. A program counter walks the list and jumps using the block map.
Leaf actions are delegated to an :class:`ActionExecutor`.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from browserflow.config.settings import Settings, get_settings
from browserflow.core.interfaces import (
    ActionContext,
    ActionExecutor,
    ProgressReporter,
    StopChecker,
)
from browserflow.core.types import (
    ActionBase,
    ConditionalAction,
    ForeachAction,
    ProgressEvent,
    ProgressStatus,
    RepeatAction,
    StopOutcome,
    parse_actions,
)
from browserflow.engine.block_map import BlockMap, build_block_map
from browserflow.engine.conditions import RegexMatcher, evaluate_structured_condition
from browserflow.engine.frame import (
    ErrorHandler,
    ExecutionFrame,
    ForeachState,
    RepeatState,
)
from browserflow.engine.variables import RuntimeVars, normalize_var_ref
from browserflow.monitoring.logger import get_logger, log_performance_metric, log_run_event

logger = get_logger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_count(value: Any) -> int:
    """Integer prefix of ``value``; 0 when there is none."""
    match = _LEADING_INT.match(str(value or "0"))
    return int(match.group(1)) if match else 0


def items_from_variable(source: Any) -> List[Any]:
    """Iterable items held by a variable: a list, or a JSON array string."""
    if isinstance(source, list):
        return source
    if isinstance(source, str):
        try:
            parsed = json.loads(source)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


@dataclass
class InterpreterOutcome:
    """What a finished program run produced."""

    logs: List[str]
    final_vars: Dict[str, Any]
    stop_outcome: StopOutcome = StopOutcome.SUCCESS
    stopped_by_user: bool = False
    aborted: bool = False
    frame: Optional[ExecutionFrame] = field(default=None, repr=False)


class Interpreter:
    """
    Steps one action program to completion.

    An instance may run several programs; all per-run state lives in the
    :class:`ExecutionFrame` and :class:`RuntimeVars` created by :meth:`run`.
    """

    def __init__(
        self,
        executor: ActionExecutor,
        progress: Optional[ProgressReporter] = None,
        stop_checker: Optional[StopChecker] = None,
        run_id: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the interpreter.

        Args:
            executor: Leaf-action dispatcher
            progress: Receives per-action status events
            stop_checker: Polled before every instruction
            run_id: Identifier passed to the collaborators
            settings: Step ceiling and regex budget; global settings if omitted
        """
        self.executor = executor
        self.progress = progress
        self.stop_checker = stop_checker
        self.run_id = run_id
        self.settings = settings or get_settings()
        self.logger = get_logger(__name__, run_id=run_id)

    async def run(
        self,
        actions: Sequence[Any],
        initial_vars: Optional[Dict[str, Any]] = None,
    ) -> InterpreterOutcome:
        """
        Execute ``actions`` with ``initial_vars``.

        Args:
            actions: Typed actions, or raw dicts validated on entry
            initial_vars: Caller-supplied variables

        Returns:
            Run logs, final variables and stop state

        Raises:
            ActionValidationError: If raw actions fail validation
        """
        if any(not isinstance(action, ActionBase) for action in actions):
            actions = parse_actions(list(actions))
        program: List[ActionBase] = list(actions)

        block_map = build_block_map(program)
        for anomaly in block_map.anomalies:
            self.logger.warning(f"Block structure: {anomaly}")

        state = _RunState(
            program=program,
            block_map=block_map,
            frame=ExecutionFrame(max_steps=self.settings.max_steps_for(len(program))),
            variables=RuntimeVars(initial_vars),
            matcher=RegexMatcher(self.settings.regex_timeout_ms),
        )

        log_run_event("program_started", self.run_id, data={"action_count": len(program)})
        started = time.perf_counter()
        try:
            await self._loop(state)
        finally:
            await state.matcher.aclose()

        elapsed_ms = (time.perf_counter() - started) * 1000
        log_performance_metric(
            "program_duration", round(elapsed_ms, 1), context={"run_id": self.run_id, "steps": state.frame.steps}
        )
        log_run_event(
            "program_finished",
            self.run_id,
            data={
                "stop_outcome": state.frame.stop_outcome.value,
                "stopped_by_user": state.stopped_by_user,
                "aborted": state.aborted,
            },
        )

        return InterpreterOutcome(
            logs=state.logs,
            final_vars=state.variables.snapshot(),
            stop_outcome=state.frame.stop_outcome,
            stopped_by_user=state.stopped_by_user,
            aborted=state.aborted,
            frame=state.frame,
        )

    async def _loop(self, state: "_RunState") -> None:
        frame = state.frame
        program = state.program

        while frame.pc < len(program):
            if self.stop_checker and self.stop_checker.is_stop_requested(self.run_id):
                self._log(state, "Execution stopped by user.")
                state.stopped_by_user = True
                break
            if frame.steps > frame.max_steps:
                self._log(state, "Execution aborted: possible infinite loop.")
                self.logger.warning(
                    "Step ceiling reached, run aborted", extra={"frame": frame.to_dict()}
                )
                state.aborted = True
                break
            frame.steps += 1

            action = program[frame.pc]

            if action.disabled:
                self._log(state, f"SKIPPED disabled action: {action.type}")
                self._report(action, ProgressStatus.SKIPPED)
                frame.pc += 1
                continue

            handler = self._BLOCK_HANDLERS.get(action.type)
            if handler is not None:
                halt = await handler(self, state, action)
            else:
                halt = await self._execute_leaf(state, action)
            if halt:
                break

    # Block constructs

    async def _on_error(self, state: "_RunState", action: ActionBase) -> bool:
        frame = state.frame
        end_index = state.block_map.start_to_end.get(frame.pc)
        self._report(action, ProgressStatus.RUNNING)
        if end_index is None:
            # Unclosed handler: its body runs inline.
            self._report(action, ProgressStatus.SUCCESS)
            frame.pc += 1
            return False
        frame.error_handler = ErrorHandler(start=frame.pc + 1, end=end_index)
        self._log(state, "On-error handler registered.")
        self._report(action, ProgressStatus.SUCCESS)
        frame.pc = end_index + 1
        return False

    async def _if(self, state: "_RunState", action: ConditionalAction) -> bool:
        frame = state.frame
        self._report(action, ProgressStatus.RUNNING)
        try:
            condition = await self._evaluate_condition(state, action)
        except Exception as exc:
            return self._condition_failed(state, action, exc)

        state.variables.set_block_output(condition)
        self._log(state, f"If condition: {'true' if condition else 'false'}")
        self._report(action, ProgressStatus.SUCCESS)
        if condition:
            frame.pc += 1
        elif frame.pc in state.block_map.start_to_else:
            frame.pc = state.block_map.start_to_else[frame.pc] + 1
        else:
            frame.pc = state.block_map.start_to_end.get(frame.pc, frame.pc) + 1
        return False

    async def _else(self, state: "_RunState", action: ActionBase) -> bool:
        # Reached only by falling out of a taken ``if`` branch.
        frame = state.frame
        self._report(action, ProgressStatus.SUCCESS)
        frame.pc = state.block_map.else_to_end.get(frame.pc, frame.pc) + 1
        return False

    async def _while(self, state: "_RunState", action: ConditionalAction) -> bool:
        frame = state.frame
        self._report(action, ProgressStatus.RUNNING)
        try:
            condition = await self._evaluate_condition(state, action)
        except Exception as exc:
            return self._condition_failed(state, action, exc)

        state.variables.set_block_output(condition)
        self._log(state, f"While condition: {'true' if condition else 'false'}")
        self._report(action, ProgressStatus.SUCCESS)
        if condition:
            frame.pc += 1
        else:
            frame.pc = state.block_map.start_to_end.get(frame.pc, frame.pc) + 1
        return False

    async def _repeat(self, state: "_RunState", action: RepeatAction) -> bool:
        frame = state.frame
        self._report(action, ProgressStatus.RUNNING)
        repeat = frame.repeat_states.get(frame.pc)
        if repeat is None:
            repeat = RepeatState(remaining=parse_count(state.variables.resolve(action.value)))
            frame.repeat_states[frame.pc] = repeat

        if repeat.remaining <= 0:
            del frame.repeat_states[frame.pc]
            self._report(action, ProgressStatus.SUCCESS)
            frame.pc = state.block_map.start_to_end.get(frame.pc, frame.pc) + 1
            return False

        self._log(state, f"Repeat block: {repeat.remaining} remaining")
        state.variables.set_block_output(repeat.remaining)
        self._report(action, ProgressStatus.SUCCESS)
        frame.pc += 1
        return False

    async def _foreach(self, state: "_RunState", action: ForeachAction) -> bool:
        frame = state.frame
        self._report(action, ProgressStatus.RUNNING)
        loop = frame.foreach_states.get(frame.pc)
        if loop is None:
            try:
                items = await self._foreach_items(state, action)
            except Exception as exc:
                return self._action_failed(state, action, exc)
            loop = ForeachState(items=items)
            frame.foreach_states[frame.pc] = loop

        if not loop.items:
            del frame.foreach_states[frame.pc]
            self._report(action, ProgressStatus.SUCCESS)
            frame.pc = state.block_map.start_to_end.get(frame.pc, frame.pc) + 1
            return False

        self._bind_item(state, loop)
        self._log(state, f"For-each item {loop.index + 1}/{len(loop.items)}")
        self._report(action, ProgressStatus.SUCCESS)
        frame.pc += 1
        return False

    async def _end(self, state: "_RunState", action: ActionBase) -> bool:
        frame = state.frame
        self._report(action, ProgressStatus.SUCCESS)
        start_index = state.block_map.end_to_start.get(frame.pc)

        if start_index is not None:
            start_type = state.program[start_index].type

            if start_type == "while":
                frame.pc = start_index
                return False

            if start_type == "repeat" and start_index in frame.repeat_states:
                repeat = frame.repeat_states[start_index]
                repeat.remaining -= 1
                if repeat.remaining > 0:
                    state.variables.set_block_output(repeat.remaining)
                    frame.pc = start_index + 1
                    return False
                del frame.repeat_states[start_index]

            if start_type == "foreach" and start_index in frame.foreach_states:
                loop = frame.foreach_states[start_index]
                loop.index += 1
                if loop.index < len(loop.items):
                    self._bind_item(state, loop)
                    frame.pc = start_index + 1
                    return False
                del frame.foreach_states[start_index]

        frame.pc += 1
        return frame.left_error_handler()

    _BLOCK_HANDLERS = {
        "on_error": _on_error,
        "if": _if,
        "else": _else,
        "while": _while,
        "repeat": _repeat,
        "foreach": _foreach,
        "end": _end,
    }

    # Leaf actions

    async def _execute_leaf(self, state: "_RunState", action: ActionBase) -> bool:
        frame = state.frame
        if frame.stop_requested:
            return True

        self._report(action, ProgressStatus.RUNNING)
        context = ActionContext(
            run_id=self.run_id,
            vars=state.variables,
            log=lambda message: self._log(state, message),
            step=frame.steps,
        )
        try:
            result = await self.executor.execute(action, context)
        except Exception as exc:
            return self._action_failed(state, action, exc)

        if action.type == "stop":
            frame.stop_requested = True
            frame.stop_outcome = (
                StopOutcome.ERROR if getattr(action, "value", None) == "error" else StopOutcome.SUCCESS
            )
            state.variables.set_block_output(result)
            self._report(
                action,
                ProgressStatus.ERROR if frame.stop_outcome == StopOutcome.ERROR else ProgressStatus.SUCCESS,
            )
            return True

        # An action that produces nothing still clears the previous output.
        state.variables.set_block_output(result)
        self._report(action, ProgressStatus.SUCCESS)

        frame.pc += 1
        return frame.left_error_handler()

    # Helpers

    async def _evaluate_condition(self, state: "_RunState", action: ConditionalAction) -> bool:
        if action.has_structured_condition:
            return await evaluate_structured_condition(action, state.variables, state.matcher)
        expression = state.variables.resolve(action.value or "")
        if not expression.strip():
            return False
        return bool(
            await self.executor.evaluate_expression(
                expression, state.variables.snapshot(), state.variables.block_output
            )
        )

    async def _foreach_items(self, state: "_RunState", action: ForeachAction) -> List[Any]:
        selector = state.variables.resolve(action.selector) if action.selector else ""
        if selector:
            return list(await self.executor.collect_items(str(selector)))

        var_name = normalize_var_ref(action.var_name)
        if var_name and state.variables.get(var_name):
            return items_from_variable(state.variables.get(var_name))
        return []

    def _bind_item(self, state: "_RunState", loop: ForeachState) -> None:
        item = loop.current
        state.variables.bind_loop_item(item, loop.index, len(loop.items))
        state.variables.set_block_output(item)

    def _condition_failed(self, state: "_RunState", action: ActionBase, exc: Exception) -> bool:
        self._log(state, f"FAILED condition: {exc}")
        self._report(action, ProgressStatus.ERROR)
        return self._recover(state)

    def _action_failed(self, state: "_RunState", action: ActionBase, exc: Exception) -> bool:
        self._log(state, f"FAILED action {action.type}: {exc}")
        self.logger.debug(f"Action {action.type} failed", exc_info=exc)
        self._report(action, ProgressStatus.ERROR)
        return self._recover(state)

    def _recover(self, state: "_RunState") -> bool:
        """Route a failure into the error handler once, else skip the instruction."""
        frame = state.frame
        if frame.can_enter_error_handler():
            frame.enter_error_handler()
            return False
        frame.pc += 1
        return frame.left_error_handler()

    def _log(self, state: "_RunState", message: str) -> None:
        state.logs.append(message)
        self.logger.debug(message)

    def _report(self, action: ActionBase, status: ProgressStatus) -> None:
        if self.progress is not None:
            self.progress.report(self.run_id, ProgressEvent(action_id=action.id, status=status))


@dataclass
class _RunState:
    program: List[ActionBase]
    block_map: BlockMap
    frame: ExecutionFrame
    variables: RuntimeVars
    matcher: RegexMatcher
    logs: List[str] = field(default_factory=list)
    stopped_by_user: bool = False
    aborted: bool = False
