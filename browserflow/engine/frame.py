"""
Per-run execution state for the interpreter.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from browserflow.core.types import StopOutcome


@dataclass
class RepeatState:
    """Iterations left for an active ``repeat`` block."""

    remaining: int


@dataclass
class ForeachState:
    """Items and cursor of an active ``foreach`` block."""

    items: List[Any]
    index: int = 0

    @property
    def current(self) -> Any:
        return self.items[self.index]


@dataclass
class ErrorHandler:
    """Body bounds of the registered ``on_error`` block (``end`` is its end index)."""

    start: int
    end: int


@dataclass
class ExecutionFrame:
    """
    Mutable state of one program run.

    Loop states are keyed by the index of their block-start action and are
    dropped when the loop finishes, so re-entering a block starts fresh.
    """

    max_steps: int
    pc: int = 0
    steps: int = 0
    repeat_states: Dict[int, RepeatState] = field(default_factory=dict)
    foreach_states: Dict[int, ForeachState] = field(default_factory=dict)
    error_handler: Optional[ErrorHandler] = None
    in_error_handler: bool = False
    stop_requested: bool = False
    stop_outcome: StopOutcome = StopOutcome.SUCCESS

    def can_enter_error_handler(self) -> bool:
        return self.error_handler is not None and not self.in_error_handler

    def enter_error_handler(self) -> None:
        """Latch the handler and jump to its body. Only once per run."""
        assert self.error_handler is not None
        self.in_error_handler = True
        self.pc = self.error_handler.start

    def left_error_handler(self) -> bool:
        """True once execution has moved past the end of the active handler."""
        return (
            self.in_error_handler
            and self.error_handler is not None
            and self.pc > self.error_handler.end
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the frame, for logs and debugging."""
        return {
            "pc": self.pc,
            "steps": self.steps,
            "max_steps": self.max_steps,
            "repeat_states": {str(k): asdict(v) for k, v in self.repeat_states.items()},
            "foreach_states": {
                str(k): {"index": v.index, "count": len(v.items)}
                for k, v in self.foreach_states.items()
            },
            "error_handler": asdict(self.error_handler) if self.error_handler else None,
            "in_error_handler": self.in_error_handler,
            "stop_requested": self.stop_requested,
            "stop_outcome": self.stop_outcome.value,
        }
