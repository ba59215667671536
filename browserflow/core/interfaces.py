"""
Core interfaces and abstract base classes for browserflow.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from browserflow.core.types import ActionBase, ProgressEvent

if TYPE_CHECKING:
    from browserflow.engine.variables import RuntimeVars


@dataclass
class ActionContext:
    """Per-run bundle handed to the action executor with every leaf action."""

    run_id: Optional[str]
    vars: "RuntimeVars"
    log: Callable[[str], None]
    step: int = 0

    def resolve(self, value: Any) -> Any:
        """Resolve ``{$name}`` references against the live variables."""
        return self.vars.resolve(value)


class ActionExecutor(ABC):
    """Abstract interface for the leaf-action dispatcher that drives a page."""

    @abstractmethod
    async def execute(self, action: ActionBase, context: ActionContext) -> Any:
        """
        Execute one leaf action.

        Args:
            action: Leaf action to run
            context: Live variables and log sink of the current run

        Returns:
            The action's result, or None when it produces nothing

        Raises:
            Exception: Any failure; the interpreter recovers it
        """
        pass

    @abstractmethod
    async def evaluate_expression(
        self, expression: str, variables: Dict[str, Any], block_output: Any
    ) -> bool:
        """Evaluate a free-form boolean expression against the live page."""
        pass

    @abstractmethod
    async def collect_items(self, selector: str) -> List[Dict[str, str]]:
        """Return ``{text, html}`` for every element matching ``selector``."""
        pass


class ProgressReporter(ABC):
    """Abstract interface for per-action progress notifications."""

    @abstractmethod
    def report(self, run_id: Optional[str], event: ProgressEvent) -> None:
        """Publish a progress event for a run."""
        pass


class StopChecker(ABC):
    """Abstract interface for external cancellation."""

    @abstractmethod
    def is_stop_requested(self, run_id: Optional[str]) -> bool:
        """Return True once if a stop was requested for the run, clearing it."""
        pass


class HtmlSnapshotProvider(ABC):
    """Abstract interface for capturing the page HTML."""

    @abstractmethod
    async def snapshot(self, include_shadow_dom: bool = True) -> str:
        """Return the cleaned HTML of the current page."""
        pass


class ConfigProvider(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def get_required(self, key: str) -> Any:
        """Get required configuration value, raise if missing."""
        pass

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        pass
