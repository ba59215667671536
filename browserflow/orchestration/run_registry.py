"""
In-memory registry of active runs: stop requests and progress listeners.
"""

import asyncio
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from browserflow.core.interfaces import ProgressReporter, StopChecker
from browserflow.core.types import ProgressEvent
from browserflow.monitoring.logger import get_logger

logger = get_logger(__name__)

ProgressListener = Callable[[Optional[str], ProgressEvent], Any]


class RunRegistry(ProgressReporter, StopChecker):
    """
    Tracks runs by id for the interpreter's stop checks and progress events.

    Listeners may be plain callables or coroutine functions; coroutine
    listeners are scheduled on the running loop and their tasks kept until they
    finish. A failing listener is logged and never affects the run.
    """

    def __init__(self, history_limit: int = 1000) -> None:
        """Initialize the registry."""
        self._stop_requests: Set[str] = set()
        self._listeners: Dict[Optional[str], List[ProgressListener]] = {}
        self._history: Dict[Optional[str], List[ProgressEvent]] = {}
        self._history_limit = history_limit
        self._listener_tasks: Set[asyncio.Task] = set()
        self._lock = threading.Lock()

    def request_stop(self, run_id: str) -> None:
        """Ask the interpreter of ``run_id`` to stop before its next action."""
        with self._lock:
            self._stop_requests.add(run_id)
        logger.info("Stop requested", extra={"run_id": run_id})

    def is_stop_requested(self, run_id: Optional[str]) -> bool:
        if run_id is None:
            return False
        with self._lock:
            if run_id in self._stop_requests:
                self._stop_requests.discard(run_id)
                return True
        return False

    def subscribe(self, listener: ProgressListener, run_id: Optional[str] = None) -> None:
        """
        Register a progress listener.

        Args:
            listener: Called with ``(run_id, event)``
            run_id: Only events of this run; every run when None
        """
        with self._lock:
            self._listeners.setdefault(run_id, []).append(listener)
        logger.debug("Progress listener registered", extra={"run_id": run_id})

    def unsubscribe(self, listener: ProgressListener, run_id: Optional[str] = None) -> None:
        """Remove a listener registered with :meth:`subscribe`."""
        with self._lock:
            listeners = self._listeners.get(run_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(run_id, None)

    def report(self, run_id: Optional[str], event: ProgressEvent) -> None:
        with self._lock:
            history = self._history.setdefault(run_id, [])
            history.append(event)
            if len(history) > self._history_limit:
                del history[: len(history) - self._history_limit]
            listeners = list(self._listeners.get(run_id, []))
            if run_id is not None:
                listeners.extend(self._listeners.get(None, []))

        for listener in listeners:
            self._notify(listener, run_id, event)

    def history(self, run_id: Optional[str]) -> List[ProgressEvent]:
        """Progress events reported for ``run_id``, oldest first."""
        with self._lock:
            return list(self._history.get(run_id, []))

    def cleanup(self, run_id: Optional[str]) -> None:
        """Forget everything recorded for a finished run."""
        with self._lock:
            if run_id is not None:
                self._stop_requests.discard(run_id)
            self._history.pop(run_id, None)
            self._listeners.pop(run_id, None)

    def _notify(self, listener: ProgressListener, run_id: Optional[str], event: ProgressEvent) -> None:
        try:
            if asyncio.iscoroutinefunction(listener):
                task = asyncio.get_running_loop().create_task(listener(run_id, event))
                self._listener_tasks.add(task)
                task.add_done_callback(lambda done: self._listener_done(done, run_id))
            else:
                listener(run_id, event)
        except Exception as e:
            logger.error(f"Error in progress listener: {e}", extra={"run_id": run_id})

    def _listener_done(self, task: asyncio.Task, run_id: Optional[str]) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Error in progress listener: {error}",
                exc_info=error,
                extra={"run_id": run_id},
            )
