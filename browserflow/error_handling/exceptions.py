"""
Custom exception hierarchy for browserflow.

Errors raised inside a running program (failed actions and conditions) are
recovered by the interpreter; only validation and browser-acquisition errors
escape a run.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class BrowserFlowError(Exception):
    """Base exception for all browserflow errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


class ActionError(BrowserFlowError):
    """A leaf action failed while executing."""

    def __init__(
        self,
        message: str,
        action_type: Optional[str] = None,
        selector: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.action_type = action_type
        self.selector = selector
        self.details.update({
            "action_type": action_type,
            "selector": selector,
        })


class ConditionError(BrowserFlowError):
    """An ``if``/``while`` condition could not be evaluated."""

    def __init__(self, message: str, expression: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expression = expression
        self.details.update({"expression": expression})


class ActionValidationError(BrowserFlowError):
    """The action program or task payload is malformed."""

    def __init__(
        self,
        message: str,
        validation_type: str,
        failed_rules: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.validation_type = validation_type
        self.failed_rules = failed_rules or []
        self.details.update({
            "validation_type": validation_type,
            "failed_rules": self.failed_rules,
        })


class SandboxError(BrowserFlowError):
    """An extraction script failed inside the sandbox."""


class ScriptTimeoutError(SandboxError):
    """An extraction script exceeded its time budget."""

    def __init__(self, message: str, timeout_ms: int, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms
        self.details.update({"timeout_ms": timeout_ms})


class BrowserError(BrowserFlowError):
    """The browser or its session could not be acquired. Fatal for the run."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        action: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.url = url
        self.action = action
        self.details.update({
            "url": url,
            "action": action,
        })


class UrlNotAllowedError(BrowserFlowError):
    """A navigation target failed URL validation."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.url = url
        self.details.update({"url": url})


class SubtaskError(BrowserFlowError):
    """A ``start`` action could not invoke its sub-task."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.task_id = task_id
        self.status_code = status_code
        self.details.update({
            "task_id": task_id,
            "status_code": status_code,
        })
