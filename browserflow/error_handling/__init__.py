"""
Error handling for browserflow.

Provides the exception hierarchy shared by the interpreter, the sandbox and
the browser layer.
"""

from .exceptions import (
    ActionError,
    ActionValidationError,
    BrowserError,
    BrowserFlowError,
    ConditionError,
    SandboxError,
    ScriptTimeoutError,
    SubtaskError,
    UrlNotAllowedError,
)

__all__ = [
    "BrowserFlowError",
    "ActionError",
    "ActionValidationError",
    "BrowserError",
    "ConditionError",
    "SandboxError",
    "ScriptTimeoutError",
    "SubtaskError",
    "UrlNotAllowedError",
]
