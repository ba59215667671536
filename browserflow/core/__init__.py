"""
Core module exports.
"""

from browserflow.core.interfaces import (
    ActionContext,
    ActionExecutor,
    ConfigProvider,
    HtmlSnapshotProvider,
    ProgressReporter,
    StopChecker,
)
from browserflow.core.types import (
    Action,
    ActionBase,
    ExtractionFormat,
    ProgressEvent,
    ProgressStatus,
    RunResult,
    ScriptResult,
    StealthOptions,
    StopOutcome,
    TaskRequest,
    TypeMode,
    VarType,
    parse_actions,
)

__all__ = [
    # Interfaces
    "ActionContext",
    "ActionExecutor",
    "ProgressReporter",
    "StopChecker",
    "HtmlSnapshotProvider",
    "ConfigProvider",
    # Types
    "Action",
    "ActionBase",
    "ExtractionFormat",
    "ProgressEvent",
    "ProgressStatus",
    "RunResult",
    "ScriptResult",
    "StealthOptions",
    "StopOutcome",
    "TaskRequest",
    "TypeMode",
    "VarType",
    "parse_actions",
]
