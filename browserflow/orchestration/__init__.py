"""
Orchestration module for run execution and coordination.
"""

from browserflow.orchestration.run_registry import RunRegistry
from browserflow.orchestration.subtask import SubtaskClient
from browserflow.orchestration.task_runner import TaskRunner

__all__ = [
    "RunRegistry",
    "SubtaskClient",
    "TaskRunner",
]
