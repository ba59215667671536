"""
Monitoring module exports.
"""

from browserflow.monitoring.logger import (
    JSONFormatter,
    RunLogAdapter,
    SanitizingHandler,
    get_logger,
    log_performance_metric,
    log_run_event,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_run_event",
    "log_performance_metric",
    "JSONFormatter",
    "RunLogAdapter",
    "SanitizingHandler",
]
