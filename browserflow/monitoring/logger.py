"""
Process logging for browserflow.

Process logging is separate from the per-run ``logs`` list returned to the
caller; the interpreter mirrors each run log line here at DEBUG.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from browserflow.config.settings import get_settings
from browserflow.security.sanitizer import DataSanitizer

# Record attributes copied into JSON output when present.
_CONTEXT_FIELDS = ("run_id", "action_id", "action_type", "event_type", "task_id")

_TEXT_FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, secrets redacted unless ``sanitize`` is off."""

    def __init__(self, *args, sanitize: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.sanitizer = DataSanitizer() if sanitize else None

    def format(self, record: logging.LogRecord) -> str:
        if self.sanitizer:
            record = self.sanitizer.sanitize_log_record(record)

        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            {name: getattr(record, name) for name in _CONTEXT_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if self.sanitizer:
            payload = self.sanitizer.sanitize_dict(payload)
        return json.dumps(payload, default=str)


class SanitizingHandler(logging.Handler):
    """Wraps another handler and redacts each record before it is emitted."""

    def __init__(self, handler: logging.Handler, sanitizer: Optional[DataSanitizer] = None):
        super().__init__(level=handler.level)
        self.handler = handler
        self.sanitizer = sanitizer or DataSanitizer()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            clean = self.sanitizer.sanitize_log_record(record)
            self.handler.emit(clean)
        except Exception:
            self.handleError(record)


class RunLogAdapter(logging.LoggerAdapter):
    """Adds the adapter's run context to the ``extra`` of every call."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def _console_handler(format_type: str, level: int, sanitize: bool) -> logging.Handler:
    if format_type == "json":
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter(sanitize=sanitize))
    else:
        handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
        if sanitize:
            handler.setLevel(level)
            handler = SanitizingHandler(handler)
    handler.setLevel(level)
    return handler


def _file_handler(path: str, format_type: str, level: int, sanitize: bool) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    if format_type == "json":
        handler.setFormatter(JSONFormatter(sanitize=sanitize))
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FILE_FORMAT))
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    sanitize_logs: bool = True,
) -> logging.Logger:
    """
    Configure the root logger for a browserflow process.

    Unset arguments fall back to the settings. Existing root handlers are
    replaced.

    Args:
        log_level: Level name such as ``INFO``
        log_format: ``json`` for structured stdout output, ``text`` for rich
        log_file: Extra log file path
        sanitize_logs: Redact secrets before records are written

    Returns:
        The root logger
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    format_type = log_format or settings.log_format
    file_path = log_file or settings.log_file
    level = getattr(logging, level_name)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.addHandler(_console_handler(format_type, level, sanitize_logs))
    if file_path:
        root.addHandler(_file_handler(file_path, format_type, level, sanitize_logs))
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("browserflow").info(
        f"Logging configured ({level_name}, {format_type})",
        extra={"log_file": file_path},
    )
    return root


def get_logger(name: str, **context: Any) -> logging.Logger:
    """Return ``logging.getLogger(name)``, wrapped in a RunLogAdapter when context is given."""
    logger = logging.getLogger(name)
    return RunLogAdapter(logger, context) if context else logger


def log_run_event(
    event_type: str,
    run_id: Optional[str],
    action_id: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record a run lifecycle event (``run_started``, ``run_finished``, ...).

    ``data`` keys become attributes of the log record.
    """
    fields: Dict[str, Any] = {"event_type": event_type, "run_id": run_id, **(data or {})}
    if action_id:
        fields["action_id"] = action_id
    logging.getLogger("browserflow.run_events").info(f"Run event: {event_type}", extra=fields)


def log_performance_metric(
    metric_name: str,
    value: float,
    unit: str = "ms",
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Record a timing or size measurement."""
    fields: Dict[str, Any] = {"metric_name": metric_name, "value": value, "unit": unit}
    fields.update(context or {})
    logging.getLogger("browserflow.performance").info(
        f"Performance metric: {metric_name}={value}{unit}", extra=fields
    )
