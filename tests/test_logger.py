"""
Unit tests for logging utilities.
"""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest

from browserflow.monitoring.logger import (
    JSONFormatter,
    RunLogAdapter,
    SanitizingHandler,
    get_logger,
    log_performance_metric,
    log_run_event,
    setup_logging,
)


def _record(message, args=(), **extra):
    record = logging.LogRecord("browserflow.test", logging.INFO, __file__, 10, message, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test JSON log formatter."""

    def test_format_basic(self):
        """Test the standard fields."""
        output = json.loads(JSONFormatter().format(_record("Run started")))

        assert output["level"] == "INFO"
        assert output["logger"] == "browserflow.test"
        assert output["message"] == "Run started"
        assert "timestamp" in output

    def test_context_fields(self):
        """Test run context attributes are promoted."""
        output = json.loads(
            JSONFormatter().format(_record("x", run_id="run-1", event_type="run_started"))
        )

        assert output["run_id"] == "run-1"
        assert output["event_type"] == "run_started"

    def test_sanitizes_messages(self):
        """Test secrets are redacted."""
        output = json.loads(JSONFormatter().format(_record("Typing %s", ("password=abc",))))

        assert output["message"] == "Typing password=[PASSWORD]"

    def test_sanitization_can_be_disabled(self):
        """Test raw output without a sanitizer."""
        output = json.loads(
            JSONFormatter(sanitize=False).format(_record("Typing %s", ("password=abc",)))
        )

        assert output["message"] == "Typing password=abc"


class TestSanitizingHandler:
    """Test the sanitizing handler wrapper."""

    def test_emits_sanitized_record(self):
        """Test the wrapped handler receives the redacted record."""
        inner = MagicMock(spec=logging.Handler)
        inner.level = logging.INFO
        handler = SanitizingHandler(inner)

        handler.emit(_record("key api_key=abc123"))

        emitted = inner.emit.call_args.args[0]
        assert emitted.getMessage() == "key api_key=[REDACTED]"


class TestLoggers:
    """Test logger helpers."""

    def test_get_logger_without_context(self):
        """Test a plain logger is returned."""
        assert isinstance(get_logger("browserflow.x"), logging.Logger)

    def test_get_logger_with_context(self, caplog):
        """Test context is stamped on every record."""
        logger = get_logger("browserflow.x", run_id="run-7")

        assert isinstance(logger, RunLogAdapter)
        with caplog.at_level(logging.INFO, logger="browserflow.x"):
            logger.info("hello", extra={"action_id": "a1"})

        assert caplog.records[0].run_id == "run-7"
        assert caplog.records[0].action_id == "a1"

    def test_log_run_event(self, caplog):
        """Test run events carry their type and data."""
        with caplog.at_level(logging.INFO, logger="browserflow.run_events"):
            log_run_event("run_started", "run-1", action_id="a1", data={"url": "https://a.test"})

        record = caplog.records[0]
        assert record.getMessage() == "Run event: run_started"
        assert record.run_id == "run-1"
        assert record.action_id == "a1"
        assert record.url == "https://a.test"

    def test_log_performance_metric(self, caplog):
        """Test metrics are logged with their unit."""
        with caplog.at_level(logging.INFO, logger="browserflow.performance"):
            log_performance_metric("run_duration", 12.5, context={"run_id": "run-1"})

        record = caplog.records[0]
        assert record.getMessage() == "Performance metric: run_duration=12.5ms"
        assert record.metric_name == "run_duration"
        assert record.run_id == "run-1"


@pytest.fixture
def restore_root_logger():
    """Restore root handlers changed by setup_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def test_setup_logging(restore_root_logger, settings, tmp_path):
    """Test handlers are installed per format."""
    log_file = tmp_path / "run.log"

    with patch("browserflow.monitoring.logger.get_settings", return_value=settings):
        root = setup_logging(log_level="DEBUG", log_format="text", log_file=str(log_file))

    assert root.level == logging.DEBUG
    assert isinstance(root.handlers[0], SanitizingHandler)
    assert isinstance(root.handlers[1], logging.FileHandler)
    assert log_file.exists()
