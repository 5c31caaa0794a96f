"""
Unit tests for engine logging helpers.
"""

import json
import logging

from process_engine.core.logging import (
    ExecutionLogContext,
    HumanReadableFormatter,
    StructuredFormatter,
)


def _record(message="Running process", **fields):
    record = logging.LogRecord("process_engine.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    def test_json_with_correlation_fields(self):
        formatter = StructuredFormatter()

        entry = json.loads(formatter.format(_record(execution_id="e-1", tenant_id="t-1")))

        assert entry["message"] == "Running process"
        assert entry["level"] == "INFO"
        assert entry["execution_id"] == "e-1"
        assert entry["tenant_id"] == "t-1"
        assert "journey_id" not in entry
        assert "timestamp" in entry

    def test_without_timestamp(self):
        entry = json.loads(StructuredFormatter(include_timestamp=False).format(_record()))

        assert "timestamp" not in entry

    def test_exception_text(self):
        try:
            raise ValueError("bad")
        except ValueError:
            import sys
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))

        assert "ValueError: bad" in entry["exception"]


class TestHumanReadableFormatter:
    """Tests for HumanReadableFormatter."""

    def test_appends_context(self):
        line = HumanReadableFormatter(include_timestamp=False).format(
            _record(execution_id="e-1", worker_id="w-1")
        )

        assert line == "process_engine.test - INFO - Running process [execution_id=e-1 worker_id=w-1]"

    def test_no_context(self):
        line = HumanReadableFormatter(include_timestamp=False).format(_record())

        assert line == "process_engine.test - INFO - Running process"


class TestExecutionLogContext:
    """Tests for ExecutionLogContext."""

    def test_nested_contexts_merge(self):
        with ExecutionLogContext(execution_id="e-1", tenant_id="t-1"):
            with ExecutionLogContext(process_id="echo", tenant_id=None):
                assert ExecutionLogContext.get_current() == {
                    "execution_id": "e-1",
                    "tenant_id": "t-1",
                    "process_id": "echo",
                }
            assert ExecutionLogContext.get_current() == {"execution_id": "e-1", "tenant_id": "t-1"}

        assert ExecutionLogContext.get_current() == {}

    def test_context_fields_reach_formatter(self, caplog):
        """Test fields captured from the context are rendered on the line."""
        logger = logging.getLogger("process_engine.test")

        with caplog.at_level(logging.WARNING, logger="process_engine.test"):
            with ExecutionLogContext(execution_id="e-1", worker_id="w-1"):
                logger.warning("slow", extra=ExecutionLogContext.get_current())

        line = HumanReadableFormatter(include_timestamp=False).format(caplog.records[0])
        assert line == "process_engine.test - WARNING - slow [execution_id=e-1 worker_id=w-1]"


class TestCorrelation:
    """Tests for the shared correlation lookup."""

    def test_structured_uses_every_field(self):
        fields = StructuredFormatter().correlation(_record(journey_id="j-1", state="Running", other="x"))

        assert fields == {"journey_id": "j-1", "state": "Running"}

    def test_human_readable_keeps_suffix_fields_in_order(self):
        fields = HumanReadableFormatter().correlation(
            _record(worker_id="w-1", journey_id="j-1", execution_id="e-1")
        )

        assert list(fields) == ["execution_id", "worker_id"]
