"""
Logging utilities for the process execution engine.

Provides structured logging with correlation fields so that a single
execution can be traced across the coordinator, the worker and the
embedding store (execution -> tenant -> journey -> process).
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence


CORRELATION_FIELDS = (
    "execution_id",
    "tenant_id",
    "journey_id",
    "process_id",
    "worker_id",
    "state",
)


class _CorrelationFormatter(logging.Formatter):
    """Base for formatters that surface the correlation fields of a record."""

    fields: Sequence[str] = CORRELATION_FIELDS

    def correlation(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Correlation fields attached to ``record`` through ``extra=``."""
        found = {}
        for name in self.fields:
            value = getattr(record, name, None)
            if value is not None:
                found[name] = value
        return found


class StructuredFormatter(_CorrelationFormatter):
    """
    One JSON object per line.

    Keys are ``level``, ``logger`` and ``message``, then every correlation
    field present on the record, then ``timestamp`` (UTC ISO-8601) unless
    disabled and ``exception`` when the record carries exc_info.
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        entry = dict(level=record.levelname, logger=record.name, message=record.getMessage())
        entry.update(self.correlation(record))
        if self.include_timestamp:
            entry["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(_CorrelationFormatter):
    """``[asctime - ]name - LEVEL - message [execution_id=.. tenant_id=.. worker_id=..]``"""

    fields = ("execution_id", "tenant_id", "worker_id")

    def __init__(self, include_timestamp: bool = True):
        prefix = "%(asctime)s - " if include_timestamp else ""
        super().__init__(prefix + "%(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = " ".join(f"{k}={v}" for k, v in self.correlation(record).items())
        return f"{line} [{pairs}]" if pairs else line


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    include_timestamp: bool = True,
) -> None:
    """
    Configure logging for the engine and vector packages.

    Handlers are only added once, so calling this repeatedly is harmless.

    Args:
        level: Logging level (default: INFO)
        structured: If True, output JSON lines; otherwise human-readable
        include_timestamp: Whether to include timestamps
    """
    for package in ("process_engine", "vector"):
        package_logger = logging.getLogger(package)
        package_logger.setLevel(level)

        if package_logger.handlers:
            continue

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        if structured:
            handler.setFormatter(StructuredFormatter(include_timestamp=include_timestamp))
        else:
            handler.setFormatter(HumanReadableFormatter(include_timestamp=include_timestamp))
        package_logger.addHandler(handler)


class ExecutionLogContext:
    """
    Context manager carrying correlation fields for the current execution.

    Example:
        >>> with ExecutionLogContext(execution_id="abc", tenant_id="t1"):
        ...     logger.info("Running process", extra=ExecutionLogContext.get_current())
    """

    # Per-thread so the worker thread and caller threads do not mix fields
    _local = threading.local()

    def __init__(self, **fields: Any):
        self.context = {k: v for k, v in fields.items() if v is not None}
        self._previous: Optional["ExecutionLogContext"] = None

    def __enter__(self) -> "ExecutionLogContext":
        self._previous = getattr(ExecutionLogContext._local, "current", None)
        if self._previous is not None:
            merged = self._previous.context.copy()
            merged.update(self.context)
            self.context = merged
        ExecutionLogContext._local.current = self
        return self

    def __exit__(self, *args) -> None:
        ExecutionLogContext._local.current = self._previous

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        """Get the current correlation context."""
        current = getattr(cls._local, "current", None)
        if current is None:
            return {}
        return current.context.copy()

