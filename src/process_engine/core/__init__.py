"""
Core subpackage for the process execution engine.

Contains configuration, exceptions, JSON value helpers and logging utilities.
"""

from .config import EngineConfig
from .exceptions import (
    EngineError,
    UnknownProcessError,
    JourneyNotFoundError,
    ExecutionNotFoundError,
    AccessDeniedError,
    ValidationFailedError,
    ProcessExecutionError,
    ExecutionCancelledError,
    InvalidStateTransitionError,
    InvalidInputValueError,
    EngineStorageError,
    EngineConfigError,
    ProviderError,
)
from .values import JsonValue, JsonObject, ensure_json_object, ensure_json_value

__all__ = [
    # Config
    "EngineConfig",
    # Exceptions
    "EngineError",
    "UnknownProcessError",
    "JourneyNotFoundError",
    "ExecutionNotFoundError",
    "AccessDeniedError",
    "ValidationFailedError",
    "ProcessExecutionError",
    "ExecutionCancelledError",
    "InvalidStateTransitionError",
    "InvalidInputValueError",
    "EngineStorageError",
    "EngineConfigError",
    "ProviderError",
    # Values
    "JsonValue",
    "JsonObject",
    "ensure_json_object",
    "ensure_json_value",
]
