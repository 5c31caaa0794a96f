"""
Contracts for the process execution engine.
"""

from .execution_contracts import (
    Execution,
    ExecutionResult,
    ExecutionState,
    JourneyRecord,
    ProcessResultRecord,
    TERMINAL_STATES,
)

__all__ = [
    "Execution",
    "ExecutionResult",
    "ExecutionState",
    "JourneyRecord",
    "ProcessResultRecord",
    "TERMINAL_STATES",
]
