"""
Execution Contracts - Data models for process executions and results.

Uses dataclasses with to_dict/from_row helpers, following the job contracts
used by the queue.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from vector.contracts.models import parse_timestamp

from ..core.values import JsonObject, loads_object


class ExecutionState(str, Enum):
    """State of an execution in the queue."""
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal states are never left."""
        return self in TERMINAL_STATES

    def can_transition_to(self, target: "ExecutionState") -> bool:
        """Check whether ``self -> target`` is allowed by the state machine."""
        return target in _TRANSITIONS[self]


TERMINAL_STATES: FrozenSet[ExecutionState] = frozenset({
    ExecutionState.COMPLETED,
    ExecutionState.FAILED,
    ExecutionState.CANCELLED,
})

_TRANSITIONS = {
    ExecutionState.PENDING: frozenset({ExecutionState.RUNNING, ExecutionState.CANCELLED}),
    ExecutionState.RUNNING: TERMINAL_STATES,
    ExecutionState.COMPLETED: frozenset(),
    ExecutionState.FAILED: frozenset(),
    ExecutionState.CANCELLED: frozenset(),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Execution:
    """
    One run of one process for one tenant within one journey.

    Attributes:
        execution_id: Unique identifier for this execution
        tenant_id: Owning tenant
        journey_id: Journey the process runs against
        process_id: Registered process identifier
        state: Current state
        inputs: Input parameter map
        created_at: When the execution was queued/created
        started_at: When a worker or caller started it
        completed_at: When it reached a terminal state
        error_message: Failure reason for Failed/Cancelled executions
        worker_id: Worker that claimed a queued execution
    """
    execution_id: str
    tenant_id: str
    journey_id: str
    process_id: str
    state: ExecutionState = ExecutionState.PENDING
    inputs: JsonObject = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    worker_id: Optional[str] = None

    @classmethod
    def create_new(
        cls,
        tenant_id: str,
        journey_id: str,
        process_id: str,
        inputs: Optional[JsonObject] = None,
        state: ExecutionState = ExecutionState.PENDING,
        created_at: Optional[datetime] = None,
    ) -> "Execution":
        """Create a new execution with a generated id."""
        created = created_at or utc_now()
        return cls(
            execution_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            journey_id=journey_id,
            process_id=process_id,
            state=state,
            inputs=inputs or {},
            created_at=created,
            started_at=created if state == ExecutionState.RUNNING else None,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "execution_id": self.execution_id,
            "tenant_id": self.tenant_id,
            "journey_id": self.journey_id,
            "process_id": self.process_id,
            "state": self.state.value,
            "inputs": self.inputs,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "error_message": self.error_message,
            "worker_id": self.worker_id,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Execution":
        """Create from database row."""
        inputs = row.get("inputs_json")
        return cls(
            execution_id=str(row["execution_id"]),
            tenant_id=str(row["tenant_id"]),
            journey_id=str(row["journey_id"]),
            process_id=row["process_id"],
            state=ExecutionState(row["state"]),
            inputs=loads_object(inputs) if isinstance(inputs, str) else (inputs or {}),
            created_at=parse_timestamp(row["created_at"]),
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            error_message=row.get("error_message"),
            worker_id=row.get("worker_id"),
        )


@dataclass
class ProcessResultRecord:
    """
    Persisted output of a Completed execution.

    Created once together with the Completed transition; never updated.
    """
    execution_id: str
    output: JsonObject = field(default_factory=dict)
    metadata: JsonObject = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    result_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "result_id": self.result_id,
            "execution_id": self.execution_id,
            "output": self.output,
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ProcessResultRecord":
        """Create from database row."""
        return cls(
            result_id=str(row["result_id"]),
            execution_id=str(row["execution_id"]),
            output=loads_object(row.get("output_json")),
            metadata=loads_object(row.get("metadata_json")),
            created_at=parse_timestamp(row["created_at"]),
        )


@dataclass
class JourneyRecord:
    """Opaque journey scope and its owning tenant."""
    journey_id: str
    tenant_id: str
    name: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "journey_id": self.journey_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JourneyRecord":
        """Create from database row."""
        return cls(
            journey_id=str(row["journey_id"]),
            tenant_id=str(row["tenant_id"]),
            name=row.get("name"),
            created_at=parse_timestamp(row["created_at"]),
        )


@dataclass
class ExecutionResult:
    """
    Outcome returned to the caller of a synchronous execution.

    Attributes:
        execution_id: The execution that was run
        state: Terminal state reached
        success: True iff the execution Completed
        output: Process output (empty unless Completed)
        error_message: Failure reason
        validation_errors: Input validation errors, if validation failed
        metadata: Process-supplied metadata
    """
    execution_id: str
    state: ExecutionState
    success: bool
    output: JsonObject = field(default_factory=dict)
    error_message: Optional[str] = None
    validation_errors: list = field(default_factory=list)
    metadata: JsonObject = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "execution_id": self.execution_id,
            "state": self.state.value,
            "success": self.success,
            "output": self.output,
        }
        if self.error_message:
            result["error_message"] = self.error_message
        if self.validation_errors:
            result["validation_errors"] = self.validation_errors
        if self.metadata:
            result["metadata"] = self.metadata
        return result
