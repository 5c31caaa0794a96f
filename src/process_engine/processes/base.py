"""
Process contract - base types for analytical processes.

This module provides the types a process implementation works with:
- AnalyticalProcess: the contract every process implements
- InputDefinition / InputField: declared input schema
- ProcessContext: execution context passed to a process
- ProcessOutcome: structured result returned by a process
- ProcessProgress: progress snapshot sent to an optional sink
- SharedServices: handle to collaborators (cognitive backend, embeddings)
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..core.values import JsonObject


logger = logging.getLogger(__name__)


class ProcessCategory(str, Enum):
    """Category used to organize processes."""
    METHODOLOGICAL = "Methodological"
    DEVELOPMENTAL = "Developmental"
    ANALYTICAL = "Analytical"
    COMPOSITIONAL = "Compositional"
    REFLECTIVE = "Reflective"


class InputFieldType(str, Enum):
    """Types of input fields."""
    TEXT_INPUT = "TextInput"
    TEXT_AREA = "TextArea"
    DROPDOWN = "Dropdown"
    MULTI_SELECT = "MultiSelect"
    SCOPE_SELECTOR = "ScopeSelector"
    DOCUMENT_SELECTOR = "DocumentSelector"
    NUMBER_INPUT = "NumberInput"
    DATE_PICKER = "DatePicker"
    # Structured list of objects; no dedicated UI widget
    OBJECT_LIST = "ObjectList"


@dataclass
class InputField:
    """Individual input field definition."""
    name: str
    description: str
    field_type: InputFieldType
    required: bool = True
    options: List[str] = field(default_factory=list)
    default_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "name": self.name,
            "description": self.description,
            "type": self.field_type.value,
            "required": self.required,
        }
        if self.options:
            result["options"] = list(self.options)
        if self.default_value is not None:
            result["default_value"] = self.default_value
        return result

    def check(self, value: Any) -> Optional[str]:
        """
        Check a supplied value against this field.

        Returns:
            An error message, or None if the value is acceptable
        """
        ft = self.field_type
        if ft in (InputFieldType.TEXT_INPUT, InputFieldType.TEXT_AREA,
                  InputFieldType.SCOPE_SELECTOR):
            if not isinstance(value, str):
                return f"{self.name} must be a string"
        elif ft == InputFieldType.NUMBER_INPUT:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return f"{self.name} must be a number"
        elif ft == InputFieldType.DROPDOWN:
            if value not in self.options:
                return f"{self.name} must be one of: {', '.join(self.options)}"
        elif ft == InputFieldType.MULTI_SELECT:
            if not isinstance(value, list):
                return f"{self.name} must be a list"
            unknown = [v for v in value if v not in self.options]
            if unknown:
                return f"{self.name} has unknown options: {unknown}"
        elif ft == InputFieldType.DOCUMENT_SELECTOR:
            if isinstance(value, str):
                return None
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                return f"{self.name} must be a document id or a list of document ids"
        elif ft == InputFieldType.DATE_PICKER:
            if not isinstance(value, str):
                return f"{self.name} must be an ISO date string"
            try:
                date.fromisoformat(value[:10])
            except ValueError:
                return f"{self.name} must be an ISO date string"
        elif ft == InputFieldType.OBJECT_LIST:
            if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
                return f"{self.name} must be a list of objects"
        return None


@dataclass
class InputDefinition:
    """
    Input requirements for a process.

    Builder methods return ``self`` so definitions read as one expression:

    Example:
        >>> InputDefinition().add_text_area("question", "Research question") \\
        ...     .add_dropdown("depth", "Depth", ["quick", "full"], required=False)
    """
    fields: List[InputField] = field(default_factory=list)

    def _add(self, name, description, field_type, required, options=None, default_value=None):
        self.fields.append(InputField(
            name=name,
            description=description,
            field_type=field_type,
            required=required,
            options=list(options or []),
            default_value=default_value,
        ))
        return self

    def add_text_input(self, name: str, description: str, required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.TEXT_INPUT, required)

    def add_text_area(self, name: str, description: str, required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.TEXT_AREA, required)

    def add_dropdown(self, name: str, description: str, options: List[str],
                     required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.DROPDOWN, required, options)

    def add_multi_select(self, name: str, description: str, options: List[str],
                         required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.MULTI_SELECT, required, options)

    def add_scope_selector(self, name: str, description: str, required: bool = False) -> "InputDefinition":
        return self._add(name, description, InputFieldType.SCOPE_SELECTOR, required)

    def add_document_selector(self, name: str, description: str, required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.DOCUMENT_SELECTOR, required)

    def add_number_input(self, name: str, description: str, required: bool = True,
                         default_value: Optional[float] = None) -> "InputDefinition":
        return self._add(name, description, InputFieldType.NUMBER_INPUT, required,
                         default_value=default_value)

    def add_date_picker(self, name: str, description: str, required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.DATE_PICKER, required)

    def add_object_list(self, name: str, description: str, required: bool = True) -> "InputDefinition":
        return self._add(name, description, InputFieldType.OBJECT_LIST, required)

    def get_field(self, name: str) -> Optional[InputField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def validate(self, inputs: Dict[str, Any]) -> List[str]:
        """
        Validate inputs against the declared fields.

        Missing optional fields and unknown extra keys are accepted.

        Returns:
            A list of validation errors (empty if valid)
        """
        errors = []
        for f in self.fields:
            value = inputs.get(f.name)
            if value is None or value == "" or value == []:
                if f.required:
                    errors.append(f"Missing required input: {f.name}")
                continue
            error = f.check(value)
            if error:
                errors.append(error)
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {"fields": [f.to_dict() for f in self.fields]}


@dataclass
class ProcessProgress:
    """Progress snapshot reported by a running process."""
    current_item: str = ""
    current_index: int = 0
    total_count: int = 0
    processed_count: int = 0
    failed_count: int = 0
    status_message: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def percent_complete(self) -> int:
        """Progress percentage (0-100)."""
        if self.total_count <= 0:
            return 0
        return int((self.processed_count + self.failed_count) * 100.0 / self.total_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_item": self.current_item,
            "current_index": self.current_index,
            "total_count": self.total_count,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "percent_complete": self.percent_complete,
            "status_message": self.status_message,
            "started_at": self.started_at.isoformat(),
        }


ProgressSink = Callable[[ProcessProgress], None]


class SharedServices:
    """
    Handle to collaborators a process may use.

    Attributes:
        backend: Cognitive backend (embeddings and text generation)
        embedding_generator: Tenant-isolating embedding generator
        embedding_store: Embedding store used for similarity search
    """

    _NAMED = ("backend", "embedding_generator", "embedding_store")

    def __init__(
        self,
        backend=None,
        embedding_generator=None,
        embedding_store=None,
        **extras: Any,
    ):
        self.backend = backend
        self.embedding_generator = embedding_generator
        self.embedding_store = embedding_store
        self.extras: Dict[str, Any] = dict(extras)

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a named service; extras are consulted after the attributes."""
        if name in self._NAMED:
            value = getattr(self, name)
            return default if value is None else value
        return self.extras.get(name, default)

    def require(self, name: str) -> Any:
        """Like get(), but raise LookupError when the service is missing."""
        value = self.get(name)
        if value is None:
            raise LookupError(f"Service not configured: {name}")
        return value


@dataclass
class ProcessContext:
    """
    Execution context passed to a process.

    Attributes:
        execution_id: The execution identifier
        tenant_id: Tenant the execution runs for
        journey_id: Journey scope
        inputs: Validated input map
        services: Shared services handle
        progress: Optional progress sink
    """
    execution_id: str
    tenant_id: str
    journey_id: str
    inputs: JsonObject = field(default_factory=dict)
    services: SharedServices = field(default_factory=SharedServices)
    progress: Optional[ProgressSink] = None

    def get_input(self, key: str, default: Any = None) -> Any:
        """Get an input value, falling back to ``default`` when absent."""
        value = self.inputs.get(key)
        return default if value is None else value

    def report_progress(self, progress: ProcessProgress) -> None:
        """
        Send a progress snapshot to the sink, if any.

        A failing sink is logged and ignored so reporting never fails the run.
        """
        if self.progress is None:
            return
        try:
            self.progress(progress)
        except Exception:
            logger.exception(
                f"Progress sink failed for execution {self.execution_id}",
                extra={"execution_id": self.execution_id},
            )

    def get_log_context(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "tenant_id": self.tenant_id,
            "journey_id": self.journey_id,
        }


@dataclass
class ProcessOutcome:
    """
    Result returned by a process.

    Attributes:
        success: Whether the process succeeded
        output: Output map (persisted as the Result when successful)
        error_message: Failure reason reported by the process
        metadata: Optional metadata stored with the Result
    """
    success: bool
    output: JsonObject = field(default_factory=dict)
    error_message: Optional[str] = None
    metadata: JsonObject = field(default_factory=dict)

    @classmethod
    def ok(cls, output: JsonObject, metadata: Optional[JsonObject] = None) -> "ProcessOutcome":
        """Create a successful outcome."""
        return cls(success=True, output=output, metadata=metadata or {})

    @classmethod
    def failure(cls, error_message: str, metadata: Optional[JsonObject] = None) -> "ProcessOutcome":
        """Create a failed outcome."""
        return cls(success=False, error_message=error_message, metadata=metadata or {})


class AnalyticalProcess(ABC):
    """
    Contract for all analytical processes.

    Subclasses set the class attributes and implement execute().
    validate_inputs() checks the declared input definition by default.
    """

    process_id: str = ""
    name: str = ""
    description: str = ""
    category: ProcessCategory = ProcessCategory.ANALYTICAL

    def input_definition(self) -> InputDefinition:
        """Define input requirements for this process."""
        return InputDefinition()

    def validate_inputs(self, context: ProcessContext) -> List[str]:
        """
        Validate the inputs in ``context``.

        Returns:
            A list of validation errors (empty if valid)
        """
        return self.input_definition().validate(context.inputs)

    @abstractmethod
    def execute(
        self,
        context: ProcessContext,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProcessOutcome:
        """
        Execute the process within a journey.

        Implementations may observe ``cancel_event`` and raise
        ExecutionCancelledError to stop early.
        """

    def capabilities(self) -> Dict[str, Any]:
        """Process capabilities for listing."""
        return {}
