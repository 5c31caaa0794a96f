"""
Custom exceptions for the process execution engine.
"""

from typing import List, Optional


class EngineError(Exception):
    """Base exception for all process engine errors."""
    pass


class UnknownProcessError(EngineError):
    """
    Raised when a process identifier is not present in the registry.

    Raised before any execution row is created.
    """

    def __init__(self, process_id: str):
        super().__init__(f"Process {process_id} not registered")
        self.process_id = process_id


class JourneyNotFoundError(EngineError):
    """Raised when a journey cannot be resolved."""

    def __init__(self, journey_id: str, tenant_id: Optional[str] = None):
        message = f"Journey {journey_id} not found"
        if tenant_id:
            message += f" for tenant {tenant_id}"
        super().__init__(message)
        self.journey_id = journey_id
        self.tenant_id = tenant_id


class AccessDeniedError(EngineError):
    """Raised when a journey exists but belongs to another tenant."""

    def __init__(self, journey_id: str, tenant_id: str):
        super().__init__(f"Tenant {tenant_id} may not access journey {journey_id}")
        self.journey_id = journey_id
        self.tenant_id = tenant_id


class ExecutionNotFoundError(EngineError):
    """Raised when an execution id does not exist."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution {execution_id} not found")
        self.execution_id = execution_id


class ValidationFailedError(EngineError):
    """
    Process-level input validation failed.

    Raised when:
    - Required inputs are missing
    - Input values do not match the process input definition
    - A process-specific validator rejects the inputs
    """

    def __init__(self, message: str, validation_errors: List[str] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or []


class ProcessExecutionError(EngineError):
    """
    A process body raised an unexpected exception.

    The execution has already been recorded as Failed when this is raised;
    the original exception is available as ``__cause__``.
    """

    def __init__(self, message: str, execution_id: str = None, process_id: str = None):
        super().__init__(message)
        self.execution_id = execution_id
        self.process_id = process_id


class ExecutionCancelledError(EngineError):
    """
    Raised by a process that observed its cancel event and stopped early.

    The coordinator records the execution as Cancelled.
    """
    pass


class InvalidStateTransitionError(EngineError):
    """Raised when an execution state change violates the state machine."""

    def __init__(self, execution_id: str, current: str, target: str):
        super().__init__(
            f"Execution {execution_id} cannot move from {current} to {target}"
        )
        self.execution_id = execution_id
        self.current = current
        self.target = target


class InvalidInputValueError(EngineError):
    """Raised when an input or output map holds a non JSON-compatible value."""
    pass


class EngineStorageError(EngineError):
    """
    Error persisting or retrieving execution state.

    Raised when:
    - The database connection cannot be established
    - An execution or result row cannot be written
    - The pending batch query fails
    """
    pass


class EngineConfigError(EngineError):
    """
    Error in engine configuration.

    Raised when:
    - Configuration file is missing or invalid
    - An unknown database backend is requested
    - Configuration values are out of valid range
    """
    pass


class ProviderError(EngineError):
    """
    Error communicating with a cognitive backend.

    Raised when:
    - Provider is unreachable
    - Request times out
    - Provider returns an error response
    """

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
