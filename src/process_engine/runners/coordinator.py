"""
Execution Coordinator - runs processes synchronously or queues them.

The coordinator owns the execution state machine:

    Pending -> Running -> Completed | Failed | Cancelled
    Pending -> Cancelled

Synchronous executions are created directly in Running and driven on the
caller's thread. Queued executions are created in Pending and driven later
by the BackgroundWorker through ``drive()``, so both paths validate, execute
and record terminal states the same way.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..contracts.execution_contracts import (
    Execution,
    ExecutionResult,
    ExecutionState,
    ProcessResultRecord,
    utc_now,
)
from ..core.exceptions import (
    AccessDeniedError,
    EngineError,
    ExecutionCancelledError,
    ExecutionNotFoundError,
    JourneyNotFoundError,
    ProcessExecutionError,
    UnknownProcessError,
    ValidationFailedError,
)
from ..core.logging import ExecutionLogContext
from ..core.values import ensure_json_object
from ..processes.base import (
    AnalyticalProcess,
    ProcessContext,
    ProgressSink,
    SharedServices,
)
from ..processes.registry import ProcessInfo, ProcessRegistry
from ..storage.base import ExecutionStore


logger = logging.getLogger(__name__)


class ExecutionCoordinator:
    """
    Coordinates process executions against the execution store.

    Example:
        >>> coordinator = ExecutionCoordinator(default_registry(), store, services)
        >>> execution_id = coordinator.queue("segment-embedding", "tenant-a", "j1", inputs)
        >>> result = coordinator.execute_sync("segment-embedding", "tenant-a", "j1", inputs)
        >>> result.state
        <ExecutionState.COMPLETED: 'Completed'>
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        store: ExecutionStore,
        services: Optional[SharedServices] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            registry: Registered processes
            store: Execution store (queue, results, journeys)
            services: Shared services handed to every process
            now: Clock returning aware UTC datetimes (default: utc_now)
        """
        self.registry = registry
        self.store = store
        self.services = services or SharedServices()
        self.now = now or utc_now

    # =========================================================================
    # Entry points
    # =========================================================================

    def queue(
        self,
        process_id: str,
        tenant_id: str,
        journey_id: str,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Queue a process for background execution.

        Returns:
            The new execution id (state Pending)

        Raises:
            UnknownProcessError: If the process is not registered
            InvalidInputValueError: If inputs are not JSON-compatible
        """
        if not self.registry.is_registered(process_id):
            raise UnknownProcessError(process_id)
        inputs = ensure_json_object(inputs)

        execution = Execution.create_new(
            tenant_id=tenant_id,
            journey_id=journey_id,
            process_id=process_id,
            inputs=inputs,
            state=ExecutionState.PENDING,
            created_at=self.now(),
        )
        self.store.create_execution(execution)

        logger.info(
            f"Queued execution {execution.execution_id} of {process_id}",
            extra={
                "execution_id": execution.execution_id,
                "tenant_id": tenant_id,
                "journey_id": journey_id,
                "process_id": process_id,
            },
        )
        return execution.execution_id

    def execute_sync(
        self,
        process_id: str,
        tenant_id: str,
        journey_id: str,
        inputs: Optional[Dict[str, Any]] = None,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """
        Run a process on the caller's thread and record the outcome.

        Journey, ownership and process are resolved before any execution row
        is written. Input validation failures are recorded as Failed and
        returned, not raised.

        Returns:
            ExecutionResult in a terminal state

        Raises:
            JourneyNotFoundError: If the journey does not exist
            AccessDeniedError: If the journey belongs to another tenant
            UnknownProcessError: If the process is not registered
            InvalidInputValueError: If inputs are not JSON-compatible
            ProcessExecutionError: If the process raised (execution is Failed)
            ExecutionCancelledError: If the process was cancelled (execution is Cancelled)
        """
        self.resolve_journey(journey_id, tenant_id)
        if not self.registry.is_registered(process_id):
            raise UnknownProcessError(process_id)
        inputs = ensure_json_object(inputs)

        started_at = self.now()
        execution = Execution.create_new(
            tenant_id=tenant_id,
            journey_id=journey_id,
            process_id=process_id,
            inputs=inputs,
            state=ExecutionState.RUNNING,
            created_at=started_at,
        )
        self.store.create_execution(execution)

        return self.drive(execution, progress=progress, cancel_event=cancel_event)

    # =========================================================================
    # Shared execution path
    # =========================================================================

    def resolve_journey(self, journey_id: str, tenant_id: str) -> None:
        """
        Check that a journey exists and belongs to ``tenant_id``.

        Raises:
            JourneyNotFoundError: If the journey does not exist
            AccessDeniedError: If the journey belongs to another tenant
        """
        journey = self.store.get_journey(journey_id)
        if journey is None:
            raise JourneyNotFoundError(journey_id, tenant_id)
        if journey.tenant_id != str(tenant_id):
            raise AccessDeniedError(journey_id, tenant_id)

    def drive(
        self,
        execution: Execution,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """
        Validate, execute and record a Running execution.

        Used by execute_sync() and by the BackgroundWorker once a row has
        been claimed.

        Raises:
            ProcessExecutionError: If the process raised (execution is Failed)
            ExecutionCancelledError: If the process was cancelled (execution is Cancelled)
        """
        execution_id = execution.execution_id
        with ExecutionLogContext(
            execution_id=execution_id,
            tenant_id=execution.tenant_id,
            journey_id=execution.journey_id,
            process_id=execution.process_id,
            worker_id=execution.worker_id,
        ):
            logger.info(
                f"Running execution {execution_id} of {execution.process_id}",
                extra=ExecutionLogContext.get_current(),
            )
            context = ProcessContext(
                execution_id=execution_id,
                tenant_id=execution.tenant_id,
                journey_id=execution.journey_id,
                inputs=execution.inputs,
                services=self.services,
                progress=progress,
            )

            try:
                process = self.registry.create(execution.process_id)
                self._validate(process, context)
            except ValidationFailedError as e:
                self.store.fail(execution_id, str(e), completed_at=self.now())
                logger.warning(
                    f"Execution {execution_id} rejected: {e}",
                    extra=ExecutionLogContext.get_current(),
                )
                return ExecutionResult(
                    execution_id=execution_id,
                    state=ExecutionState.FAILED,
                    success=False,
                    error_message=str(e),
                    validation_errors=e.validation_errors,
                )
            except Exception as e:
                raise self._failed(execution, e) from e

            # Anything raised from here on came from the process body
            try:
                outcome = process.execute(context, cancel_event)

                if not outcome.success:
                    message = outcome.error_message or "Process reported failure"
                    self.store.fail(execution_id, message, completed_at=self.now())
                    logger.warning(
                        f"Execution {execution_id} failed: {message}",
                        extra=ExecutionLogContext.get_current(),
                    )
                    return ExecutionResult(
                        execution_id=execution_id,
                        state=ExecutionState.FAILED,
                        success=False,
                        error_message=message,
                        metadata=outcome.metadata,
                    )

                output = ensure_json_object(outcome.output, "output")
                metadata = ensure_json_object(outcome.metadata, "metadata")
                self.store.complete(execution_id, output, metadata, completed_at=self.now())

            except ExecutionCancelledError as e:
                self._record(self.store.mark_cancelled, execution_id, str(e) or "Cancelled")
                logger.info(
                    f"Execution {execution_id} cancelled",
                    extra=ExecutionLogContext.get_current(),
                )
                raise

            except Exception as e:
                raise self._failed(execution, e) from e

            logger.info(
                f"Execution {execution_id} completed",
                extra=ExecutionLogContext.get_current(),
            )
            return ExecutionResult(
                execution_id=execution_id,
                state=ExecutionState.COMPLETED,
                success=True,
                output=output,
                metadata=metadata,
            )

    def _validate(self, process: AnalyticalProcess, context: ProcessContext) -> None:
        errors = process.validate_inputs(context)
        if errors:
            raise ValidationFailedError(
                f"Input validation failed: {'; '.join(errors)}",
                validation_errors=list(errors),
            )

    def _failed(self, execution: Execution, error: Exception) -> ProcessExecutionError:
        """Record ``error`` as Failed and build the error to raise to the caller."""
        execution_id = execution.execution_id
        logger.exception(
            f"Execution {execution_id} raised: {error}",
            extra=ExecutionLogContext.get_current(),
        )
        self._record(self.store.fail, execution_id, str(error) or type(error).__name__)
        return ProcessExecutionError(
            f"Process {execution.process_id} failed: {error}",
            execution_id=execution_id,
            process_id=execution.process_id,
        )

    def _record(self, transition, execution_id: str, message: str) -> None:
        """Record a terminal transition while another error is propagating."""
        try:
            transition(execution_id, message, completed_at=self.now())
        except EngineError as record_error:
            logger.error(
                f"Could not record terminal state for {execution_id}: {record_error}",
                extra=ExecutionLogContext.get_current(),
            )

    # =========================================================================
    # Queries and control
    # =========================================================================

    def get_history(self, journey_id: str, tenant_id: Optional[str] = None) -> List[Execution]:
        """Executions of a journey, newest first."""
        return self.store.list_for_journey(journey_id, tenant_id=tenant_id)

    def get_execution(self, execution_id: str) -> Execution:
        """
        Get an execution by id.

        Raises:
            ExecutionNotFoundError: If it does not exist
        """
        execution = self.store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def get_result(self, execution_id: str) -> Optional[ProcessResultRecord]:
        """Get the Result of a Completed execution, or None."""
        return self.store.get_result(execution_id)

    def cancel(self, execution_id: str) -> bool:
        """
        Cancel a queued execution that no worker has claimed.

        Returns:
            True if the execution was cancelled, False if it already left Pending

        Raises:
            ExecutionNotFoundError: If it does not exist
        """
        cancelled = self.store.cancel_pending(execution_id, completed_at=self.now())
        if cancelled:
            logger.info(f"Cancelled execution {execution_id}", extra={"execution_id": execution_id})
        return cancelled

    def list_processes(self) -> List[ProcessInfo]:
        """Describe the registered processes."""
        return self.registry.list_processes()
