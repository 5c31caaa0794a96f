"""
Unit tests for the ExecutionCoordinator.

Tests for:
- Queueing (Pending rows, unknown processes, non-JSON inputs)
- Synchronous execution and its terminal states
- Journey resolution and tenant ownership
- History ordering and cancellation
"""

import threading

import pytest

from process_engine.contracts.execution_contracts import ExecutionState
from process_engine.core.exceptions import (
    AccessDeniedError,
    ExecutionCancelledError,
    ExecutionNotFoundError,
    InvalidInputValueError,
    InvalidStateTransitionError,
    JourneyNotFoundError,
    ProcessExecutionError,
    UnknownProcessError,
    ValidationFailedError,
)
from process_engine.processes.base import AnalyticalProcess, ProcessOutcome


class TestQueue:
    """Tests for ExecutionCoordinator.queue()."""

    def test_queue_creates_pending_row(self, coordinator, execution_store):
        """Test queueing returns immediately with a Pending execution."""
        execution_id = coordinator.queue("echo", "tenant-a", "journey-a", {"message": "hi"})

        execution = execution_store.get_execution(execution_id)
        assert execution.state == ExecutionState.PENDING
        assert execution.inputs == {"message": "hi"}
        assert execution.started_at is None
        assert execution_store.get_result(execution_id) is None

    def test_queue_unknown_process(self, coordinator, execution_store):
        """Test queueing an unregistered process fails without a row."""
        with pytest.raises(UnknownProcessError):
            coordinator.queue("missing", "tenant-a", "journey-a", {})

        assert execution_store.count_executions() == 0

    def test_queue_rejects_non_json_inputs(self, coordinator, execution_store):
        """Test inputs must be JSON-compatible values."""
        with pytest.raises(InvalidInputValueError):
            coordinator.queue("echo", "tenant-a", "journey-a", {"message": {1, 2}})

        assert execution_store.count_executions() == 0


class TestExecuteSync:
    """Tests for ExecutionCoordinator.execute_sync()."""

    def test_success_persists_result(self, coordinator, execution_store):
        """Test a successful run ends Completed with exactly one Result."""
        result = coordinator.execute_sync("echo", "tenant-a", "journey-a", {"message": "hello"})

        assert result.success is True
        assert result.state == ExecutionState.COMPLETED
        assert result.output == {"echo": "hello", "tenant": "tenant-a"}
        assert result.metadata == {"length": 5}

        execution = execution_store.get_execution(result.execution_id)
        assert execution.state == ExecutionState.COMPLETED
        assert execution.started_at is not None
        assert execution.completed_at >= execution.started_at
        assert execution_store.count_results(result.execution_id) == 1
        assert execution_store.get_result(result.execution_id).output == result.output

    def test_progress_sink_receives_updates(self, coordinator):
        """Test progress reports reach the supplied sink."""
        updates = []

        coordinator.execute_sync(
            "echo", "tenant-a", "journey-a", {"message": "hi"}, progress=updates.append
        )

        assert len(updates) == 1
        assert updates[0].percent_complete == 100

    def test_unknown_process_creates_no_row(self, coordinator, execution_store):
        """Test an unregistered process raises before any row exists."""
        with pytest.raises(UnknownProcessError):
            coordinator.execute_sync("not-registered", "tenant-a", "journey-a", {})

        assert execution_store.count_executions() == 0

    def test_missing_journey(self, coordinator, execution_store):
        """Test an unknown journey raises JourneyNotFoundError."""
        with pytest.raises(JourneyNotFoundError):
            coordinator.execute_sync("echo", "tenant-a", "no-such-journey", {"message": "x"})

        assert execution_store.count_executions() == 0

    def test_journey_of_other_tenant(self, coordinator, execution_store):
        """Test a journey owned by another tenant raises AccessDeniedError."""
        with pytest.raises(AccessDeniedError):
            coordinator.execute_sync("echo", "tenant-a", "journey-b", {"message": "x"})

        assert execution_store.count_executions() == 0

    def test_validation_failure_is_returned(self, coordinator, execution_store):
        """Test invalid inputs end Failed without raising."""
        result = coordinator.execute_sync("echo", "tenant-a", "journey-a", {})

        assert result.success is False
        assert result.state == ExecutionState.FAILED
        assert result.error_message.startswith("Input validation failed: ")
        assert "Missing required input: message" in result.validation_errors

        execution = execution_store.get_execution(result.execution_id)
        assert execution.state == ExecutionState.FAILED
        assert execution.error_message == result.error_message
        assert execution_store.get_result(result.execution_id) is None

    def test_reported_failure(self, coordinator, execution_store):
        """Test a process-reported failure ends Failed with its message and no Result."""
        result = coordinator.execute_sync("reported-failure", "tenant-a", "journey-a", {})

        assert result.success is False
        assert result.state == ExecutionState.FAILED
        assert result.error_message == "nothing to analyse"
        assert execution_store.get_execution(result.execution_id).error_message == "nothing to analyse"
        assert execution_store.count_results() == 0

    def test_raising_process_is_recorded_and_reraised(self, coordinator, execution_store):
        """Test an exception in execute() ends Failed and surfaces as ProcessExecutionError."""
        with pytest.raises(ProcessExecutionError) as exc_info:
            coordinator.execute_sync("exploding", "tenant-a", "journey-a", {})

        error = exc_info.value
        assert isinstance(error.__cause__, RuntimeError)
        assert error.process_id == "exploding"

        execution = execution_store.get_execution(error.execution_id)
        assert execution.state == ExecutionState.FAILED
        assert execution.error_message == "boom"
        assert execution_store.count_results() == 0

    def test_cancelled_process(self, coordinator, execution_store):
        """Test a process observing the cancel event ends Cancelled."""
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(ExecutionCancelledError):
            coordinator.execute_sync("cancelling", "tenant-a", "journey-a", {}, cancel_event=cancel_event)

        history = coordinator.get_history("journey-a")
        assert history[0].state == ExecutionState.CANCELLED
        assert history[0].error_message == "stopped by request"

    def test_non_json_output_fails_execution(self, coordinator, execution_store):
        """Test output that is not JSON-compatible is not persisted."""
        with pytest.raises(ProcessExecutionError) as exc_info:
            coordinator.execute_sync("bad-output", "tenant-a", "journey-a", {})

        assert isinstance(exc_info.value.__cause__, InvalidInputValueError)
        execution = execution_store.get_execution(exc_info.value.execution_id)
        assert execution.state == ExecutionState.FAILED
        assert execution_store.count_results() == 0

    def test_validation_error_from_body_is_reraised(self, coordinator, execution_store):
        """Test a ValidationFailedError raised inside execute() is treated as a process error."""

        class LateCheckProcess(AnalyticalProcess):
            process_id = "late-check"

            def execute(self, context, cancel_event=None):
                raise ValidationFailedError("downstream check failed", validation_errors=["x"])

        coordinator.registry.register(LateCheckProcess)

        with pytest.raises(ProcessExecutionError) as exc_info:
            coordinator.execute_sync("late-check", "tenant-a", "journey-a", {})

        assert isinstance(exc_info.value.__cause__, ValidationFailedError)
        execution = execution_store.get_execution(exc_info.value.execution_id)
        assert execution.state == ExecutionState.FAILED
        assert execution.error_message == "downstream check failed"

    def test_raising_validator_is_recorded_and_reraised(self, coordinator, execution_store):
        """Test an unexpected error from validate_inputs() ends Failed and is raised."""

        class BrokenValidatorProcess(AnalyticalProcess):
            process_id = "broken-validator"

            def validate_inputs(self, context):
                raise KeyError("schema")

            def execute(self, context, cancel_event=None):
                return ProcessOutcome.ok({})

        coordinator.registry.register(BrokenValidatorProcess)

        with pytest.raises(ProcessExecutionError) as exc_info:
            coordinator.execute_sync("broken-validator", "tenant-a", "journey-a", {})

        assert execution_store.get_execution(exc_info.value.execution_id).state == ExecutionState.FAILED


class TestTerminalStates:
    """Tests that terminal executions never change."""

    def test_completed_cannot_be_failed(self, coordinator, execution_store):
        """Test a Completed execution rejects further transitions."""
        result = coordinator.execute_sync("echo", "tenant-a", "journey-a", {"message": "x"})

        with pytest.raises(InvalidStateTransitionError):
            execution_store.fail(result.execution_id, "late failure")
        with pytest.raises(InvalidStateTransitionError):
            execution_store.complete(result.execution_id, {"again": True})

        execution = execution_store.get_execution(result.execution_id)
        assert execution.state == ExecutionState.COMPLETED
        assert execution.error_message is None
        assert execution_store.count_results(result.execution_id) == 1

    def test_failed_cannot_be_claimed(self, coordinator, execution_store):
        """Test a Failed execution cannot move back to Running."""
        result = coordinator.execute_sync("reported-failure", "tenant-a", "journey-a", {})

        assert execution_store.claim(result.execution_id) is False
        assert execution_store.get_execution(result.execution_id).state == ExecutionState.FAILED


class TestHistoryAndControl:
    """Tests for history, lookup and cancellation."""

    def test_history_newest_first(self, coordinator):
        """Test history is ordered by creation time, newest first."""
        first = coordinator.queue("echo", "tenant-a", "journey-a", {"message": "1"})
        second = coordinator.execute_sync("echo", "tenant-a", "journey-a", {"message": "2"}).execution_id
        third = coordinator.queue("echo", "tenant-a", "journey-a", {"message": "3"})

        history = coordinator.get_history("journey-a")

        assert [e.execution_id for e in history] == [third, second, first]

    def test_history_filters_by_tenant(self, coordinator):
        """Test the tenant filter excludes other tenants' rows."""
        coordinator.queue("echo", "tenant-a", "journey-a", {"message": "1"})

        assert coordinator.get_history("journey-a", tenant_id="tenant-b") == []
        assert len(coordinator.get_history("journey-a", tenant_id="tenant-a")) == 1

    def test_get_execution_not_found(self, coordinator):
        """Test looking up an unknown execution raises."""
        with pytest.raises(ExecutionNotFoundError):
            coordinator.get_execution("does-not-exist")

    def test_cancel_pending(self, coordinator, execution_store):
        """Test a Pending execution can be cancelled once."""
        execution_id = coordinator.queue("echo", "tenant-a", "journey-a", {"message": "x"})

        assert coordinator.cancel(execution_id) is True
        assert coordinator.cancel(execution_id) is False

        execution = coordinator.get_execution(execution_id)
        assert execution.state == ExecutionState.CANCELLED
        assert execution.completed_at is not None

    def test_cancel_completed_is_refused(self, coordinator):
        """Test a finished execution is not cancelled."""
        result = coordinator.execute_sync("echo", "tenant-a", "journey-a", {"message": "x"})

        assert coordinator.cancel(result.execution_id) is False
        assert coordinator.get_execution(result.execution_id).state == ExecutionState.COMPLETED

    def test_cancel_unknown(self, coordinator):
        """Test cancelling an unknown execution raises."""
        with pytest.raises(ExecutionNotFoundError):
            coordinator.cancel("does-not-exist")

    def test_list_processes(self, coordinator):
        """Test registered processes are described with their inputs."""
        infos = {info.process_id: info for info in coordinator.list_processes()}

        assert "echo" in infos
        assert infos["echo"].inputs[0]["name"] == "message"
