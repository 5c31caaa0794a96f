"""
Sample processes and wiring for engine tests.
"""

import threading
from typing import Optional

import pytest

from process_engine.core.exceptions import ExecutionCancelledError
from process_engine.processes.base import (
    AnalyticalProcess,
    InputDefinition,
    ProcessContext,
    ProcessOutcome,
    ProcessProgress,
    SharedServices,
)
from process_engine.processes.registry import ProcessRegistry
from process_engine.runners.coordinator import ExecutionCoordinator


class EchoProcess(AnalyticalProcess):
    """Returns its inputs as output."""

    process_id = "echo"
    name = "Echo"
    description = "Echo inputs back"

    def input_definition(self) -> InputDefinition:
        return InputDefinition().add_text_input("message", "Message to echo")

    def execute(self, context: ProcessContext, cancel_event: Optional[threading.Event] = None):
        context.report_progress(ProcessProgress(current_item="message", total_count=1, processed_count=1))
        return ProcessOutcome.ok(
            {"echo": context.inputs["message"], "tenant": context.tenant_id},
            metadata={"length": len(context.inputs["message"])},
        )


class ReportedFailureProcess(AnalyticalProcess):
    """Returns a failed outcome."""

    process_id = "reported-failure"
    name = "Reported Failure"

    def execute(self, context, cancel_event=None):
        return ProcessOutcome.failure("nothing to analyse")


class ExplodingProcess(AnalyticalProcess):
    """Raises from execute()."""

    process_id = "exploding"
    name = "Exploding"

    def execute(self, context, cancel_event=None):
        raise RuntimeError("boom")


class CancellingProcess(AnalyticalProcess):
    """Raises ExecutionCancelledError when the cancel event is set, else completes."""

    process_id = "cancelling"
    name = "Cancelling"

    def execute(self, context, cancel_event=None):
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionCancelledError("stopped by request")
        return ProcessOutcome.ok({"cancelled": False})


class BadOutputProcess(AnalyticalProcess):
    """Returns output that is not JSON-compatible."""

    process_id = "bad-output"
    name = "Bad Output"

    def execute(self, context, cancel_event=None):
        return ProcessOutcome.ok({"value": object()})


SAMPLE_PROCESSES = (
    EchoProcess,
    ReportedFailureProcess,
    ExplodingProcess,
    CancellingProcess,
    BadOutputProcess,
)


@pytest.fixture
def registry() -> ProcessRegistry:
    """Registry holding the sample processes."""
    registry = ProcessRegistry()
    for process_class in SAMPLE_PROCESSES:
        registry.register(process_class)
    return registry


@pytest.fixture
def coordinator(registry, execution_store, clock) -> ExecutionCoordinator:
    """Coordinator over a temporary SQLite store with one journey per tenant."""
    execution_store.register_journey("journey-a", "tenant-a")
    execution_store.register_journey("journey-b", "tenant-b")
    return ExecutionCoordinator(registry, execution_store, SharedServices(), now=clock)
