"""
Unit tests for the process contract and registry.

Tests for:
- InputDefinition validation per field type
- ProcessRegistry registration and lookup
- SharedServices lookup
- ProcessContext progress reporting
"""

from dataclasses import fields
from unittest.mock import MagicMock

import pytest

from process_engine.core.exceptions import UnknownProcessError
from process_engine.processes import (
    BUILTIN_PROCESSES,
    InputDefinition,
    InputFieldType,
    ProcessContext,
    ProcessOutcome,
    ProcessProgress,
    ProcessRegistry,
    SharedServices,
    default_registry,
)
from process_engine.processes.base import AnalyticalProcess


class EchoProcess(AnalyticalProcess):
    """Echoes a message."""

    process_id = "echo"
    name = "Echo"

    def input_definition(self):
        return InputDefinition().add_text_input("message", "Message to echo")

    def execute(self, context, cancel_event=None):
        return ProcessOutcome.ok({"echo": context.inputs["message"]})


class ExplodingProcess(AnalyticalProcess):
    process_id = "exploding"

    def execute(self, context, cancel_event=None):
        raise RuntimeError("boom")


class TestInputDefinition:
    """Tests for InputDefinition.validate()."""

    def test_missing_required(self):
        definition = InputDefinition().add_text_input("message", "Message")

        assert definition.validate({}) == ["Missing required input: message"]
        assert definition.validate({"message": ""}) == ["Missing required input: message"]

    def test_missing_optional_is_fine(self):
        definition = InputDefinition().add_text_area("notes", "Notes", required=False)

        assert definition.validate({}) == []

    def test_extra_keys_are_accepted(self):
        definition = InputDefinition().add_text_input("message", "Message")

        assert definition.validate({"message": "hi", "unused": 1}) == []

    def test_builder_chains(self):
        definition = (
            InputDefinition()
            .add_text_input("a", "A")
            .add_number_input("b", "B", required=False, default_value=3)
        )

        assert [f.name for f in definition.fields] == ["a", "b"]
        assert definition.get_field("b").default_value == 3
        assert definition.get_field("missing") is None

    @pytest.mark.parametrize(
        "definition,value,expected",
        [
            (InputDefinition().add_text_input("f", "F"), 5, "f must be a string"),
            (InputDefinition().add_number_input("f", "F"), "5", "f must be a number"),
            (InputDefinition().add_number_input("f", "F"), True, "f must be a number"),
            (InputDefinition().add_dropdown("f", "F", ["a", "b"]), "c", "f must be one of: a, b"),
            (InputDefinition().add_multi_select("f", "F", ["a"]), "a", "f must be a list"),
            (InputDefinition().add_date_picker("f", "F"), "yesterday", "f must be an ISO date string"),
            (InputDefinition().add_object_list("f", "F"), [1, 2], "f must be a list of objects"),
        ],
    )
    def test_type_errors(self, definition, value, expected):
        assert definition.validate({"f": value}) == [expected]

    @pytest.mark.parametrize(
        "definition,value",
        [
            (InputDefinition().add_number_input("f", "F"), 2.5),
            (InputDefinition().add_scope_selector("f", "F"), "scope-1"),
            (InputDefinition().add_dropdown("f", "F", ["a", "b"]), "b"),
            (InputDefinition().add_multi_select("f", "F", ["a", "b"]), ["a", "b"]),
            (InputDefinition().add_document_selector("f", "F"), "doc-1"),
            (InputDefinition().add_document_selector("f", "F"), ["doc-1", "doc-2"]),
            (InputDefinition().add_date_picker("f", "F"), "2024-03-01"),
            (InputDefinition().add_object_list("f", "F"), [{"a": 1}]),
        ],
    )
    def test_accepted_values(self, definition, value):
        assert definition.validate({"f": value}) == []

    def test_unknown_multi_select_option(self):
        definition = InputDefinition().add_multi_select("f", "F", ["a"])

        assert definition.validate({"f": ["a", "z"]}) == ["f has unknown options: ['z']"]

    def test_to_dict(self):
        data = InputDefinition().add_dropdown("depth", "Depth", ["quick"], required=False).to_dict()

        assert data["fields"][0] == {
            "name": "depth",
            "description": "Depth",
            "type": InputFieldType.DROPDOWN.value,
            "required": False,
            "options": ["quick"],
        }


class TestProcessRegistry:
    """Tests for ProcessRegistry."""

    def test_register_and_create(self):
        registry = ProcessRegistry()

        assert registry.register(EchoProcess) == "echo"
        assert "echo" in registry
        assert isinstance(registry.create("echo"), EchoProcess)

    def test_fresh_instance_per_create(self):
        registry = ProcessRegistry()
        registry.register(EchoProcess)

        assert registry.create("echo") is not registry.create("echo")

    def test_unknown_process(self):
        with pytest.raises(UnknownProcessError) as exc_info:
            ProcessRegistry().create("missing")

        assert exc_info.value.process_id == "missing"

    def test_register_factory_with_override(self):
        registry = ProcessRegistry()

        registry.register(lambda: ExplodingProcess(), process_id="boom")

        assert registry.list_ids() == ["boom"]
        assert isinstance(registry.create("boom"), ExplodingProcess)

    def test_factory_id_from_instance(self):
        """Test a factory without a process_id attribute is asked for one."""
        registry = ProcessRegistry()

        assert registry.register(lambda: EchoProcess()) == "echo"

    def test_overwrite_keeps_one_entry(self):
        registry = ProcessRegistry()
        registry.register(EchoProcess)
        registry.register(ExplodingProcess, process_id="echo")

        assert len(registry) == 1
        assert isinstance(registry.create("echo"), ExplodingProcess)

    def test_list_processes(self):
        """Test the listing carries the declared input schema."""
        registry = ProcessRegistry()
        registry.register(EchoProcess)

        info = registry.list_processes()[0]

        assert info.process_id == "echo"
        assert info.name == "Echo"
        assert info.to_dict()["inputs"][0]["name"] == "message"
        assert info.to_dict()["category"] == "Analytical"

    def test_default_registry(self):
        registry = default_registry()

        assert registry.list_ids() == [p.process_id for p in BUILTIN_PROCESSES]
        assert "segment-embedding" in registry


class TestSharedServices:
    """Tests for SharedServices."""

    def test_named_and_extra_services(self):
        backend = object()
        services = SharedServices(backend=backend, clock="tick")

        assert services.get("backend") is backend
        assert services.get("clock") == "tick"
        assert services.get("embedding_store", "none") == "none"

    def test_require_missing(self):
        with pytest.raises(LookupError, match="embedding_generator"):
            SharedServices().require("embedding_generator")


class TestProcessContext:
    """Tests for ProcessContext."""

    def test_fields(self):
        """Test optional selections such as a scope travel in inputs only."""
        context = ProcessContext("e-1", "t", "j", inputs={"scope_id": "s-1"})

        assert [f.name for f in fields(ProcessContext)] == [
            "execution_id",
            "tenant_id",
            "journey_id",
            "inputs",
            "services",
            "progress",
        ]
        assert context.get_input("scope_id") == "s-1"

    def test_get_input_default(self):
        context = ProcessContext("e-1", "t", "j", inputs={"a": None, "b": 0})

        assert context.get_input("a", "x") == "x"
        assert context.get_input("b", "x") == 0

    def test_report_progress_reaches_sink(self):
        sink = MagicMock()
        context = ProcessContext("e-1", "t", "j", progress=sink)
        progress = ProcessProgress(total_count=4, processed_count=1, failed_count=1)

        context.report_progress(progress)

        sink.assert_called_once_with(progress)
        assert progress.percent_complete == 50

    def test_failing_sink_does_not_raise(self):
        """Test a progress sink error is logged, not propagated."""
        sink = MagicMock(side_effect=RuntimeError("display gone"))
        context = ProcessContext("e-1", "t", "j", progress=sink)

        context.report_progress(ProcessProgress())

        sink.assert_called_once()

    def test_no_sink(self):
        ProcessContext("e-1", "t", "j").report_progress(ProcessProgress())

    def test_percent_without_total(self):
        assert ProcessProgress().percent_complete == 0


class TestProcessOutcome:
    """Tests for ProcessOutcome helpers."""

    def test_ok(self):
        outcome = ProcessOutcome.ok({"a": 1})

        assert outcome.success
        assert outcome.metadata == {}
        assert outcome.error_message is None

    def test_failure(self):
        outcome = ProcessOutcome.failure("nope", metadata={"why": "empty"})

        assert not outcome.success
        assert outcome.output == {}
        assert outcome.metadata == {"why": "empty"}
