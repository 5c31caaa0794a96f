"""
Analytical processes and the process registry.
"""

from .base import (
    AnalyticalProcess,
    InputDefinition,
    InputField,
    InputFieldType,
    ProcessCategory,
    ProcessContext,
    ProcessOutcome,
    ProcessProgress,
    SharedServices,
)
from .registry import ProcessInfo, ProcessRegistry
from .segment_embedding import SegmentEmbeddingProcess


BUILTIN_PROCESSES = (SegmentEmbeddingProcess,)


def default_registry() -> ProcessRegistry:
    """Create a registry holding the built-in processes."""
    registry = ProcessRegistry()
    for process_class in BUILTIN_PROCESSES:
        registry.register(process_class)
    return registry


__all__ = [
    "AnalyticalProcess",
    "BUILTIN_PROCESSES",
    "InputDefinition",
    "InputField",
    "InputFieldType",
    "ProcessCategory",
    "ProcessContext",
    "ProcessInfo",
    "ProcessOutcome",
    "ProcessProgress",
    "ProcessRegistry",
    "SegmentEmbeddingProcess",
    "SharedServices",
    "default_registry",
]
