"""
Process Registry - Catalog of analytical processes available to the engine.

The registry maps a process identifier to a factory producing a fresh
process instance per execution. It is constructed explicitly at startup and
injected into the ExecutionCoordinator; there is no module-level instance.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.exceptions import UnknownProcessError
from .base import AnalyticalProcess, ProcessCategory


logger = logging.getLogger(__name__)

ProcessFactory = Callable[[], AnalyticalProcess]


@dataclass
class ProcessInfo:
    """
    Description of a registered process for listing.

    Attributes:
        process_id: Unique process identifier
        name: Display name
        description: What the process does
        category: Process category
        inputs: Declared input fields (serialized InputDefinition)
        capabilities: Process-declared capabilities
    """
    process_id: str
    name: str
    description: str
    category: ProcessCategory
    inputs: List[Dict[str, Any]] = field(default_factory=list)
    capabilities: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "process_id": self.process_id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "inputs": self.inputs,
            "capabilities": self.capabilities,
        }


class ProcessRegistry:
    """
    Registry of analytical processes.

    Example:
        >>> registry = ProcessRegistry()
        >>> registry.register(SegmentEmbeddingProcess)
        >>> process = registry.create("segment-embedding")
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._factories: Dict[str, ProcessFactory] = {}

    def register(
        self,
        process: Union[type, ProcessFactory],
        process_id: Optional[str] = None,
    ) -> str:
        """
        Register a process class or factory.

        Args:
            process: An AnalyticalProcess subclass, or a zero-argument
                callable returning an AnalyticalProcess
            process_id: Identifier override; defaults to the process's own
                ``process_id``

        Returns:
            The identifier the process was registered under

        Raises:
            ValueError: If no identifier can be determined
        """
        if process_id is None:
            process_id = getattr(process, "process_id", None) or process().process_id
        if not process_id:
            raise ValueError(f"Process {process!r} has no process_id")

        if process_id in self._factories:
            logger.warning(f"Overwriting existing process registration: {process_id}")
        self._factories[process_id] = process
        logger.debug(f"Registered process: {process_id}")
        return process_id

    def create(self, process_id: str) -> AnalyticalProcess:
        """
        Construct a fresh process instance.

        Raises:
            UnknownProcessError: If the process is not registered
        """
        factory = self._factories.get(process_id)
        if factory is None:
            raise UnknownProcessError(process_id)
        return factory()

    def is_registered(self, process_id: str) -> bool:
        return process_id in self._factories

    def __contains__(self, process_id: str) -> bool:
        return self.is_registered(process_id)

    def __len__(self) -> int:
        return len(self._factories)

    def list_ids(self) -> List[str]:
        """List registered process identifiers in registration order."""
        return list(self._factories.keys())

    def describe(self, process_id: str) -> ProcessInfo:
        """
        Describe one registered process.

        Raises:
            UnknownProcessError: If the process is not registered
        """
        process = self.create(process_id)
        return ProcessInfo(
            process_id=process_id,
            name=process.name or process_id,
            description=process.description,
            category=process.category,
            inputs=[f.to_dict() for f in process.input_definition().fields],
            capabilities=process.capabilities(),
        )

    def list_processes(self) -> List[ProcessInfo]:
        """List all registered processes with their declared input schema."""
        return [self.describe(process_id) for process_id in self._factories]
