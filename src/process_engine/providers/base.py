"""
Cognitive backend interface.

Processes reach a backend through ``ProcessContext.services.backend``; the
EmbeddingGenerator uses the same interface for raw embeddings.
"""

from abc import ABC, abstractmethod
from typing import List, Optional


class CognitiveBackend(ABC):
    """Interface for embedding and text generation providers."""

    #: Model name recorded with stored embeddings
    embedding_model: str = ""

    @abstractmethod
    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate a raw embedding for ``text``.

        Raises:
            EmbeddingUnavailableError: If no embedding can be produced
        """

    @abstractmethod
    def generate_text(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Generate a text completion.

        Raises:
            ProviderError: If the provider fails
        """

    def health_check(self) -> bool:
        """Check whether the backend is reachable."""
        return True
