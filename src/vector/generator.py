"""
Embedding Generator - text to tenant-isolated stored embedding.

Requests a raw embedding from a cognitive backend, then hands it to the
EmbeddingStore, which applies the tenant transform before persisting.
A backend failure always surfaces as EmbeddingUnavailableError.
"""

import logging
from typing import Any, Dict, List, Optional

from .contracts.models import EmbeddingRecord, SearchHit
from .exceptions import EmbeddingUnavailableError
from .store import ON_CONFLICT_UPDATE, EmbeddingStore


logger = logging.getLogger(__name__)


def build_contextual_text(
    content: str,
    purpose: Optional[str] = None,
    segment_type: Optional[str] = None,
) -> str:
    """
    Build the journey-contextualised text that gets embedded.

    Example:
        >>> build_contextual_text("Deep nets...", "Survey of ML", "abstract")
        'Journey Purpose: Survey of ML\\nSegment Type: abstract\\nContent: Deep nets...'
    """
    return (
        f"Journey Purpose: {purpose or ''}\n"
        f"Segment Type: {segment_type or ''}\n"
        f"Content: {content}"
    )


class EmbeddingGenerator:
    """
    Facade over a cognitive backend and an EmbeddingStore.

    The backend is any object exposing ``generate_embedding(text) -> list``.

    Example:
        >>> generator = EmbeddingGenerator(backend, store, model_name="nomic-embed-text")
        >>> record = generator.generate_for_segment("tenant-a", "seg-1", "Some text")
    """

    def __init__(
        self,
        backend,
        store: EmbeddingStore,
        model_name: Optional[str] = None,
    ):
        """
        Initialize the generator.

        Args:
            backend: Embedding backend
            store: Target embedding store
            model_name: Model name recorded with each embedding; defaults to
                the backend's ``embedding_model`` attribute or its class name
        """
        self.backend = backend
        self.store = store
        self.model_name = (
            model_name
            or getattr(backend, "embedding_model", None)
            or type(backend).__name__
        )

    def embed(self, text: str) -> List[float]:
        """
        Get a raw embedding for ``text`` from the backend.

        Raises:
            EmbeddingUnavailableError: If the backend fails or returns no vector
        """
        provider = type(self.backend).__name__
        try:
            vector = self.backend.generate_embedding(text)
        except EmbeddingUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Embedding backend {provider} failed: {e}")
            raise EmbeddingUnavailableError(
                f"Embedding backend {provider} failed: {e}", provider=provider
            ) from e

        if not vector:
            raise EmbeddingUnavailableError(
                f"Embedding backend {provider} returned an empty vector", provider=provider
            )
        return list(vector)

    def generate_for_segment(
        self,
        tenant_id: str,
        segment_id: str,
        text: str,
        journey_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        on_conflict: str = ON_CONFLICT_UPDATE,
    ) -> EmbeddingRecord:
        """
        Embed a segment and store it for the tenant.

        Args:
            tenant_id: Owning tenant
            segment_id: Segment identifier
            text: Segment content
            journey_id: Optional journey scope
            context: Optional ``purpose``/``segment_type`` used to build
                journey-contextualised text
            on_conflict: Passed through to EmbeddingStore.store()

        Raises:
            EmbeddingUnavailableError: If the backend fails
            UnsupportedDimensionError: If the backend's vector size has no shard
        """
        if context:
            text = build_contextual_text(
                text,
                purpose=context.get("purpose"),
                segment_type=context.get("segment_type"),
            )

        raw_vector = self.embed(text)
        return self.store.store(
            tenant_id=tenant_id,
            segment_id=segment_id,
            journey_id=journey_id,
            raw_vector=raw_vector,
            model_name=self.model_name,
            on_conflict=on_conflict,
        )

    def search_text(
        self,
        tenant_id: str,
        text: str,
        limit: int = 10,
        journey_id: Optional[str] = None,
    ) -> List[SearchHit]:
        """Embed a query text and search the tenant's segments for this model."""
        query = self.embed(text)
        return self.store.search(
            tenant_id,
            query,
            limit=limit,
            journey_id=journey_id,
            model_name=self.model_name,
        )
