"""
Custom exceptions for the tenant-isolated embedding store.
"""

from typing import Optional, Sequence


class VectorError(Exception):
    """Base exception for all vector errors."""
    pass


class InvalidVectorError(VectorError):
    """
    A vector argument is unusable.

    Raised when:
    - The vector is None or empty
    - Two vectors compared by a distance function differ in length
    - A component is not a finite number
    """
    pass


class UnsupportedDimensionError(VectorError):
    """Raised when a vector length does not match any configured shard."""

    def __init__(self, dimension: int, supported: Sequence[int]):
        supported_str = ", ".join(str(d) for d in supported)
        super().__init__(
            f"Unsupported embedding dimension: {dimension} (supported: {supported_str})"
        )
        self.dimension = dimension
        self.supported = tuple(supported)


class DuplicateEmbeddingError(VectorError):
    """Raised when (tenant, segment, model) is already embedded and updates are rejected."""

    def __init__(self, tenant_id: str, segment_id: str, model_name: str):
        super().__init__(
            f"Embedding already exists for tenant {tenant_id}, "
            f"segment {segment_id}, model {model_name}"
        )
        self.tenant_id = tenant_id
        self.segment_id = segment_id
        self.model_name = model_name


class EmbeddingUnavailableError(VectorError):
    """
    The embedding backend could not produce a vector.

    No fallback vector is substituted; callers see this error instead.
    """

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class VectorStorageError(VectorError):
    """Error persisting or reading shard/index rows."""
    pass
