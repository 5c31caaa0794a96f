"""
Vector Contracts

Data models for tenant-isolated embedding storage and search.
"""

from .models import (
    DEFAULT_DIMENSIONS,
    EmbeddingRecord,
    SearchHit,
)

__all__ = [
    "DEFAULT_DIMENSIONS",
    "EmbeddingRecord",
    "SearchHit",
]
