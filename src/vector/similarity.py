"""
Vector similarity and distance functions.
"""

import math
from typing import List, Sequence

from .exceptions import InvalidVectorError


def check_vector(vector: Sequence[float], name: str = "vector") -> List[float]:
    """
    Validate a vector and return it as a list of floats.

    Raises:
        InvalidVectorError: If the vector is None, empty or non-numeric
    """
    if vector is None or len(vector) == 0:
        raise InvalidVectorError(f"{name} cannot be null or empty")
    try:
        values = [float(v) for v in vector]
    except (TypeError, ValueError) as e:
        raise InvalidVectorError(f"{name} must contain only numbers") from e
    if any(math.isnan(v) or math.isinf(v) for v in values):
        raise InvalidVectorError(f"{name} must contain only finite numbers")
    return values


def _check_pair(vec_a: Sequence[float], vec_b: Sequence[float]) -> None:
    if not vec_a or not vec_b:
        raise InvalidVectorError("Vectors cannot be empty")
    if len(vec_a) != len(vec_b):
        raise InvalidVectorError(
            f"Vector dimensions must match: {len(vec_a)} != {len(vec_b)}"
        )


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        vec_a: First vector
        vec_b: Second vector

    Returns:
        Cosine similarity score between -1 and 1 (0.0 if either is a zero vector)

    Raises:
        InvalidVectorError: If vectors have different dimensions or are empty
    """
    _check_pair(vec_a, vec_b)

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    magnitude_a = math.sqrt(sum(a * a for a in vec_a))
    magnitude_b = math.sqrt(sum(b * b for b in vec_b))

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return dot_product / (magnitude_a * magnitude_b)


def euclidean_distance(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Compute Euclidean distance between two vectors.

    Raises:
        InvalidVectorError: If vectors have different dimensions or are empty
    """
    _check_pair(vec_a, vec_b)
    return math.sqrt(sum((a - b) * (a - b) for a, b in zip(vec_a, vec_b)))
