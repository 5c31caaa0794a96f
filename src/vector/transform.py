"""
Tenant-keyed orthogonal transform for embedding isolation.

Every vector is permuted and sign-flipped with material derived from the
tenant id before it is stored or compared:

    result[i] = vector[P[i]] * S[i]

A permutation matrix composed with a diagonal +/-1 matrix is orthogonal, so
distances and cosine similarities between vectors of the same tenant are
unchanged, while vectors of different tenants live in unrelated coordinate
systems.

Derivation (all integers little-endian):
- key material  = SHA-512(tenant key bytes)
- permutation P = Fisher-Yates from i = n-1 down to 1, with
  j = uint32(HMAC-SHA256(key[:32], counter)[:4]) % (i + 1), counter from 0
- signs S       = bits of key[32:64] when n <= 256, otherwise the stream
  HMAC-SHA256(key[32:], counter) for counter = 0, 1, ...; bit i is bit
  (i % 8) of byte (i // 8) and a set bit means -1.0

Derived material is never persisted; it is re-derived from the tenant id and
memoized in-process.
"""

import hashlib
import hmac
import logging
import struct
import uuid
from functools import lru_cache
from typing import List, Sequence, Tuple, Union

from .exceptions import InvalidVectorError
from .similarity import check_vector, cosine_similarity, euclidean_distance


logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-5
_CACHE_SIZE = 512

TenantId = Union[str, uuid.UUID]


def tenant_key_bytes(tenant_id: TenantId) -> bytes:
    """
    Encode a tenant id for key derivation.

    UUIDs (or UUID strings) use their 16-byte little-endian field layout;
    any other id is encoded as UTF-8.
    """
    if isinstance(tenant_id, uuid.UUID):
        return tenant_id.bytes_le
    if tenant_id is None or str(tenant_id) == "":
        raise ValueError("tenant_id cannot be empty")
    text = str(tenant_id)
    try:
        return uuid.UUID(text).bytes_le
    except ValueError:
        return text.encode("utf-8")


def _counter(value: int) -> bytes:
    return struct.pack("<Q", value)


def _permutation(key_material: bytes, length: int) -> Tuple[int, ...]:
    permutation = list(range(length))
    mac_key = key_material[:32]
    counter = 0
    for i in range(length - 1, 0, -1):
        digest = hmac.new(mac_key, _counter(counter), hashlib.sha256).digest()
        r = struct.unpack_from("<I", digest, 0)[0]
        j = r % (i + 1)
        permutation[i], permutation[j] = permutation[j], permutation[i]
        counter += 1
    return tuple(permutation)


def _sign_bytes(key_material: bytes, length: int) -> bytes:
    needed = (length + 7) // 8
    if needed <= 32:
        return key_material[32:32 + needed]

    mac_key = key_material[32:]
    out = bytearray()
    counter = 0
    while len(out) < needed:
        out.extend(hmac.new(mac_key, _counter(counter), hashlib.sha256).digest())
        counter += 1
    return bytes(out[:needed])


def _signs(key_material: bytes, length: int) -> Tuple[float, ...]:
    sign_bytes = _sign_bytes(key_material, length)
    return tuple(
        -1.0 if (sign_bytes[i // 8] >> (i % 8)) & 1 else 1.0
        for i in range(length)
    )


@lru_cache(maxsize=_CACHE_SIZE)
def _derive(key_bytes: bytes, length: int) -> Tuple[Tuple[int, ...], Tuple[float, ...]]:
    key_material = hashlib.sha512(key_bytes).digest()
    return _permutation(key_material, length), _signs(key_material, length)


class OrthogonalTransform:
    """
    Deterministic, tenant-keyed orthogonal transform.

    Example:
        >>> t = OrthogonalTransform()
        >>> stored = t.transform("tenant-a", [0.1, 0.2, 0.3])
        >>> t.inverse("tenant-a", stored)
        [0.1, 0.2, 0.3]
    """

    def __init__(self, tolerance: float = DEFAULT_TOLERANCE):
        self.tolerance = tolerance

    def permutation(self, tenant_id: TenantId, length: int) -> Tuple[int, ...]:
        """Permutation P for ``(tenant_id, length)``."""
        self._check_length(length)
        return _derive(tenant_key_bytes(tenant_id), length)[0]

    def signs(self, tenant_id: TenantId, length: int) -> Tuple[float, ...]:
        """Sign vector S for ``(tenant_id, length)``."""
        self._check_length(length)
        return _derive(tenant_key_bytes(tenant_id), length)[1]

    def transform(self, tenant_id: TenantId, vector: Sequence[float]) -> List[float]:
        """
        Transform a raw vector into the tenant's coordinate system.

        Raises:
            InvalidVectorError: If the vector is None or empty
        """
        values = check_vector(vector)
        permutation, signs = _derive(tenant_key_bytes(tenant_id), len(values))
        return [values[permutation[i]] * signs[i] for i in range(len(values))]

    def inverse(self, tenant_id: TenantId, transformed: Sequence[float]) -> List[float]:
        """
        Undo transform() for the same tenant.

        Raises:
            InvalidVectorError: If the vector is None or empty
        """
        values = check_vector(transformed, "transformed")
        permutation, signs = _derive(tenant_key_bytes(tenant_id), len(values))
        original = [0.0] * len(values)
        for i, p in enumerate(permutation):
            # signs are +/-1 so multiplying again undoes the flip
            original[p] = values[i] * signs[i]
        return original

    def verify_distance_preserving(
        self,
        tenant_id: TenantId,
        vec_a: Sequence[float],
        vec_b: Sequence[float],
        tolerance: float = None,
    ) -> bool:
        """
        Check that the transform preserves the distance between two vectors.

        Returns:
            True if Euclidean distance and cosine similarity both agree
            within ``tolerance``

        Raises:
            InvalidVectorError: If either vector is empty or lengths differ
        """
        tolerance = self.tolerance if tolerance is None else tolerance
        a = check_vector(vec_a, "vec_a")
        b = check_vector(vec_b, "vec_b")
        if len(a) != len(b):
            raise InvalidVectorError(f"Vector dimensions must match: {len(a)} != {len(b)}")

        ta = self.transform(tenant_id, a)
        tb = self.transform(tenant_id, b)

        distance_delta = abs(euclidean_distance(a, b) - euclidean_distance(ta, tb))
        cosine_delta = abs(cosine_similarity(a, b) - cosine_similarity(ta, tb))
        preserved = distance_delta < tolerance and cosine_delta < tolerance
        if not preserved:
            logger.warning(
                f"Distance not preserved for tenant {tenant_id}: "
                f"euclidean delta={distance_delta:.3e}, cosine delta={cosine_delta:.3e}"
            )
        return preserved

    @staticmethod
    def cache_info():
        """Statistics of the in-process derivation cache."""
        return _derive.cache_info()

    @staticmethod
    def clear_cache() -> None:
        _derive.cache_clear()

    @staticmethod
    def _check_length(length: int) -> None:
        if length <= 0:
            raise InvalidVectorError("Vector length must be positive")


# Module-level convenience instance, stateless apart from the shared cache
default_transform = OrthogonalTransform()


def transform(tenant_id: TenantId, vector: Sequence[float]) -> List[float]:
    return default_transform.transform(tenant_id, vector)


def inverse(tenant_id: TenantId, transformed: Sequence[float]) -> List[float]:
    return default_transform.inverse(tenant_id, transformed)
