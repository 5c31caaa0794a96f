"""
JSON-compatible value types for execution inputs and outputs.

Inputs and outputs cross the engine boundary as string-keyed maps. They are
checked here once so the stores can serialize them with ``json`` without
surprises (no sets, bytes, datetimes or NaN).
"""

import json
import math
from typing import Any, Dict, List, Union

from .exceptions import InvalidInputValueError


JsonScalar = Union[None, bool, int, float, str]
JsonValue = Union[JsonScalar, List["JsonValue"], Dict[str, "JsonValue"]]
JsonObject = Dict[str, JsonValue]


def ensure_json_value(value: Any, path: str = "$") -> JsonValue:
    """
    Validate that ``value`` is a JSON-compatible value.

    Tuples are accepted and normalized to lists.

    Args:
        value: Candidate value
        path: Location used in error messages

    Returns:
        The value, with tuples converted to lists

    Raises:
        InvalidInputValueError: If a non JSON-compatible value is found
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise InvalidInputValueError(f"{path}: non-finite number is not allowed")
        return value
    if isinstance(value, (list, tuple)):
        return [ensure_json_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidInputValueError(
                    f"{path}: object keys must be strings, got {type(key).__name__}"
                )
            result[key] = ensure_json_value(item, f"{path}.{key}")
        return result
    raise InvalidInputValueError(
        f"{path}: unsupported value of type {type(value).__name__}"
    )


def ensure_json_object(value: Any, name: str = "inputs") -> JsonObject:
    """
    Validate a top-level input/output map.

    ``None`` is treated as an empty map.

    Raises:
        InvalidInputValueError: If ``value`` is not a string-keyed map of
            JSON-compatible values
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidInputValueError(
            f"{name} must be an object, got {type(value).__name__}"
        )
    return ensure_json_value(value, name)


def dumps(value: JsonValue) -> str:
    """Serialize a validated value for storage."""
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def loads_object(text: str) -> JsonObject:
    """Deserialize a stored map; empty/None text yields an empty map."""
    if not text:
        return {}
    data = json.loads(text)
    return data if isinstance(data, dict) else {}
