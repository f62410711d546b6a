"""Canonical cache keys for arbitrary query parameters.

Two calls whose parameters are equal after sorting the *top-level* mapping
keys get the same key.  Nested mappings keep their insertion order and list
order is significant.

Values JSON cannot represent collapse the way a JSON serializer would treat
them: a non-serializable top-level value hashes like "no parameters"
(``None``), nested ones are dropped from mappings and become ``null`` inside
lists.
"""

from __future__ import annotations

import dataclasses
import enum
import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

#: Key used for ``None``, omitted parameters and anything unserializable.
NO_PARAMS_KEY = "null"

_SKIP = object()


def _jsonable(value: Any) -> Any:
    """Convert *value* into plain JSON types, or ``_SKIP`` if it has no JSON form."""
    # Before the primitives: IntEnum and StrEnum members are ints and strs too.
    if isinstance(value, enum.Enum):
        return str(value)
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _jsonable(dataclasses.asdict(value))
    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for key, item in value.items():
            converted = _jsonable(item)
            if converted is not _SKIP:
                result[str(key)] = converted
        return result
    if isinstance(value, (list, tuple)):
        items = (_jsonable(item) for item in value)
        return [None if item is _SKIP else item for item in items]
    return _SKIP


def canonical_key(params: Any = None) -> str:
    """Return the cache key for *params*.

    Override :meth:`QueryModel.get_hashed_key` to plug in another algorithm.
    """
    value = _jsonable(params)
    if value is _SKIP:
        return NO_PARAMS_KEY

    if isinstance(value, dict):
        # One level only: nested mappings are serialized as given.
        value = {key: value[key] for key in sorted(value)}

    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
