"""
JSON helpers for sealed state and store records.

Raw key material inside pickled state is encoded as `{"$bytes": <base64>}`
so a pickle's plaintext stays plain JSON.
"""

from __future__ import annotations

import json
from typing import Any

from .bytes import b64decode, b64encode

_BYTES_TAG = "$bytes"


def _default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {_BYTES_TAG: b64encode(bytes(obj))}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and isinstance(obj.get(_BYTES_TAG), str):
        return b64decode(obj[_BYTES_TAG])
    return obj


def dumps(obj: Any, *, indent: int | None = None) -> str:
    separators = None if indent is not None else (",", ":")
    return json.dumps(obj, default=_default, indent=indent, separators=separators, sort_keys=True)


def loads(data: str | bytes) -> Any:
    return json.loads(data, object_hook=_object_hook)
