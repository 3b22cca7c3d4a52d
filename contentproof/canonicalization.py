"""
ContentProof Canonical JSON Encoding

The bytes a creator signs must be reproducible by any verifier from the
manifest's declared fields alone, regardless of key order or whitespace in the
document as stored. Canonical form:

- object keys sorted by Unicode code point, keys must be strings
- compact separators, no insignificant whitespace
- UTF-8 without escaping non-ASCII characters
- only null, booleans, integers, strings, arrays and objects; floats are
  rejected because their textual form is not stable across encoders
"""

import json
from typing import Any


def _check(value: Any, path: str = "$") -> None:
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        raise ValueError(f"{path}: floats are not canonical")
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings, got {type(key).__name__}")
            _check(item, f"{path}.{key}")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check(item, f"{path}[{i}]")
        return
    raise ValueError(f"{path}: cannot canonicalize {type(value).__name__}")


def canonicalize(obj: Any) -> bytes:
    """
    Encode ``obj`` as canonical JSON bytes.

    Raises:
        ValueError: If ``obj`` holds a float, a non-string key or a type JSON
            cannot represent
    """
    _check(obj)
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonicalize_str(obj: Any) -> str:
    return canonicalize(obj).decode("utf-8")
