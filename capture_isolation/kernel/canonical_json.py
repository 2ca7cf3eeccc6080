"""Canonical JSON serialization for hash-sealed records.

Object keys are sorted at every depth and separators are compact. Arrays keep
their order and strings are hashed exactly as stored (no Unicode
normalization), so any edit to a sealed record changes its digest.
"""

from __future__ import annotations

import json
from typing import Any


class CanonicalJSONError(ValueError):
    pass


def _check(obj: Any, path: str) -> Any:
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJSONError(f"non-string key at {path}: {key!r}")
            out[key] = _check(value, f"{path}.{key}")
        return out
    if isinstance(obj, (list, tuple)):
        return [_check(value, f"{path}[{idx}]") for idx, value in enumerate(obj)]
    if isinstance(obj, float):
        raise CanonicalJSONError(f"float at {path}; sealed records use integers")
    raise CanonicalJSONError(f"unsupported type at {path}: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Return the canonical JSON text of ``obj``."""
    return json.dumps(
        _check(obj, "$"),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
