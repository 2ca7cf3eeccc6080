"""Hash helpers for snapshot sealing."""

from __future__ import annotations

import hashlib
import re
from typing import Any

from capture_isolation.kernel.canonical_json import dumps


_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def sha256_canonical(obj: Any) -> str:
    return sha256_text(dumps(obj))


def is_sha256_hex(value: Any) -> bool:
    """True for a 64-char lowercase hex digest."""
    return isinstance(value, str) and bool(_SHA256_HEX.match(value))
