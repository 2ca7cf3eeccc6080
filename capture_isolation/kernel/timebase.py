"""Time helpers.

Records use integer epoch milliseconds (canonical JSON forbids floats); log
lines use UTC ISO-8601 with a Z suffix.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def utc_iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    text = dt.astimezone(timezone.utc).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def utc_now_z() -> str:
    return utc_iso_z(datetime.now(timezone.utc))
