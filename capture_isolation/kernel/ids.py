"""Snapshot and correlation id helpers."""

from __future__ import annotations

import secrets
import uuid

from capture_isolation.kernel.timebase import now_ms


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36_token(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(int(length)))


def new_snapshot_id(created_at_ms: int | None = None) -> str:
    ts = now_ms() if created_at_ms is None else int(created_at_ms)
    return f"snap_{ts}_{_base36_token(7)}"


def new_correlation_id() -> str:
    return uuid.uuid4().hex
