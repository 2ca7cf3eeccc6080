"""Append-only isolation audit log.

Every isolation attempt (batch and per-extension, success and failure) is
recorded under a process tag with the correlation id of the operation that
produced it, so a capture session can be reconstructed after the fact.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from capture_isolation.kernel.hashing import sha256_bytes
from capture_isolation.kernel.timebase import utc_now_z


AUDIT_LEVELS = ("debug", "info", "warn", "error", "critical")


class AuditLog(Protocol):
    def record(
        self,
        process: str,
        action: str,
        correlation_id: str,
        data: dict[str, Any],
        *,
        level: str = "info",
    ) -> None:
        ...


def _normalize(obj: Any) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return _normalize(obj.value)
    if isinstance(obj, (str, int, bool)):
        return obj
    if isinstance(obj, float):
        return repr(obj)
    if isinstance(obj, bytes):
        return {"__bytes_sha256": sha256_bytes(obj), "__bytes_len": len(obj)}
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "to_dict"):
        return _normalize(obj.to_dict())
    if is_dataclass(obj) and not isinstance(obj, type):
        return _normalize(asdict(obj))
    if isinstance(obj, dict):
        return {str(key): _normalize(obj[key]) for key in sorted(obj.keys(), key=lambda k: str(k))}
    if isinstance(obj, (list, tuple)):
        return [_normalize(item) for item in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted([_normalize(item) for item in obj], key=lambda v: str(v))
    return str(obj)


class JsonlAuditLog:
    """Audit log writing one JSON object per line; never rewrites earlier lines."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any) -> "JsonlAuditLog":
        return cls(config.audit_path)

    @property
    def path(self) -> Path:
        return self._path

    def record(
        self,
        process: str,
        action: str,
        correlation_id: str,
        data: dict[str, Any],
        *,
        level: str = "info",
    ) -> None:
        if level not in AUDIT_LEVELS:
            level = "info"
        payload = {
            "schema_version": 1,
            "ts_utc": utc_now_z(),
            "level": level,
            "process": str(process),
            "action": str(action),
            "correlation_id": str(correlation_id or ""),
            "data": _normalize(data or {}),
        }
        line = json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError:
                return

    def read_entries(self, *, correlation_id: str | None = None) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        entries: list[dict[str, Any]] = []
        with self._path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                entry = json.loads(line)
                if correlation_id is not None and entry.get("correlation_id") != correlation_id:
                    continue
                entries.append(entry)
        return entries
