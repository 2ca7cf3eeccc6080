"""Structured JSONL operational logging with correlation ids.

Design goals:
- Lightweight: no background threads, one line per event.
- Stable key ordering in JSON serialization.
- Archive-only rotation: old logs are moved to logs/archive/, never deleted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from capture_isolation.kernel.timebase import utc_now_z


@dataclass(frozen=True)
class JsonlLoggerConfig:
    path: Path
    rotate_max_bytes: int


class JsonlLogger:
    def __init__(self, cfg: JsonlLoggerConfig) -> None:
        self._cfg = cfg

    @classmethod
    def from_config(cls, config: Any) -> "JsonlLogger":
        return cls(JsonlLoggerConfig(path=config.log_path, rotate_max_bytes=max(1024, config.log_rotate_max_bytes)))

    @property
    def path(self) -> str:
        return str(self._cfg.path)

    def _rotate_if_needed(self) -> None:
        try:
            if not self._cfg.path.exists():
                return
            if self._cfg.path.stat().st_size < self._cfg.rotate_max_bytes:
                return
        except OSError:
            return
        try:
            archive_dir = self._cfg.path.parent / "archive"
            archive_dir.mkdir(parents=True, exist_ok=True)
            ts = utc_now_z().replace(":", "").replace("-", "").replace(".", "")
            archived = archive_dir / f"{self._cfg.path.stem}.{ts}{self._cfg.path.suffix}"
            if not archived.exists():
                self._cfg.path.replace(archived)
        except OSError:
            return

    def event(
        self,
        *,
        event: str,
        correlation_id: str | None = None,
        level: str = "info",
        **fields: Any,
    ) -> None:
        payload: dict[str, Any] = {
            "ts_utc": utc_now_z(),
            "level": str(level or "info"),
            "event": str(event or "event"),
            "correlation_id": str(correlation_id or ""),
        }
        for k, v in fields.items():
            if k in payload:
                continue
            payload[str(k)] = v
        line = json.dumps(payload, sort_keys=True, default=str)
        self._rotate_if_needed()
        try:
            self._cfg.path.parent.mkdir(parents=True, exist_ok=True)
            with self._cfg.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError:
            return
