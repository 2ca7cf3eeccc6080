"""Atomic file helpers (temp + fsync + replace).

The durable store and the registry directory keep their state in small JSON
files that must never be observed half-written, even if the process is killed
between two writes.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_text(path: Path, text: str, *, fsync: bool = True) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            if fsync:
                os.fsync(handle.fileno())
        os.replace(str(tmp_path), str(path))
        if fsync:
            _fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


def atomic_write_json(path: Path, payload: Any, *, sort_keys: bool = True, indent: int | None = None) -> None:
    text = json.dumps(payload, sort_keys=bool(sort_keys), indent=indent, ensure_ascii=False)
    atomic_write_text(Path(path), text, fsync=True)


def durable_unlink(path: Path) -> bool:
    """Remove ``path`` and fsync its directory. Returns False when it was absent."""
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    _fsync_dir(path.parent)
    return True
