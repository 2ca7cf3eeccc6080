"""Durable store capability, a JSON file store, and the snapshot repository."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Protocol

from capture_isolation.kernel.atomic_write import atomic_write_json, durable_unlink
from capture_isolation.kernel.errors import HashIntegrityError, StoreError
from capture_isolation.kernel.hashing import sha256_text
from capture_isolation.kernel.schema_registry import SchemaRegistry, default_registry
from capture_isolation.kernel.timebase import now_ms

from .snapshot import compute_snapshot_hash
from .types import ExtensionSnapshot, PersistedSnapshot


PERSISTED_SNAPSHOT_SCHEMA = "persisted_snapshot"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class DurableStore(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class JsonFileStore:
    """Key/value store keeping one JSON document per key under ``root``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @classmethod
    def from_config(cls, config: Any) -> "JsonFileStore":
        return cls(config.storage_root)

    def _path_for(self, key: str) -> Path:
        name = key if _SAFE_KEY.match(key) and not key.startswith(".") else f"key_{sha256_text(key)[:32]}"
        return self._root / f"{name}.json"

    def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"store read failed for {key}: {exc}") from exc
        try:
            return json.loads(text)
        except ValueError as exc:
            raise StoreError(f"store value for {key} is not valid JSON: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            atomic_write_json(self._path_for(key), value, sort_keys=True, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(f"store write failed for {key}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            durable_unlink(self._path_for(key))
        except OSError as exc:
            raise StoreError(f"store remove failed for {key}: {exc}") from exc


class SnapshotRepository:
    """Reads and writes the single persisted isolation snapshot.

    A record is only handed back after it passes the schema check and its hash
    has been recomputed; anything else raises ``HashIntegrityError`` and the
    record is left in place for inspection.
    """

    def __init__(
        self,
        store: DurableStore,
        key: str,
        *,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self._store = store
        self._key = key
        self._schemas = schemas or default_registry()

    @property
    def key(self) -> str:
        return self._key

    def exists(self) -> bool:
        return self._store.get(self._key) is not None

    def load_raw(self) -> Any | None:
        return self._store.get(self._key)

    def load(self) -> PersistedSnapshot | None:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        return self.verify(raw)

    def verify(self, raw: Any) -> PersistedSnapshot:
        issues = self._schemas.validate(PERSISTED_SNAPSHOT_SCHEMA, raw)
        if issues:
            snapshot_id = None
            if isinstance(raw, dict) and isinstance(raw.get("snapshot"), dict):
                snapshot_id = raw["snapshot"].get("id")
            raise HashIntegrityError(
                f"malformed snapshot record: {self._schemas.format_issues(issues)}",
                reason="malformed",
                snapshot_id=str(snapshot_id) if snapshot_id is not None else None,
            )
        persisted = PersistedSnapshot.from_dict(raw)
        snapshot = persisted.snapshot
        # Hash the stored mapping, not the parsed record.
        calculated = compute_snapshot_hash(raw["snapshot"])
        if calculated != snapshot.hash:
            raise HashIntegrityError(
                "hash mismatch",
                reason="hash_mismatch",
                snapshot_id=snapshot.id,
                expected=snapshot.hash,
                calculated=calculated,
            )
        return persisted

    def persist(self, snapshot: ExtensionSnapshot, *, version: str, persisted_at: int | None = None) -> PersistedSnapshot:
        record = PersistedSnapshot(
            snapshot=snapshot,
            persisted_at=now_ms() if persisted_at is None else int(persisted_at),
            version=str(version),
        )
        self._store.set(self._key, record.to_dict())
        return record

    def remove(self) -> None:
        self._store.remove(self._key)
