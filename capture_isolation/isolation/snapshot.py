"""Snapshot builder: live directory state to a hash-sealed immutable record."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from capture_isolation.kernel.hashing import is_sha256_hex, sha256_canonical
from capture_isolation.kernel.ids import new_snapshot_id
from capture_isolation.kernel.timebase import now_ms

from .types import ExtensionEntry, ExtensionInfo, ExtensionSnapshot


ALWAYS_EXCLUDED_TYPES = frozenset({"theme"})


@dataclass
class ExtensionPartition:
    """Live extensions split the way activation treats them.

    ``members`` holds every non-host, non-excluded extension in enumeration
    order; ``eligible`` and ``non_disableable`` are subsets of it.
    """

    host: list[ExtensionInfo] = field(default_factory=list)
    excluded: list[ExtensionInfo] = field(default_factory=list)
    members: list[ExtensionEntry] = field(default_factory=list)
    non_disableable: list[ExtensionEntry] = field(default_factory=list)
    eligible: list[ExtensionEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.host) + len(self.excluded) + len(self.members)


def partition_extensions(
    extensions: Iterable[ExtensionInfo],
    host_id: str,
    excluded_types: Iterable[str] = ALWAYS_EXCLUDED_TYPES,
) -> ExtensionPartition:
    excluded = frozenset(excluded_types) | ALWAYS_EXCLUDED_TYPES
    partition = ExtensionPartition()
    for info in extensions:
        if info.id == host_id:
            partition.host.append(info)
            continue
        if info.type in excluded:
            partition.excluded.append(info)
            continue
        entry = ExtensionEntry.from_info(info)
        partition.members.append(entry)
        if not info.may_disable:
            partition.non_disableable.append(entry)
        elif info.enabled:
            partition.eligible.append(entry)
    return partition


def compute_snapshot_hash(content: dict[str, Any]) -> str:
    """SHA-256 over the canonical form of the snapshot content fields."""
    hashed = {key: content[key] for key in ("id", "correlationId", "createdAt", "extensions", "lexatoExtensionId")}
    return sha256_canonical(hashed)


def verify_snapshot_hash(snapshot: ExtensionSnapshot) -> bool:
    if not is_sha256_hex(snapshot.hash):
        return False
    return compute_snapshot_hash(snapshot.content_dict()) == snapshot.hash


def build_snapshot(
    extensions: Iterable[ExtensionInfo] | ExtensionPartition,
    host_id: str,
    correlation_id: str,
    *,
    excluded_types: Iterable[str] = ALWAYS_EXCLUDED_TYPES,
    created_at: int | None = None,
    snapshot_id: str | None = None,
) -> ExtensionSnapshot:
    if isinstance(extensions, ExtensionPartition):
        partition = extensions
    else:
        partition = partition_extensions(extensions, host_id, excluded_types)
    created = now_ms() if created_at is None else int(created_at)
    unsealed = ExtensionSnapshot(
        id=snapshot_id or new_snapshot_id(created),
        correlation_id=str(correlation_id),
        created_at=created,
        extensions=tuple(partition.members),
        hash="",
        host_extension_id=str(host_id),
    )
    digest = compute_snapshot_hash(unsealed.content_dict())
    return replace(unsealed, hash=digest)
