"""Isolation record types.

Attributes are snake_case; ``to_dict``/``from_dict`` use the camelCase wire form
that is persisted, hashed and returned to the message-routing layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from capture_isolation.kernel.errors import IsolationErrorCode


@dataclass(frozen=True)
class ExtensionInfo:
    """One extension as currently reported by the live directory."""

    id: str
    name: str
    version: str
    enabled: bool
    may_disable: bool
    install_type: str = "normal"
    type: str = "extension"
    description: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExtensionInfo":
        def _get(camel: str, snake: str, default: Any) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            version=str(data.get("version", "")),
            enabled=bool(data.get("enabled", False)),
            # A directory that omits mayDisable is treated as locked.
            may_disable=bool(_get("mayDisable", "may_disable", False)),
            install_type=str(_get("installType", "install_type", "other")),
            type=str(data.get("type", "extension")),
            description=str(data.get("description", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "enabled": self.enabled,
            "mayDisable": self.may_disable,
            "installType": self.install_type,
            "type": self.type,
        }


@dataclass(frozen=True)
class ExtensionEntry:
    id: str
    name: str
    was_enabled: bool
    may_disable: bool
    install_type: str
    type: str
    version: str

    @classmethod
    def from_info(cls, info: ExtensionInfo) -> "ExtensionEntry":
        return cls(
            id=info.id,
            name=info.name,
            was_enabled=info.enabled,
            may_disable=info.may_disable,
            install_type=info.install_type,
            type=info.type,
            version=info.version,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtensionEntry":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            was_enabled=bool(data["wasEnabled"]),
            may_disable=bool(data["mayDisable"]),
            install_type=str(data["installType"]),
            type=str(data["type"]),
            version=str(data["version"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "wasEnabled": self.was_enabled,
            "mayDisable": self.may_disable,
            "installType": self.install_type,
            "type": self.type,
            "version": self.version,
        }


@dataclass(frozen=True)
class ExtensionSnapshot:
    id: str
    correlation_id: str
    created_at: int
    extensions: tuple[ExtensionEntry, ...]
    hash: str
    host_extension_id: str

    def content_dict(self) -> dict[str, Any]:
        """The hashed fields, in wire form."""
        return {
            "id": self.id,
            "correlationId": self.correlation_id,
            "createdAt": self.created_at,
            "extensions": [entry.to_dict() for entry in self.extensions],
            "lexatoExtensionId": self.host_extension_id,
        }

    def to_dict(self) -> dict[str, Any]:
        payload = self.content_dict()
        payload["hash"] = self.hash
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtensionSnapshot":
        return cls(
            id=str(data["id"]),
            correlation_id=str(data["correlationId"]),
            created_at=int(data["createdAt"]),
            extensions=tuple(ExtensionEntry.from_dict(item) for item in data["extensions"]),
            hash=str(data["hash"]),
            host_extension_id=str(data["lexatoExtensionId"]),
        )

    @property
    def member_ids(self) -> frozenset[str]:
        return frozenset(entry.id for entry in self.extensions)

    def entries_to_restore(self) -> list[ExtensionEntry]:
        return [entry for entry in self.extensions if entry.was_enabled]


@dataclass(frozen=True)
class PersistedSnapshot:
    snapshot: ExtensionSnapshot
    persisted_at: int
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot": self.snapshot.to_dict(),
            "persistedAt": self.persisted_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PersistedSnapshot":
        return cls(
            snapshot=ExtensionSnapshot.from_dict(data["snapshot"]),
            persisted_at=int(data["persistedAt"]),
            version=str(data["version"]),
        )


class ViolationType(str, Enum):
    EXTENSION_REACTIVATED = "extension_reactivated"
    NEW_EXTENSION_INSTALLED = "new_extension_installed"
    HOST_EXTENSION_DISABLED = "host_extension_disabled"


@dataclass(frozen=True)
class Violation:
    type: ViolationType
    extension_id: str
    extension_name: str
    timestamp: int
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "extensionId": self.extension_id,
            "extensionName": self.extension_name,
            "timestamp": self.timestamp,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class FailedExtension:
    id: str
    name: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "error": self.error}


@dataclass(frozen=True)
class IsolationPreview:
    extensions_to_disable: list[ExtensionEntry]
    non_disableable_extensions: list[ExtensionEntry]
    total_extensions: int

    @property
    def to_disable_count(self) -> int:
        return len(self.extensions_to_disable)

    @property
    def non_disableable_count(self) -> int:
        return len(self.non_disableable_extensions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "extensionsToDisable": [entry.to_dict() for entry in self.extensions_to_disable],
            "nonDisableableExtensions": [entry.to_dict() for entry in self.non_disableable_extensions],
            "totalExtensions": self.total_extensions,
            "toDisableCount": self.to_disable_count,
            "nonDisableableCount": self.non_disableable_count,
        }


@dataclass(frozen=True)
class IsolationStatus:
    is_active: bool
    snapshot: ExtensionSnapshot | None
    disabled_extension_ids: list[str]
    non_disableable_extensions: list[ExtensionEntry]

    @property
    def disabled_count(self) -> int:
        return len(self.disabled_extension_ids)

    @property
    def non_disableable_count(self) -> int:
        return len(self.non_disableable_extensions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isActive": self.is_active,
            "snapshot": self.snapshot.to_dict() if self.snapshot is not None else None,
            "disabledCount": self.disabled_count,
            "nonDisableableCount": self.non_disableable_count,
            "disabledExtensionIds": list(self.disabled_extension_ids),
            "nonDisableableExtensions": [entry.to_dict() for entry in self.non_disableable_extensions],
        }


@dataclass(frozen=True)
class IsolationResult:
    success: bool
    snapshot: ExtensionSnapshot | None
    disabled_extensions: list[str]
    non_disableable_extensions: list[ExtensionEntry]
    elapsed_ms: int = 0
    error: str | None = None
    error_code: IsolationErrorCode | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "snapshot": self.snapshot.to_dict() if self.snapshot is not None else None,
            "disabledExtensions": list(self.disabled_extensions),
            "nonDisableableExtensions": [entry.to_dict() for entry in self.non_disableable_extensions],
            "error": self.error,
            "errorCode": self.error_code.value if self.error_code is not None else None,
            "elapsedMs": self.elapsed_ms,
        }


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    restored_extensions: list[str]
    failed_extensions: list[FailedExtension]
    elapsed_ms: int = 0
    error: str | None = None
    error_code: IsolationErrorCode | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "restoredExtensions": list(self.restored_extensions),
            "failedExtensions": [item.to_dict() for item in self.failed_extensions],
            "error": self.error,
            "errorCode": self.error_code.value if self.error_code is not None else None,
            "elapsedMs": self.elapsed_ms,
        }


# Restore outcomes. Every consumer handles all four.


@dataclass(frozen=True)
class RestoreCompleted:
    snapshot: ExtensionSnapshot
    restored: list[str]


@dataclass(frozen=True)
class RestoreIncomplete:
    snapshot: ExtensionSnapshot
    restored: list[str]
    failed: list[FailedExtension]
    error: str | None = None
    error_code: IsolationErrorCode | None = None


@dataclass(frozen=True)
class SnapshotRejected:
    reason: str
    detail: str
    snapshot_id: str | None = None


@dataclass(frozen=True)
class NoSnapshot:
    pass


RestoreOutcome = Union[RestoreCompleted, RestoreIncomplete, SnapshotRejected, NoSnapshot]
