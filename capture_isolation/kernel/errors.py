"""Isolation error types.

Each error carries the wire error code reported to callers in failure results.
"""

from __future__ import annotations

from enum import Enum


class IsolationErrorCode(str, Enum):
    PERMISSION_DENIED = "ISOLATION_PERMISSION_DENIED"
    LIST_FAILED = "ISOLATION_LIST_FAILED"
    SNAPSHOT_FAILED = "ISOLATION_SNAPSHOT_FAILED"
    RESTORE_FAILED = "ISOLATION_RESTORE_FAILED"
    SNAPSHOT_CORRUPTED = "ISOLATION_SNAPSHOT_CORRUPTED"
    VIOLATION_DETECTED = "ISOLATION_VIOLATION_DETECTED"
    ALREADY_ACTIVE = "ISOLATION_ALREADY_ACTIVE"
    NOT_ACTIVE = "ISOLATION_NOT_ACTIVE"
    SNAPSHOT_NOT_FOUND = "ISOLATION_SNAPSHOT_NOT_FOUND"
    STORE_FAILED = "ISOLATION_STORE_FAILED"


class IsolationError(Exception):
    """Base error for capture isolation."""

    code: IsolationErrorCode = IsolationErrorCode.SNAPSHOT_FAILED


class ConfigError(IsolationError):
    """Raised when configuration validation or loading fails."""


class PreconditionError(IsolationError):
    """Raised when an operation is invoked in the wrong isolation state."""


class AlreadyActiveError(PreconditionError):
    code = IsolationErrorCode.ALREADY_ACTIVE

    def __init__(self, message: str = "isolation is already active") -> None:
        super().__init__(message)


class NotActiveError(PreconditionError):
    code = IsolationErrorCode.NOT_ACTIVE

    def __init__(self, message: str = "isolation is not active") -> None:
        super().__init__(message)


class DirectoryEnumerationError(IsolationError):
    """Raised when the extension directory cannot be listed."""

    code = IsolationErrorCode.LIST_FAILED


class ExtensionMutationError(IsolationError):
    """Raised when enabling or disabling a single extension fails."""

    code = IsolationErrorCode.RESTORE_FAILED

    def __init__(self, extension_id: str, message: str) -> None:
        super().__init__(message)
        self.extension_id = extension_id


class HashIntegrityError(IsolationError):
    """Raised when a persisted snapshot fails its hash or format check."""

    code = IsolationErrorCode.SNAPSHOT_CORRUPTED

    def __init__(
        self,
        message: str,
        *,
        reason: str = "hash_mismatch",
        snapshot_id: str | None = None,
        expected: str | None = None,
        calculated: str | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.snapshot_id = snapshot_id
        self.expected = expected
        self.calculated = calculated


class SnapshotNotFoundError(IsolationError):
    code = IsolationErrorCode.SNAPSHOT_NOT_FOUND

    def __init__(self, message: str = "snapshot not found in store") -> None:
        super().__init__(message)


class StoreError(IsolationError):
    """Raised when the durable store cannot be read or written."""

    code = IsolationErrorCode.STORE_FAILED
