from .directory import ExtensionDirectory, RegistryFileDirectory
from .manager import ExtensionIsolationManager
from .snapshot import build_snapshot, compute_snapshot_hash, partition_extensions, verify_snapshot_hash
from .store import DurableStore, JsonFileStore, SnapshotRepository
from .types import (
    ExtensionEntry,
    ExtensionInfo,
    ExtensionSnapshot,
    IsolationPreview,
    IsolationResult,
    IsolationStatus,
    PersistedSnapshot,
    RestoreResult,
    Violation,
    ViolationType,
)
from .violations import ViolationDetector

__all__ = [
    "ExtensionDirectory",
    "RegistryFileDirectory",
    "ExtensionIsolationManager",
    "build_snapshot",
    "compute_snapshot_hash",
    "partition_extensions",
    "verify_snapshot_hash",
    "DurableStore",
    "JsonFileStore",
    "SnapshotRepository",
    "ExtensionEntry",
    "ExtensionInfo",
    "ExtensionSnapshot",
    "IsolationPreview",
    "IsolationResult",
    "IsolationStatus",
    "PersistedSnapshot",
    "RestoreResult",
    "Violation",
    "ViolationType",
    "ViolationDetector",
]
