"""Extension isolation state machine.

Lifecycle::

    Inactive --activate_isolation--> Active --deactivate_isolation--> Inactive
                                       ^            |
                                       +--(restore failures, retry)

The in-memory flag is only a cache. The durable record under the configured
store key is the source of truth for "an isolation session is outstanding"; it
is created once the batch of disables has run and deleted only after every
entry that was enabled before isolation has been re-enabled. ``force_restore``
and ``check_pending_snapshots`` act on the durable record alone, which is how a
session orphaned by a killed process is recovered on the next boot.

Per-extension toggles run strictly sequentially; a failure on one extension is
logged and the batch moves on. Every attempt is written to the audit log under
the ``ISOLATION`` process tag with the session's correlation id.
"""

from __future__ import annotations

from typing import Any

from capture_isolation.config import IsolationConfig
from capture_isolation.kernel.audit import AuditLog
from capture_isolation.kernel.errors import (
    AlreadyActiveError,
    HashIntegrityError,
    IsolationError,
    IsolationErrorCode,
    NotActiveError,
    SnapshotNotFoundError,
    StoreError,
)
from capture_isolation.kernel.schema_registry import SchemaRegistry
from capture_isolation.kernel.timebase import monotonic_ms, now_ms

from .directory import ExtensionDirectory, list_extensions_or_raise
from .snapshot import build_snapshot, partition_extensions
from .store import DurableStore, SnapshotRepository
from .types import (
    ExtensionEntry,
    ExtensionSnapshot,
    FailedExtension,
    IsolationPreview,
    IsolationResult,
    IsolationStatus,
    NoSnapshot,
    RestoreCompleted,
    RestoreIncomplete,
    RestoreOutcome,
    RestoreResult,
    SnapshotRejected,
    Violation,
)
from .violations import AUDIT_PROCESS, ViolationDetector


def _error_code(exc: BaseException, default: IsolationErrorCode) -> IsolationErrorCode:
    if isinstance(exc, IsolationError):
        return exc.code
    return default


def _short_hash(value: str | None) -> str | None:
    if not value:
        return value
    return value[:16] + "..."


class ExtensionIsolationManager:
    def __init__(
        self,
        directory: ExtensionDirectory,
        store: DurableStore,
        audit: AuditLog,
        config: IsolationConfig | None = None,
        *,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self._directory = directory
        self._audit = audit
        self._config = config or IsolationConfig()
        self._repository = SnapshotRepository(store, self._config.snapshot_storage_key, schemas=schemas)
        self._detector = ViolationDetector(directory, audit, excluded_types=self._config.excluded_types)
        self._host_id = str(directory.self_id())
        self._active = False
        self._snapshot: ExtensionSnapshot | None = None
        self._disabled: list[str] = []
        self._non_disableable: list[ExtensionEntry] = []

    @property
    def host_extension_id(self) -> str:
        return self._host_id

    @property
    def is_active(self) -> bool:
        return self._active

    def _log(self, action: str, correlation_id: str | None, data: dict[str, Any], *, level: str = "info") -> None:
        self._audit.record(AUDIT_PROCESS, action, correlation_id or "", data, level=level)

    def _reset_state(self) -> None:
        self._active = False
        self._snapshot = None
        self._disabled = []
        self._non_disableable = []
        self._detector.clear()

    def _list_extensions(self, correlation_id: str | None):
        try:
            extensions = list_extensions_or_raise(self._directory)
        except IsolationError as exc:
            self._log("LIST_EXTENSIONS_FAILED", correlation_id, {"error": str(exc)}, level="error")
            raise
        self._log("EXTENSIONS_LISTED", correlation_id, {"totalCount": len(extensions)})
        return extensions

    # ------------------------------------------------------------------
    # Read models

    def get_isolation_status(self) -> IsolationStatus:
        return IsolationStatus(
            is_active=self._active,
            snapshot=self._snapshot,
            disabled_extension_ids=list(self._disabled),
            non_disableable_extensions=list(self._non_disableable),
        )

    def preview_isolation(self) -> IsolationPreview:
        """List what activation would disable. Touches neither directory state nor the store."""
        extensions = self._list_extensions(None)
        partition = partition_extensions(extensions, self._host_id, self._config.excluded_types)
        return IsolationPreview(
            extensions_to_disable=list(partition.eligible),
            non_disableable_extensions=list(partition.non_disableable),
            total_extensions=len(extensions),
        )

    # ------------------------------------------------------------------
    # Activation

    def activate_isolation(self, correlation_id: str) -> IsolationResult:
        started = monotonic_ms()
        if self._active:
            err = AlreadyActiveError()
            self._log(
                "ALREADY_ACTIVE",
                correlation_id,
                {"currentSnapshotId": self._snapshot.id if self._snapshot else None},
                level="warn",
            )
            return IsolationResult(
                success=False,
                snapshot=self._snapshot,
                disabled_extensions=list(self._disabled),
                non_disableable_extensions=list(self._non_disableable),
                elapsed_ms=monotonic_ms() - started,
                error=str(err),
                error_code=err.code,
            )

        self._log("ACTIVATION_START", correlation_id, {"correlationId": correlation_id})
        disabled: list[str] = []
        try:
            if self._repository.exists():
                raise AlreadyActiveError("a snapshot from a previous isolation session is still pending restore")

            extensions = self._list_extensions(correlation_id)
            partition = partition_extensions(extensions, self._host_id, self._config.excluded_types)
            self._log(
                "EXTENSIONS_FILTERED",
                correlation_id,
                {"eligibleCount": len(partition.eligible), "nonDisableableCount": len(partition.non_disableable)},
            )
            if partition.non_disableable:
                self._log(
                    "NON_DISABLEABLE_EXTENSIONS",
                    correlation_id,
                    {
                        "count": len(partition.non_disableable),
                        "extensions": [{"id": e.id, "name": e.name} for e in partition.non_disableable],
                    },
                    level="warn",
                )

            snapshot = build_snapshot(partition, self._host_id, correlation_id)
            self._log(
                "SNAPSHOT_CREATED",
                correlation_id,
                {"snapshotId": snapshot.id, "extensionsCount": len(snapshot.extensions), "hash": _short_hash(snapshot.hash)},
            )

            failed: list[FailedExtension] = []
            for entry in partition.eligible:
                try:
                    self._directory.set_enabled(entry.id, False)
                except Exception as exc:
                    failed.append(FailedExtension(id=entry.id, name=entry.name, error=str(exc)))
                    self._log(
                        "EXTENSION_DISABLE_FAILED",
                        correlation_id,
                        {"extensionId": entry.id, "extensionName": entry.name, "error": str(exc)},
                        level="error",
                    )
                    continue
                disabled.append(entry.id)
                self._log("EXTENSION_DISABLED", correlation_id, {"extensionId": entry.id, "extensionName": entry.name})

            try:
                self._repository.persist(snapshot, version=self._config.record_version)
            except IsolationError:
                raise
            except Exception as exc:
                raise StoreError(f"failed to persist snapshot: {exc}") from exc
            self._log(
                "SNAPSHOT_PERSISTED",
                correlation_id,
                {"snapshotId": snapshot.id, "storageKey": self._repository.key},
            )
        except Exception as exc:
            code = _error_code(exc, IsolationErrorCode.SNAPSHOT_FAILED)
            self._log(
                "ACTIVATION_FAILED",
                correlation_id,
                {"error": str(exc), "errorCode": code.value, "elapsedMs": monotonic_ms() - started},
                level="error",
            )
            if disabled:
                # Nothing durable records these yet, so undo them now.
                self._restore_ids(disabled, correlation_id)
            return IsolationResult(
                success=False,
                snapshot=None,
                disabled_extensions=[],
                non_disableable_extensions=[],
                elapsed_ms=monotonic_ms() - started,
                error=str(exc),
                error_code=code,
            )

        self._active = True
        self._snapshot = snapshot
        self._disabled = disabled
        self._non_disableable = list(partition.non_disableable)
        self._detector.clear()
        elapsed = monotonic_ms() - started
        self._log(
            "ACTIVATION_COMPLETE",
            correlation_id,
            {
                "snapshotId": snapshot.id,
                "snapshotHash": snapshot.hash,
                "disabledCount": len(disabled),
                "failedCount": len(failed),
                "nonDisableableCount": len(partition.non_disableable),
                "elapsedMs": elapsed,
            },
        )
        return IsolationResult(
            success=True,
            snapshot=snapshot,
            disabled_extensions=list(disabled),
            non_disableable_extensions=list(partition.non_disableable),
            elapsed_ms=elapsed,
        )

    # ------------------------------------------------------------------
    # Restoration

    def _restore_entries(
        self, entries: list[ExtensionEntry], correlation_id: str
    ) -> tuple[list[str], list[FailedExtension]]:
        restored: list[str] = []
        failed: list[FailedExtension] = []
        for entry in entries:
            if not entry.was_enabled:
                continue
            try:
                self._directory.set_enabled(entry.id, True)
            except Exception as exc:
                failed.append(FailedExtension(id=entry.id, name=entry.name, error=str(exc)))
                self._log(
                    "EXTENSION_RESTORE_FAILED",
                    correlation_id,
                    {"extensionId": entry.id, "extensionName": entry.name, "error": str(exc)},
                    level="error",
                )
                continue
            restored.append(entry.id)
            self._log("EXTENSION_RESTORED", correlation_id, {"extensionId": entry.id, "extensionName": entry.name})
        return restored, failed

    def _restore_ids(self, ids: list[str], correlation_id: str) -> tuple[list[str], list[FailedExtension]]:
        restored: list[str] = []
        failed: list[FailedExtension] = []
        for extension_id in ids:
            try:
                self._directory.set_enabled(extension_id, True)
            except Exception as exc:
                failed.append(FailedExtension(id=extension_id, name="unknown", error=str(exc)))
                self._log(
                    "EXTENSION_RESTORE_BY_ID_FAILED",
                    correlation_id,
                    {"extensionId": extension_id, "error": str(exc)},
                    level="error",
                )
                continue
            restored.append(extension_id)
            self._log("EXTENSION_RESTORED_BY_ID", correlation_id, {"extensionId": extension_id})
        return restored, failed

    def _restore_from_store(self, correlation_id: str, *, expected: ExtensionSnapshot | None = None) -> RestoreOutcome:
        try:
            persisted = self._repository.load()
        except HashIntegrityError as exc:
            action = "SNAPSHOT_HASH_MISMATCH" if exc.reason == "hash_mismatch" else "SNAPSHOT_CORRUPTED"
            self._log(
                action,
                correlation_id,
                {
                    "snapshotId": exc.snapshot_id,
                    "expected": _short_hash(exc.expected),
                    "calculated": _short_hash(exc.calculated),
                    "error": str(exc),
                },
                level="error",
            )
            return SnapshotRejected(reason=exc.reason, detail=str(exc), snapshot_id=exc.snapshot_id)
        if persisted is None:
            return NoSnapshot()

        snapshot = persisted.snapshot
        if expected is not None and (snapshot.id != expected.id or snapshot.hash != expected.hash):
            self._log(
                "SNAPSHOT_SESSION_MISMATCH",
                correlation_id,
                {"expectedSnapshotId": expected.id, "storedSnapshotId": snapshot.id},
                level="error",
            )
            return SnapshotRejected(
                reason="session_mismatch",
                detail=f"stored snapshot {snapshot.id} does not belong to session {expected.id}",
                snapshot_id=snapshot.id,
            )

        cid = correlation_id or snapshot.correlation_id
        restored, failed = self._restore_entries(snapshot.entries_to_restore(), cid)
        if failed:
            self._log("SNAPSHOT_KEPT_DUE_TO_FAILURES", cid, {"snapshotId": snapshot.id, "failedCount": len(failed)}, level="warn")
            return RestoreIncomplete(snapshot=snapshot, restored=restored, failed=failed)
        try:
            self._repository.remove()
        except Exception as exc:
            self._log(
                "SNAPSHOT_REMOVE_FAILED",
                cid,
                {"snapshotId": snapshot.id, "storageKey": self._repository.key, "error": str(exc)},
                level="error",
            )
            return RestoreIncomplete(
                snapshot=snapshot,
                restored=restored,
                failed=[],
                error=f"extensions restored but the snapshot could not be removed: {exc}",
                error_code=_error_code(exc, IsolationErrorCode.STORE_FAILED),
            )
        self._log("SNAPSHOT_REMOVED", cid, {"snapshotId": snapshot.id, "storageKey": self._repository.key})
        return RestoreCompleted(snapshot=snapshot, restored=restored)

    def _conclude(self, outcome: RestoreOutcome, phase: str, correlation_id: str, started: int) -> RestoreResult:
        if isinstance(outcome, (RestoreCompleted, RestoreIncomplete)) and not correlation_id:
            correlation_id = outcome.snapshot.correlation_id
        if isinstance(outcome, RestoreCompleted):
            self._reset_state()
            elapsed = monotonic_ms() - started
            self._log(
                f"{phase}_COMPLETE",
                correlation_id,
                {
                    "success": True,
                    "snapshotHash": outcome.snapshot.hash,
                    "restoredCount": len(outcome.restored),
                    "failedCount": 0,
                    "elapsedMs": elapsed,
                },
            )
            return RestoreResult(success=True, restored_extensions=list(outcome.restored), failed_extensions=[], elapsed_ms=elapsed)

        if isinstance(outcome, RestoreIncomplete):
            # Re-enabled ids are no longer held disabled by this session.
            restored_ids = set(outcome.restored)
            self._disabled = [extension_id for extension_id in self._disabled if extension_id not in restored_ids]
            elapsed = monotonic_ms() - started
            error = outcome.error or f"{len(outcome.failed)} extension(s) could not be restored"
            self._log(
                f"{phase}_FAILED",
                correlation_id,
                {
                    "success": False,
                    "error": error,
                    "snapshotHash": outcome.snapshot.hash,
                    "restoredCount": len(outcome.restored),
                    "failedCount": len(outcome.failed),
                    "elapsedMs": elapsed,
                },
                level="error",
            )
            return RestoreResult(
                success=False,
                restored_extensions=list(outcome.restored),
                failed_extensions=list(outcome.failed),
                elapsed_ms=elapsed,
                error=error,
                error_code=outcome.error_code or IsolationErrorCode.RESTORE_FAILED,
            )

        if isinstance(outcome, SnapshotRejected):
            elapsed = monotonic_ms() - started
            error = "hash mismatch" if outcome.reason == "hash_mismatch" else outcome.detail
            self._log(
                f"{phase}_FAILED",
                correlation_id,
                {"success": False, "error": error, "reason": outcome.reason, "snapshotId": outcome.snapshot_id, "elapsedMs": elapsed},
                level="error",
            )
            return RestoreResult(
                success=False,
                restored_extensions=[],
                failed_extensions=[],
                elapsed_ms=elapsed,
                error=error,
                error_code=IsolationErrorCode.SNAPSHOT_CORRUPTED,
            )

        if isinstance(outcome, NoSnapshot):
            if phase == "DEACTIVATION":
                err = SnapshotNotFoundError()
                elapsed = monotonic_ms() - started
                self._log(f"{phase}_FAILED", correlation_id, {"success": False, "error": str(err), "elapsedMs": elapsed}, level="error")
                return RestoreResult(
                    success=False,
                    restored_extensions=[],
                    failed_extensions=[],
                    elapsed_ms=elapsed,
                    error=str(err),
                    error_code=err.code,
                )
            restored: list[str] = []
            failed: list[FailedExtension] = []
            if self._disabled:
                restored, failed = self._restore_ids(list(self._disabled), correlation_id)
            if not failed:
                self._reset_state()
            elapsed = monotonic_ms() - started
            self._log(
                f"{phase}_COMPLETE" if not failed else f"{phase}_FAILED",
                correlation_id,
                {"success": not failed, "snapshot": None, "restoredCount": len(restored), "failedCount": len(failed), "elapsedMs": elapsed},
                level="info" if not failed else "error",
            )
            return RestoreResult(
                success=not failed,
                restored_extensions=restored,
                failed_extensions=failed,
                elapsed_ms=elapsed,
                error=None if not failed else f"{len(failed)} extension(s) could not be restored",
                error_code=None if not failed else IsolationErrorCode.RESTORE_FAILED,
            )

        raise TypeError(f"unhandled restore outcome: {outcome!r}")

    def deactivate_isolation(self) -> RestoreResult:
        started = monotonic_ms()
        if not self._active or self._snapshot is None:
            err = NotActiveError()
            self._log("NOT_ACTIVE", None, {}, level="warn")
            return RestoreResult(
                success=False,
                restored_extensions=[],
                failed_extensions=[],
                elapsed_ms=monotonic_ms() - started,
                error=str(err),
                error_code=err.code,
            )

        correlation_id = self._snapshot.correlation_id
        self._log(
            "DEACTIVATION_START",
            correlation_id,
            {
                "snapshotId": self._snapshot.id,
                "snapshotHash": self._snapshot.hash,
                "extensionsToRestore": len(self._snapshot.entries_to_restore()),
            },
        )
        try:
            outcome = self._restore_from_store(correlation_id, expected=self._snapshot)
        except Exception as exc:
            code = _error_code(exc, IsolationErrorCode.RESTORE_FAILED)
            elapsed = monotonic_ms() - started
            self._log(
                "DEACTIVATION_FAILED",
                correlation_id,
                {"success": False, "error": str(exc), "errorCode": code.value, "elapsedMs": elapsed},
                level="error",
            )
            return RestoreResult(
                success=False,
                restored_extensions=[],
                failed_extensions=[],
                elapsed_ms=elapsed,
                error=str(exc),
                error_code=code,
            )
        return self._conclude(outcome, "DEACTIVATION", correlation_id, started)

    def restore(self) -> RestoreResult:
        """Alias of ``deactivate_isolation`` used by capture cancellation."""
        return self.deactivate_isolation()

    def force_restore(self) -> RestoreResult:
        """Restore from the durable record regardless of the in-memory flag."""
        started = monotonic_ms()
        correlation_id = self._snapshot.correlation_id if self._snapshot is not None else ""
        self._log(
            "FORCE_RESTORE_START",
            correlation_id,
            {"currentSnapshotHash": self._snapshot.hash if self._snapshot is not None else None},
        )
        try:
            outcome = self._restore_from_store(correlation_id)
        except Exception as exc:
            code = _error_code(exc, IsolationErrorCode.RESTORE_FAILED)
            elapsed = monotonic_ms() - started
            self._log(
                "FORCE_RESTORE_FAILED",
                correlation_id,
                {"success": False, "error": str(exc), "errorCode": code.value, "elapsedMs": elapsed},
                level="error",
            )
            return RestoreResult(
                success=False,
                restored_extensions=[],
                failed_extensions=[],
                elapsed_ms=elapsed,
                error=str(exc),
                error_code=code,
            )
        return self._conclude(outcome, "FORCE_RESTORE", correlation_id, started)

    def check_pending_snapshots(self) -> None:
        """Boot-time recovery of a session orphaned by a previous process. Never raises."""
        self._log("CHECK_PENDING_SNAPSHOTS", None, {})
        try:
            raw = self._repository.load_raw()
            if raw is None:
                self._log("NO_PENDING_SNAPSHOTS", None, {})
                return
            snapshot_raw = raw.get("snapshot") if isinstance(raw, dict) else None
            snapshot_raw = snapshot_raw if isinstance(snapshot_raw, dict) else {}
            correlation_id = str(snapshot_raw.get("correlationId") or "")
            persisted_at = raw.get("persistedAt") if isinstance(raw, dict) else None
            if isinstance(persisted_at, int) and not isinstance(persisted_at, bool):
                age_ms = now_ms() - persisted_at
                if age_ms > self._config.orphan_snapshot_max_age_ms:
                    self._log(
                        "ORPHAN_SNAPSHOT_FOUND",
                        correlation_id,
                        {
                            "snapshotId": snapshot_raw.get("id"),
                            "snapshotHash": snapshot_raw.get("hash"),
                            "ageMs": age_ms,
                            "maxAgeMs": self._config.orphan_snapshot_max_age_ms,
                        },
                        level="warn",
                    )
            extensions = snapshot_raw.get("extensions")
            self._log(
                "RESTORING_PENDING_SNAPSHOT",
                correlation_id,
                {
                    "snapshotId": snapshot_raw.get("id"),
                    "snapshotHash": snapshot_raw.get("hash"),
                    "extensionsCount": len(extensions) if isinstance(extensions, list) else None,
                },
            )
            result = self.force_restore()
            self._log(
                "PENDING_SNAPSHOT_RESTORED" if result.success else "PENDING_SNAPSHOT_RESTORE_FAILED",
                correlation_id,
                {
                    "snapshotHash": snapshot_raw.get("hash"),
                    "restoredCount": len(result.restored_extensions),
                    "failedCount": len(result.failed_extensions),
                    "error": result.error,
                },
                level="info" if result.success else "error",
            )
        except Exception as exc:
            self._log("CHECK_PENDING_SNAPSHOTS_FAILED", None, {"error": str(exc)}, level="error")

    # ------------------------------------------------------------------
    # Violations

    def check_for_violations(self) -> list[Violation]:
        if not self._active or self._snapshot is None:
            return []
        live = self._list_extensions(self._snapshot.correlation_id)
        return self._detector.check(self._snapshot, self._disabled, live)

    def get_violations(self) -> list[Violation]:
        return self._detector.violations
