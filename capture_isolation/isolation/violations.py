"""Violation detection while isolation is active."""

from __future__ import annotations

from typing import Iterable

from capture_isolation.kernel.audit import AuditLog
from capture_isolation.kernel.timebase import now_ms

from .directory import ExtensionDirectory, list_extensions_or_raise
from .snapshot import ALWAYS_EXCLUDED_TYPES
from .types import ExtensionInfo, ExtensionSnapshot, Violation, ViolationType


AUDIT_PROCESS = "ISOLATION"


class ViolationDetector:
    """Diffs the live directory against the active snapshot.

    Findings accumulate across calls until ``clear()``; each call returns only
    what it found itself.
    """

    def __init__(
        self,
        directory: ExtensionDirectory,
        audit: AuditLog,
        *,
        excluded_types: Iterable[str] = ALWAYS_EXCLUDED_TYPES,
    ) -> None:
        self._directory = directory
        self._audit = audit
        self._excluded_types = frozenset(excluded_types) | ALWAYS_EXCLUDED_TYPES
        self._violations: list[Violation] = []

    @property
    def violations(self) -> list[Violation]:
        return list(self._violations)

    def clear(self) -> None:
        self._violations = []

    def check(
        self,
        snapshot: ExtensionSnapshot,
        disabled_ids: Iterable[str],
        live: list[ExtensionInfo] | None = None,
    ) -> list[Violation]:
        """Diff ``live`` (listed afresh when omitted) against ``snapshot``.

        Only ``disabled_ids``, the extensions this session actually turned off,
        can be reported as reactivated.
        """
        correlation_id = snapshot.correlation_id
        host_id = snapshot.host_extension_id
        if live is None:
            live = list_extensions_or_raise(self._directory)
        live_by_id = {info.id: info for info in live}
        found: list[Violation] = []

        for extension_id in dict.fromkeys(disabled_ids):
            current = live_by_id.get(extension_id)
            if current is None or not current.enabled:
                continue
            violation = Violation(
                type=ViolationType.EXTENSION_REACTIVATED,
                extension_id=extension_id,
                extension_name=current.name,
                timestamp=now_ms(),
                details={"version": current.version},
            )
            found.append(violation)
            self._audit.record(
                AUDIT_PROCESS,
                "VIOLATION_EXTENSION_REACTIVATED",
                correlation_id,
                {"extensionId": extension_id, "extensionName": current.name},
                level="critical",
            )

        members = snapshot.member_ids
        for info in live:
            if info.id == host_id or info.id in members:
                continue
            if info.type in self._excluded_types or not info.enabled:
                continue
            violation = Violation(
                type=ViolationType.NEW_EXTENSION_INSTALLED,
                extension_id=info.id,
                extension_name=info.name,
                timestamp=now_ms(),
                details={"version": info.version, "installType": info.install_type},
            )
            found.append(violation)
            self._audit.record(
                AUDIT_PROCESS,
                "VIOLATION_NEW_EXTENSION",
                correlation_id,
                {"extensionId": info.id, "extensionName": info.name},
                level="warn",
            )

        host = live_by_id.get(host_id)
        if host is not None and not host.enabled:
            violation = Violation(
                type=ViolationType.HOST_EXTENSION_DISABLED,
                extension_id=host_id,
                extension_name=host.name,
                timestamp=now_ms(),
            )
            found.append(violation)
            self._audit.record(
                AUDIT_PROCESS,
                "VIOLATION_HOST_DISABLED",
                correlation_id,
                {"extensionId": host_id},
                level="critical",
            )

        self._violations.extend(found)
        return found
