from __future__ import annotations

import argparse
import json
from typing import Any

from capture_isolation.config import IsolationConfig, load_isolation_config
from capture_isolation.kernel.audit import JsonlAuditLog
from capture_isolation.kernel.errors import HashIntegrityError, IsolationError
from capture_isolation.kernel.ids import new_correlation_id
from capture_isolation.kernel.logging import JsonlLogger
from capture_isolation.isolation.directory import RegistryFileDirectory
from capture_isolation.isolation.manager import ExtensionIsolationManager
from capture_isolation.isolation.store import JsonFileStore, SnapshotRepository


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def build_manager(cfg: IsolationConfig) -> ExtensionIsolationManager:
    return ExtensionIsolationManager(
        RegistryFileDirectory.from_config(cfg),
        JsonFileStore.from_config(cfg),
        JsonlAuditLog.from_config(cfg),
        cfg,
    )


def _repository(cfg: IsolationConfig) -> SnapshotRepository:
    return SnapshotRepository(JsonFileStore.from_config(cfg), cfg.snapshot_storage_key)


def cmd_status(cfg: IsolationConfig, _args: argparse.Namespace) -> int:
    repository = _repository(cfg)
    raw = repository.load_raw()
    payload: dict[str, Any] = {"ok": True, "pending": raw is not None, "storageKey": repository.key}
    if isinstance(raw, dict):
        snapshot = raw.get("snapshot") if isinstance(raw.get("snapshot"), dict) else {}
        payload["snapshotId"] = snapshot.get("id")
        payload["correlationId"] = snapshot.get("correlationId")
        payload["persistedAt"] = raw.get("persistedAt")
        payload["extensionsCount"] = len(snapshot.get("extensions") or [])
    _emit(payload)
    return 0


def cmd_verify(cfg: IsolationConfig, _args: argparse.Namespace) -> int:
    repository = _repository(cfg)
    try:
        persisted = repository.load()
    except HashIntegrityError as exc:
        _emit({"ok": False, "error": str(exc), "reason": exc.reason, "snapshotId": exc.snapshot_id})
        return 1
    if persisted is None:
        _emit({"ok": False, "error": "no pending snapshot", "storageKey": repository.key})
        return 1
    _emit(
        {
            "ok": True,
            "snapshotId": persisted.snapshot.id,
            "hash": persisted.snapshot.hash,
            "toRestore": [entry.id for entry in persisted.snapshot.entries_to_restore()],
        }
    )
    return 0


def cmd_preview(cfg: IsolationConfig, _args: argparse.Namespace) -> int:
    preview = build_manager(cfg).preview_isolation()
    _emit({"ok": True, **preview.to_dict()})
    return 0


def cmd_activate(cfg: IsolationConfig, args: argparse.Namespace) -> int:
    correlation_id = args.correlation_id or new_correlation_id()
    result = build_manager(cfg).activate_isolation(correlation_id)
    _emit({"ok": result.success, "correlationId": correlation_id, **result.to_dict()})
    return 0 if result.success else 1


def cmd_force_restore(cfg: IsolationConfig, _args: argparse.Namespace) -> int:
    result = build_manager(cfg).force_restore()
    _emit({"ok": result.success, **result.to_dict()})
    return 0 if result.success else 1


def cmd_recover(cfg: IsolationConfig, _args: argparse.Namespace) -> int:
    build_manager(cfg).check_pending_snapshots()
    pending = _repository(cfg).exists()
    _emit({"ok": not pending, "pending": pending})
    return 0 if not pending else 1


COMMANDS = {
    "status": cmd_status,
    "verify": cmd_verify,
    "preview": cmd_preview,
    "activate": cmd_activate,
    "force-restore": cmd_force_restore,
    "recover": cmd_recover,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capture-isolation")
    parser.add_argument("--config", default=None, help="YAML config (defaults to $CAPTURE_ISOLATION_CONFIG or config/isolation.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="show whether an isolation snapshot is pending")
    sub.add_parser("verify", help="check the pending snapshot's schema and hash")
    sub.add_parser("preview", help="list extensions activation would disable")

    activate = sub.add_parser("activate", help="disable other extensions and persist a snapshot")
    activate.add_argument("--correlation-id", default="")

    sub.add_parser("force-restore", help="restore extensions from the pending snapshot")
    sub.add_parser("recover", help="boot-time recovery of an orphaned snapshot")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = load_isolation_config(args.config)
    except IsolationError as exc:
        _emit({"ok": False, "error": str(exc), "errorCode": exc.code.value})
        return 1
    logger = JsonlLogger.from_config(cfg)
    correlation_id = getattr(args, "correlation_id", "") or None
    logger.event(event="cli.command.start", command=args.command, correlation_id=correlation_id)
    try:
        code = int(COMMANDS[args.command](cfg, args))
    except IsolationError as exc:
        logger.event(event="cli.command.error", command=args.command, level="error", error=str(exc), error_code=exc.code.value)
        _emit({"ok": False, "error": str(exc), "errorCode": exc.code.value})
        return 1
    logger.event(event="cli.command.finish", command=args.command, exit_code=code, correlation_id=correlation_id)
    return code


if __name__ == "__main__":
    raise SystemExit(main())
