"""Extension directory capability and a JSON registry implementation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

from capture_isolation.kernel.atomic_write import atomic_write_json
from capture_isolation.kernel.errors import DirectoryEnumerationError, ExtensionMutationError

from .types import ExtensionInfo


class ExtensionDirectory(Protocol):
    def list_extensions(self) -> list[ExtensionInfo]:
        ...

    def set_enabled(self, extension_id: str, enabled: bool) -> None:
        ...

    def self_id(self) -> str:
        ...


class RegistryFileDirectory:
    """Directory backed by a JSON registry file.

    The file mirrors what ``chrome.management.getAll()`` reports for a profile::

        {"selfId": "...", "extensions": [{"id": ..., "enabled": ..., "mayDisable": ...}]}

    Toggles are written back atomically so a crash never truncates the registry.
    Setting an extension to the state it already has is a no-op.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @classmethod
    def from_config(cls, config: Any) -> "RegistryFileDirectory":
        return cls(config.registry_path)

    def _read(self) -> dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise DirectoryEnumerationError(f"extension registry missing: {self._path}") from exc
        except (OSError, ValueError) as exc:
            raise DirectoryEnumerationError(f"extension registry unreadable: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("extensions"), list):
            raise DirectoryEnumerationError("extension registry must hold an 'extensions' list")
        return payload

    def self_id(self) -> str:
        return str(self._read().get("selfId") or "")

    def list_extensions(self) -> list[ExtensionInfo]:
        payload = self._read()
        try:
            return [ExtensionInfo.from_mapping(item) for item in payload["extensions"]]
        except (KeyError, TypeError) as exc:
            raise DirectoryEnumerationError(f"malformed extension entry: {exc}") from exc

    def set_enabled(self, extension_id: str, enabled: bool) -> None:
        try:
            payload = self._read()
        except DirectoryEnumerationError as exc:
            raise ExtensionMutationError(extension_id, str(exc)) from exc
        for item in payload["extensions"]:
            if not isinstance(item, dict) or str(item.get("id")) != extension_id:
                continue
            if bool(item.get("enabled", False)) == bool(enabled):
                return
            if not bool(item.get("mayDisable", False)):
                raise ExtensionMutationError(extension_id, f"extension {extension_id} is managed and cannot be modified")
            item["enabled"] = bool(enabled)
            try:
                atomic_write_json(self._path, payload, sort_keys=True, indent=2)
            except OSError as exc:
                raise ExtensionMutationError(extension_id, f"registry write failed: {exc}") from exc
            return
        raise ExtensionMutationError(extension_id, f"no extension with id {extension_id}")


def list_extensions_or_raise(directory: ExtensionDirectory) -> list[ExtensionInfo]:
    """Enumerate ``directory``, reporting any collaborator failure as ``DirectoryEnumerationError``."""
    try:
        extensions = directory.list_extensions()
    except DirectoryEnumerationError:
        raise
    except Exception as exc:
        raise DirectoryEnumerationError(f"failed to list extensions: {exc}") from exc
    return [item if isinstance(item, ExtensionInfo) else ExtensionInfo.from_mapping(item) for item in extensions]
