from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from capture_isolation import __version__
from capture_isolation.kernel.errors import ConfigError
from capture_isolation.kernel.schema_registry import default_registry


CONFIG_ENV_VAR = "CAPTURE_ISOLATION_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/isolation.yaml")
DEFAULT_SNAPSHOT_STORAGE_KEY = "lexato_isolation_snapshot"
DEFAULT_EXCLUDED_TYPES = ("theme", "login_screen_extension")
DEFAULT_ORPHAN_SNAPSHOT_MAX_AGE_MS = 3_600_000


@dataclass(frozen=True)
class IsolationConfig:
    raw: dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> dict[str, Any]:
        section = self.raw.get(name, {})
        return section if isinstance(section, dict) else {}

    @property
    def snapshot_storage_key(self) -> str:
        return str(self._section("isolation").get("snapshot_storage_key", DEFAULT_SNAPSHOT_STORAGE_KEY))

    @property
    def excluded_types(self) -> frozenset[str]:
        configured = self._section("isolation").get("excluded_types", list(DEFAULT_EXCLUDED_TYPES))
        # theme is always excluded.
        return frozenset(str(item) for item in configured) | {"theme"}

    @property
    def orphan_snapshot_max_age_ms(self) -> int:
        value = int(self._section("isolation").get("orphan_snapshot_max_age_ms", DEFAULT_ORPHAN_SNAPSHOT_MAX_AGE_MS))
        return max(0, value)

    @property
    def record_version(self) -> str:
        return str(self._section("isolation").get("record_version", __version__))

    @property
    def storage_root(self) -> Path:
        return Path(self._section("storage").get("root_dir", "data/isolation_store")).expanduser()

    @property
    def registry_path(self) -> Path:
        return Path(self._section("directory").get("registry_path", "data/extensions.json")).expanduser()

    @property
    def audit_path(self) -> Path:
        return Path(self._section("audit").get("path", "data/logs/isolation_audit.jsonl")).expanduser()

    @property
    def log_path(self) -> Path:
        return Path(self._section("logging").get("path", "data/logs/capture_isolation.jsonl")).expanduser()

    @property
    def log_rotate_max_bytes(self) -> int:
        return int(self._section("logging").get("rotate_max_bytes", 5_000_000))


def validate_config(payload: dict[str, Any]) -> None:
    registry = default_registry()
    issues = registry.validate("config", payload)
    if issues:
        raise ConfigError(f"invalid isolation config: {registry.format_issues(issues)}")


def load_isolation_config(path: str | Path | None = None) -> IsolationConfig:
    if path:
        cfg_path = Path(path).expanduser()
    elif os.environ.get(CONFIG_ENV_VAR):
        cfg_path = Path(os.environ[CONFIG_ENV_VAR]).expanduser()
    else:
        cfg_path = DEFAULT_CONFIG_PATH
    payload: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"unreadable config file {cfg_path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"config file {cfg_path} must contain a mapping")
        payload = loaded
    validate_config(payload)
    return IsolationConfig(raw=payload)
