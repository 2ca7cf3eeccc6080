"""JSON schema registry and deterministic validation helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from jsonschema import Draft202012Validator, validators


SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schemas"


@dataclass(frozen=True)
class SchemaIssue:
    path: str
    message: str


def _path_to_str(path: Iterable[Any]) -> str:
    parts = ["$"]
    for part in path:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            parts.append(f".{part}")
    return "".join(parts)


def _make_validator_class():
    type_checker = Draft202012Validator.TYPE_CHECKER
    # Keep objects strictly as dicts and integers strictly non-bool.
    type_checker = type_checker.redefine("object", lambda _c, inst: isinstance(inst, dict))
    type_checker = type_checker.redefine(
        "integer", lambda _c, inst: isinstance(inst, int) and not isinstance(inst, bool)
    )
    return validators.extend(Draft202012Validator, type_checker=type_checker)


_Validator = _make_validator_class()


class SchemaRegistry:
    def __init__(self, schema_dir: str | Path | None = None) -> None:
        self._schema_dir = Path(schema_dir) if schema_dir is not None else SCHEMA_DIR
        self._schema_cache: dict[str, dict[str, Any]] = {}
        self._validator_cache: dict[str, Any] = {}

    def load_schema(self, name: str) -> dict[str, Any]:
        if name not in self._schema_cache:
            path = self._schema_dir / f"{name}.schema.json"
            self._schema_cache[name] = json.loads(path.read_text(encoding="utf-8"))
        return self._schema_cache[name]

    def validate(self, name: str, instance: Any) -> list[SchemaIssue]:
        validator = self._validator(name)
        errors = sorted(
            validator.iter_errors(instance),
            key=lambda err: (_path_to_str(err.absolute_path), err.message),
        )
        return [SchemaIssue(path=_path_to_str(err.absolute_path), message=err.message) for err in errors]

    def format_issues(self, issues: list[SchemaIssue]) -> str:
        return "; ".join(f"{issue.path}: {issue.message}" for issue in issues)

    def _validator(self, name: str):
        cached = self._validator_cache.get(name)
        if cached is not None:
            return cached
        validator = _Validator(self.load_schema(name))
        self._validator_cache[name] = validator
        return validator


_DEFAULT_REGISTRY: SchemaRegistry | None = None


def default_registry() -> SchemaRegistry:
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = SchemaRegistry()
    return _DEFAULT_REGISTRY
