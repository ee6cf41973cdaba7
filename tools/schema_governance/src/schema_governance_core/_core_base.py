#!/usr/bin/env python3
from __future__ import annotations

import datetime as dt
import hashlib
import json
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

TOOL_VERSION = "1.0.0"
MODEL_SCHEMA_VERSION = 1
DEFINITION_SUFFIX = ".schema"
FILE_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(?:/[a-z][a-z0-9_]*)*$")


class SchemaGovernanceError(Exception):
    pass


@dataclass(frozen=True)
class SourceLocation:
    file_key: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.file_key}:{self.line}:{self.column}"


class ParseError(SchemaGovernanceError):
    def __init__(self, location: SourceLocation, reason: str) -> None:
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason

    def as_dict(self) -> dict[str, Any]:
        return {
            "file_key": self.location.file_key,
            "line": self.location.line,
            "column": self.location.column,
            "reason": self.reason,
        }


class ResolutionError(SchemaGovernanceError):
    def __init__(self, file_key: str, entity_path: str, reason: str) -> None:
        super().__init__(f"{entity_path}: {reason}")
        self.file_key = file_key
        self.entity_path = entity_path
        self.reason = reason


class ConcurrentModificationError(SchemaGovernanceError):
    def __init__(self, file_key: str, expected_revision: str | None, actual_revision: str | None) -> None:
        super().__init__(
            f"Baseline for '{file_key}' changed concurrently "
            f"(expected revision {expected_revision or '<none>'}, found {actual_revision or '<none>'}). "
            "Re-run governance against the fresh baseline."
        )
        self.file_key = file_key
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


class DependencyCycleError(SchemaGovernanceError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__("Dependency cycle detected: " + " -> ".join(cycle))
        self.cycle = cycle


class ConfigError(SchemaGovernanceError):
    pass


class ChangesetError(SchemaGovernanceError):
    pass


class GovernanceCancelled(SchemaGovernanceError):
    pass


def load_json(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise SchemaGovernanceError(f"Unable to read JSON file '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise SchemaGovernanceError(f"Invalid JSON in '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise SchemaGovernanceError(f"JSON root in '{path}' must be an object")
    return payload


def dump_json(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True) + "\n"


def write_json(path: Path, value: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_json(value), encoding="utf-8")


def write_text_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(temp_name, path)
    except OSError:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SchemaGovernanceError(f"Unable to read file '{path}': {exc}") from exc


def stable_hash(value: Any) -> str:
    payload = json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def ensure_relative_path(root: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return root / path


def validate_file_key(file_key: str) -> str:
    if not isinstance(file_key, str) or not FILE_KEY_PATTERN.fullmatch(file_key):
        raise ChangesetError(
            f"Invalid file key '{file_key}': expected lowercase path segments like 'auth/account'"
        )
    return file_key


def domain_of(file_key: str) -> str:
    return file_key.split("/", 1)[0]


def file_key_alias(file_key: str) -> str:
    return file_key.rsplit("/", 1)[-1]


def file_key_from_path(path: Path, schema_root: Path) -> str:
    try:
        relative = path.resolve().relative_to(schema_root.resolve())
    except ValueError as exc:
        raise ChangesetError(f"Definition file '{path}' is outside schema root '{schema_root}'") from exc
    text = relative.as_posix()
    if text.endswith(DEFINITION_SUFFIX):
        text = text[: -len(DEFINITION_SUFFIX)]
    return validate_file_key(text)


def iter_definition_files(schema_root: Path) -> list[Path]:
    if not schema_root.is_dir():
        raise SchemaGovernanceError(f"Schema root '{schema_root}' is not a directory")
    return sorted(path.resolve() for path in schema_root.rglob(f"*{DEFINITION_SUFFIX}") if path.is_file())


def parse_utc_timestamp(value: str) -> dt.datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def now_utc() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


def utc_timestamp_now() -> str:
    return now_utc().isoformat()


def get_message_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if isinstance(value, list):
        return [str(item) for item in value]
    return []
