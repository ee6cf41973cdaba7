from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403

DEFAULT_SCHEMA_ROOT = "schemas"
DEFAULT_STORE_PATH = ".schema_governance/baselines"
DEFAULT_OUTPUT_ROOT = ".schema_governance/generated"
DEFAULT_MAX_WORKERS = 4
STORE_KINDS = {"file", "memory"}
LINT_SEVERITIES = {"error", "warning", "off"}
CHANGE_SEVERITIES = {"safe", "ambiguous", "breaking"}
WAIVER_SEVERITIES = {"any", "breaking", "ambiguous"}
GENERATOR_KINDS = {"external"}


def require_keys(obj: dict[str, Any], keys: list[str], label: str) -> None:
    missing = [key for key in keys if key not in obj]
    if missing:
        raise ConfigError(f"{label} is missing required keys: {', '.join(missing)}")


def _require_object(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be an object when specified")
    return value


def _require_string_list(value: Any, label: str) -> list[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{label} must be an array when specified")
    for idx, item in enumerate(value):
        if not isinstance(item, str) or not item:
            raise ConfigError(f"{label}[{idx}] must be a non-empty string")
    return value


def _optional_non_empty_string(payload: dict[str, Any], key: str, label: str) -> None:
    value = payload.get(key)
    if value is not None and (not isinstance(value, str) or not value):
        raise ConfigError(f"{label}.{key} must be a non-empty string when specified")


def validate_store_object(store: dict[str, Any], label: str) -> None:
    kind = store.get("kind", "file")
    if kind not in STORE_KINDS:
        raise ConfigError(f"{label}.kind must be file or memory")
    _optional_non_empty_string(store, "path", label)


def validate_lint_object(lint: dict[str, Any], label: str) -> None:
    disabled = lint.get("disabled_rules")
    if disabled is not None:
        _require_string_list(disabled, f"{label}.disabled_rules")
    overrides = lint.get("severity_overrides")
    if overrides is not None:
        _require_object(overrides, f"{label}.severity_overrides")
        for rule_id, severity in overrides.items():
            if severity not in LINT_SEVERITIES:
                raise ConfigError(f"{label}.severity_overrides.{rule_id} must be error/warning/off")
    internal_range = lint.get("internal_tag_range")
    if internal_range is not None:
        if (
            not isinstance(internal_range, list)
            or len(internal_range) != 2
            or not all(isinstance(item, int) and not isinstance(item, bool) for item in internal_range)
        ):
            raise ConfigError(f"{label}.internal_tag_range must be a [start, end] pair of integers")
        start, end = internal_range
        if start < MIN_TAG or end > MAX_TAG or start > end:
            raise ConfigError(
                f"{label}.internal_tag_range must satisfy {MIN_TAG} <= start <= end <= {MAX_TAG}"
            )


def validate_policy_object(policy: dict[str, Any], label: str) -> None:
    rename = policy.get("field_rename_severity")
    if rename is not None and rename not in CHANGE_SEVERITIES:
        raise ConfigError(f"{label}.field_rename_severity must be safe/ambiguous/breaking")
    escalate = policy.get("escalate_ambiguous")
    if escalate is not None and not isinstance(escalate, bool):
        raise ConfigError(f"{label}.escalate_ambiguous must be boolean when specified")
    overrides = policy.get("severity_overrides")
    if overrides is not None:
        _require_object(overrides, f"{label}.severity_overrides")
        for kind, severity in overrides.items():
            if severity not in CHANGE_SEVERITIES:
                raise ConfigError(f"{label}.severity_overrides.{kind} must be safe/ambiguous/breaking")
    waivers = policy.get("waivers")
    if waivers is not None and not isinstance(waivers, list):
        raise ConfigError(f"{label}.waivers must be an array when specified")
    requirements = policy.get("waiver_requirements")
    if requirements is not None:
        _require_object(requirements, f"{label}.waiver_requirements")
        for key in ["require_owner", "require_reason", "require_expires_utc", "require_ticket"]:
            value = requirements.get(key)
            if value is not None and not isinstance(value, bool):
                raise ConfigError(f"{label}.waiver_requirements.{key} must be boolean when specified")
        ttl = requirements.get("max_ttl_days")
        if ttl is not None and (not isinstance(ttl, int) or isinstance(ttl, bool) or ttl < 0):
            raise ConfigError(f"{label}.waiver_requirements.max_ttl_days must be a non-negative integer")


def validate_generation_object(generation: dict[str, Any], label: str) -> None:
    _optional_non_empty_string(generation, "output_root", label)
    generators = generation.get("generators")
    if generators is None:
        return
    if not isinstance(generators, list):
        raise ConfigError(f"{label}.generators must be an array when specified")
    seen: set[str] = set()
    for idx, entry in enumerate(generators):
        entry_label = f"{label}.generators[{idx}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{entry_label} must be an object")
        require_keys(entry, ["name", "command"], entry_label)
        name = entry.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"{entry_label}.name must be a non-empty string")
        if name in seen:
            raise ConfigError(f"{entry_label}.name '{name}' is duplicated")
        seen.add(name)
        kind = entry.get("kind", "external")
        if kind not in GENERATOR_KINDS:
            raise ConfigError(f"{entry_label}.kind must be external")
        command = entry.get("command")
        if isinstance(command, str):
            if not command.strip():
                raise ConfigError(f"{entry_label}.command must be non-empty")
        else:
            _require_string_list(command, f"{entry_label}.command")
            if not command:
                raise ConfigError(f"{entry_label}.command must be non-empty")
        enabled = entry.get("enabled")
        if enabled is not None and not isinstance(enabled, bool):
            raise ConfigError(f"{entry_label}.enabled must be boolean when specified")
        timeout = entry.get("timeout_seconds")
        if timeout is not None and (
            not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0
        ):
            raise ConfigError(f"{entry_label}.timeout_seconds must be a positive number when specified")


def validate_config_payload(payload: dict[str, Any]) -> None:
    if not isinstance(payload, dict):
        raise ConfigError("config root must be an object")

    _optional_non_empty_string(payload, "schema_root", "config")
    max_workers = payload.get("max_workers")
    if max_workers is not None and (
        not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1
    ):
        raise ConfigError("config.max_workers must be a positive integer when specified")

    sections = {
        "store": validate_store_object,
        "lint": validate_lint_object,
        "policy": validate_policy_object,
        "generation": validate_generation_object,
    }
    for key, validator in sections.items():
        value = payload.get(key)
        if value is None:
            continue
        validator(_require_object(value, f"config.{key}"), f"config.{key}")


def load_config(path: Path) -> dict[str, Any]:
    try:
        config = load_json(path)
    except SchemaGovernanceError as exc:
        raise ConfigError(str(exc)) from exc
    validate_config_payload(config)
    return config


def config_section(config: dict[str, Any], key: str) -> dict[str, Any]:
    value = config.get(key)
    return value if isinstance(value, dict) else {}


def resolve_schema_root(config: dict[str, Any], repo_root: Path) -> Path:
    return ensure_relative_path(repo_root, str(config.get("schema_root") or DEFAULT_SCHEMA_ROOT))


def resolve_max_workers(config: dict[str, Any]) -> int:
    value = config.get("max_workers")
    return value if isinstance(value, int) and value > 0 else DEFAULT_MAX_WORKERS


def resolve_store_settings(config: dict[str, Any], repo_root: Path) -> tuple[str, Path]:
    store = config_section(config, "store")
    kind = str(store.get("kind") or "file")
    path = ensure_relative_path(repo_root, str(store.get("path") or DEFAULT_STORE_PATH))
    return kind, path
