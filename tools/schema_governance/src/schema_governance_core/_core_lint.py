from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Callable

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403
from ._core_config import *  # noqa: F401,F403

PASCAL_CASE = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
LOWER_SNAKE_CASE = re.compile(r"^[a-z][a-z0-9]*(?:_[a-z0-9]+)*$")
UPPER_SNAKE_CASE = re.compile(r"^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*$")
WIRE_RESERVED_RANGE = ReservedRange(19000, 19999)
ENTITY_KINDS = ("message", "field", "enum", "enum_value", "service", "method")


@dataclass(frozen=True)
class LintConfig:
    disabled_rules: frozenset[str] = frozenset()
    severity_overrides: dict[str, str] = dataclass_field(default_factory=dict)
    internal_tag_range: ReservedRange | None = None


@dataclass(frozen=True)
class LintFinding:
    rule: str
    severity: str
    entity_path: str
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "severity": self.severity,
            "entity_path": self.entity_path,
            "message": self.message,
        }


@dataclass(frozen=True)
class LintRule:
    rule_id: str
    default_severity: str
    entity_kind: str
    description: str
    check: Callable[[Any, Any, LintConfig], str | None]


def upper_snake(name: str) -> str:
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name).upper()


def _pascal(kind: str) -> Callable[[Any, Any, LintConfig], str | None]:
    def check(entity: Any, parent: Any, config: LintConfig) -> str | None:
        if PASCAL_CASE.fullmatch(entity.name):
            return None
        return f"{kind} name '{entity.name}' should be PascalCase"

    return check


def _check_enum_value_case(value: EnumValue, enum: Enum, config: LintConfig) -> str | None:
    if UPPER_SNAKE_CASE.fullmatch(value.name):
        return None
    return f"enum value '{value.name}' should be UPPER_SNAKE_CASE"


def _check_enum_value_prefix(value: EnumValue, enum: Enum, config: LintConfig) -> str | None:
    prefix = upper_snake(enum.name) + "_"
    if value.name.startswith(prefix):
        return None
    return f"enum value '{value.name}' should be prefixed with '{prefix}'"


def _check_enum_zero_value(enum: Enum, parent: Any, config: LintConfig) -> str | None:
    zero = enum.value_by_number(0)
    if zero is None:
        return f"enum '{enum.name}' should declare a zero value named '{upper_snake(enum.name)}_UNSPECIFIED'"
    if not zero.name.endswith("_UNSPECIFIED"):
        return f"zero value '{zero.name}' of enum '{enum.name}' should end with '_UNSPECIFIED'"
    return None


def _check_field_case(item: Field, message: Message, config: LintConfig) -> str | None:
    if LOWER_SNAKE_CASE.fullmatch(item.name):
        return None
    return f"field name '{item.name}' should be lower_snake_case"


def _check_field_required(item: Field, message: Message, config: LintConfig) -> str | None:
    if item.cardinality != "required":
        return None
    return f"field '{item.name}' is required; required fields can never be removed or relaxed safely"


def _check_field_wire_range(item: Field, message: Message, config: LintConfig) -> str | None:
    if not WIRE_RESERVED_RANGE.contains(item.tag):
        return None
    return f"field tag {item.tag} lies in the wire-reserved range {WIRE_RESERVED_RANGE.render()}"


def _check_field_internal_range(item: Field, message: Message, config: LintConfig) -> str | None:
    internal = config.internal_tag_range
    if internal is None or not internal.contains(item.tag):
        return None
    return f"field tag {item.tag} lies in the internal-use range {internal.render()}"


def _check_service_suffix(service: Service, parent: Any, config: LintConfig) -> str | None:
    if service.name.endswith("Service"):
        return None
    return f"service name '{service.name}' should end with 'Service'"


def _check_service_description(service: Service, parent: Any, config: LintConfig) -> str | None:
    if service.description is not None:
        return None
    return f"service '{service.name}' must carry a description option"


def _check_method_description(method: Method, service: Service, config: LintConfig) -> str | None:
    if method.description is not None:
        return None
    return f"method '{service.name}.{method.name}' must carry a description option"


def _check_method_types(method: Method, service: Service, config: LintConfig) -> str | None:
    problems = [
        f"{role} type '{ref.source_text()}' is a {ref.kind}"
        for role, ref in (("request", method.request), ("response", method.response))
        if ref.kind in {"primitive", "enum"}
    ]
    if not problems:
        return None
    return f"method '{service.name}.{method.name}' must use named message types: " + "; ".join(problems)


LINT_RULES: tuple[LintRule, ...] = (
    LintRule("MESSAGE_NAME_PASCAL_CASE", "error", "message", "Message names are PascalCase.", _pascal("message")),
    LintRule("ENUM_NAME_PASCAL_CASE", "error", "enum", "Enum names are PascalCase.", _pascal("enum")),
    LintRule(
        "ENUM_ZERO_VALUE_UNSPECIFIED",
        "warning",
        "enum",
        "Enums declare a zero value ending in _UNSPECIFIED.",
        _check_enum_zero_value,
    ),
    LintRule(
        "ENUM_VALUE_UPPER_SNAKE_CASE",
        "error",
        "enum_value",
        "Enum value names are UPPER_SNAKE_CASE.",
        _check_enum_value_case,
    ),
    LintRule(
        "ENUM_VALUE_PREFIX",
        "warning",
        "enum_value",
        "Enum value names are prefixed with the enum name in UPPER_SNAKE_CASE.",
        _check_enum_value_prefix,
    ),
    LintRule(
        "FIELD_NAME_LOWER_SNAKE_CASE",
        "error",
        "field",
        "Field names are lower_snake_case.",
        _check_field_case,
    ),
    LintRule(
        "FIELD_REQUIRED_DISCOURAGED",
        "warning",
        "field",
        "Required fields lock the message shape forever.",
        _check_field_required,
    ),
    LintRule(
        "FIELD_TAG_RESERVED_RANGE",
        "error",
        "field",
        "Field tags avoid the wire-reserved range 19000-19999.",
        _check_field_wire_range,
    ),
    LintRule(
        "FIELD_TAG_INTERNAL_RANGE",
        "error",
        "field",
        "Field tags avoid the configured internal-use range.",
        _check_field_internal_range,
    ),
    LintRule("SERVICE_NAME_PASCAL_CASE", "error", "service", "Service names are PascalCase.", _pascal("service")),
    LintRule(
        "SERVICE_NAME_SUFFIX",
        "warning",
        "service",
        "Service names end with 'Service'.",
        _check_service_suffix,
    ),
    LintRule(
        "SERVICE_DESCRIPTION_REQUIRED",
        "error",
        "service",
        "Services carry a description option.",
        _check_service_description,
    ),
    LintRule("METHOD_NAME_PASCAL_CASE", "error", "method", "Method names are PascalCase.", _pascal("method")),
    LintRule(
        "METHOD_DESCRIPTION_REQUIRED",
        "error",
        "method",
        "Methods carry a description option.",
        _check_method_description,
    ),
    LintRule(
        "METHOD_NAMED_MESSAGE_TYPES",
        "error",
        "method",
        "Method request and response types are named messages.",
        _check_method_types,
    ),
)

LINT_RULE_IDS = frozenset(rule.rule_id for rule in LINT_RULES)


def resolve_lint_config(config: dict[str, Any]) -> LintConfig:
    section = config_section(config, "lint")
    disabled = frozenset(get_message_list(section, "disabled_rules"))
    overrides_raw = section.get("severity_overrides")
    overrides = {str(key): str(value) for key, value in overrides_raw.items()} if isinstance(overrides_raw, dict) else {}
    unknown = sorted((disabled | set(overrides)) - LINT_RULE_IDS)
    if unknown:
        raise ConfigError(f"config.lint names unknown rules: {', '.join(unknown)}")
    internal_raw = section.get("internal_tag_range")
    internal = None
    if isinstance(internal_raw, list) and len(internal_raw) == 2:
        internal = ReservedRange(int(internal_raw[0]), int(internal_raw[1]))
    return LintConfig(disabled_rules=disabled, severity_overrides=overrides, internal_tag_range=internal)


def effective_severity(rule: LintRule, config: LintConfig) -> str | None:
    if rule.rule_id in config.disabled_rules:
        return None
    severity = config.severity_overrides.get(rule.rule_id, rule.default_severity)
    return None if severity == "off" else severity


def _iter_entities(model: SchemaFile) -> list[tuple[str, Any, Any, str]]:
    entities: list[tuple[str, Any, Any, str]] = []
    for message in model.messages:
        entities.append(("message", message, None, message_path(model.key, message.name)))
        for item in message.fields:
            entities.append(("field", item, message, field_path(model.key, message.name, item.name, item.tag)))
    for enum in model.enums:
        entities.append(("enum", enum, None, enum_path(model.key, enum.name)))
        for value in enum.values:
            entities.append(("enum_value", value, enum, enum_value_path(model.key, enum.name, value.name, value.number)))
    for service in model.services:
        entities.append(("service", service, None, service_path(model.key, service.name)))
        for method in service.methods:
            entities.append(("method", method, service, method_path(model.key, service.name, method.name)))
    return entities


def lint_model(model: SchemaFile, config: LintConfig | None = None) -> list[LintFinding]:
    """Apply every enabled rule; findings follow model declaration order."""
    config = config or LintConfig()
    active = [(rule, effective_severity(rule, config)) for rule in LINT_RULES]
    by_kind: dict[str, list[tuple[LintRule, str]]] = {kind: [] for kind in ENTITY_KINDS}
    for rule, severity in active:
        if severity is not None:
            by_kind[rule.entity_kind].append((rule, severity))

    findings: list[LintFinding] = []
    for kind, entity, parent, path in _iter_entities(model):
        for rule, severity in by_kind[kind]:
            message = rule.check(entity, parent, config)
            if message is not None:
                findings.append(LintFinding(rule.rule_id, severity, path, message))
    return findings


def lint_errors(findings: list[LintFinding]) -> list[LintFinding]:
    return [item for item in findings if item.severity == "error"]
