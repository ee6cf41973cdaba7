from __future__ import annotations

import enum

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403
from ._core_policy import *  # noqa: F401,F403

SEVERITIES = ("safe", "ambiguous", "breaking")


class ChangeKind(enum.Enum):
    FILE_ADDED = "FILE_ADDED"
    MESSAGE_ADDED = "MESSAGE_ADDED"
    MESSAGE_REMOVED = "MESSAGE_REMOVED"
    ENUM_ADDED = "ENUM_ADDED"
    ENUM_REMOVED = "ENUM_REMOVED"
    SERVICE_ADDED = "SERVICE_ADDED"
    SERVICE_REMOVED = "SERVICE_REMOVED"
    METHOD_ADDED = "METHOD_ADDED"
    METHOD_REMOVED = "METHOD_REMOVED"
    FIELD_ADDED = "FIELD_ADDED"
    FIELD_ADDED_REQUIRED = "FIELD_ADDED_REQUIRED"
    FIELD_REMOVED = "FIELD_REMOVED"
    FIELD_REMOVED_RESERVED = "FIELD_REMOVED_RESERVED"
    FIELD_RENAMED = "FIELD_RENAMED"
    FIELD_TYPE_CHANGED = "FIELD_TYPE_CHANGED"
    FIELD_TYPE_WIDENED = "FIELD_TYPE_WIDENED"
    FIELD_TYPE_WIRE_COMPATIBLE = "FIELD_TYPE_WIRE_COMPATIBLE"
    FIELD_TYPE_RELOCATED = "FIELD_TYPE_RELOCATED"
    FIELD_CARDINALITY_CHANGED = "FIELD_CARDINALITY_CHANGED"
    FIELD_PRESENCE_CHANGED = "FIELD_PRESENCE_CHANGED"
    FIELD_MADE_REQUIRED = "FIELD_MADE_REQUIRED"
    FIELD_REQUIRED_RELAXED = "FIELD_REQUIRED_RELAXED"
    FIELD_DEFAULT_CHANGED = "FIELD_DEFAULT_CHANGED"
    FIELD_DEPRECATED = "FIELD_DEPRECATED"
    FIELD_UNDEPRECATED = "FIELD_UNDEPRECATED"
    FIELD_TAG_REUSED = "FIELD_TAG_REUSED"
    RESERVED_TAG_RELEASED = "RESERVED_TAG_RELEASED"
    RESERVED_ENUM_NUMBER_RELEASED = "RESERVED_ENUM_NUMBER_RELEASED"
    RESERVED_NAME_RELEASED = "RESERVED_NAME_RELEASED"
    ENUM_VALUE_ADDED = "ENUM_VALUE_ADDED"
    ENUM_VALUE_REMOVED = "ENUM_VALUE_REMOVED"
    ENUM_VALUE_RENAMED = "ENUM_VALUE_RENAMED"
    METHOD_REQUEST_CHANGED = "METHOD_REQUEST_CHANGED"
    METHOD_RESPONSE_CHANGED = "METHOD_RESPONSE_CHANGED"
    METHOD_STREAMING_CHANGED = "METHOD_STREAMING_CHANGED"
    DEPENDENT_REFERENCE_BROKEN = "DEPENDENT_REFERENCE_BROKEN"


CLASSIFICATION: dict[ChangeKind, tuple[str, str]] = {
    ChangeKind.FILE_ADDED: ("safe", "New file; nothing can depend on it yet"),
    ChangeKind.MESSAGE_ADDED: ("safe", "Additive"),
    ChangeKind.MESSAGE_REMOVED: ("breaking", "Consumers referencing the message lose it"),
    ChangeKind.ENUM_ADDED: ("safe", "Additive"),
    ChangeKind.ENUM_REMOVED: ("breaking", "Consumers referencing the enum lose it"),
    ChangeKind.SERVICE_ADDED: ("safe", "Additive"),
    ChangeKind.SERVICE_REMOVED: ("breaking", "Active consumers lose a call target"),
    ChangeKind.METHOD_ADDED: ("safe", "Additive"),
    ChangeKind.METHOD_REMOVED: ("breaking", "Active consumers lose a call target"),
    ChangeKind.FIELD_ADDED: ("safe", "Unknown to old readers, ignorable"),
    ChangeKind.FIELD_ADDED_REQUIRED: ("breaking", "Old writers cannot satisfy it"),
    ChangeKind.FIELD_REMOVED: ("breaking", "Tag may be reused later, causing type confusion"),
    ChangeKind.FIELD_REMOVED_RESERVED: ("safe", "Tag is reserved against future reuse"),
    ChangeKind.FIELD_RENAMED: (
        "ambiguous",
        "Wire-safe, but breaks JSON field-name mapping and generated-code call sites",
    ),
    ChangeKind.FIELD_TYPE_CHANGED: ("breaking", "Wire decode mismatch"),
    ChangeKind.FIELD_TYPE_WIDENED: ("safe", "Decoder-safe widening within one encoding family"),
    ChangeKind.FIELD_TYPE_WIRE_COMPATIBLE: (
        "ambiguous",
        "Same wire encoding, but values may be truncated or reinterpreted",
    ),
    ChangeKind.FIELD_TYPE_RELOCATED: ("ambiguous", "Same type name now declared in another file"),
    ChangeKind.FIELD_CARDINALITY_CHANGED: ("breaking", "Incompatible wire layout"),
    ChangeKind.FIELD_PRESENCE_CHANGED: ("safe", "Explicit presence tracking does not change the wire format"),
    ChangeKind.FIELD_MADE_REQUIRED: ("breaking", "Old writers may omit the field"),
    ChangeKind.FIELD_REQUIRED_RELAXED: ("breaking", "Old readers reject messages without the field"),
    ChangeKind.FIELD_DEFAULT_CHANGED: ("ambiguous", "Readers of absent values observe a different value"),
    ChangeKind.FIELD_DEPRECATED: ("safe", "Annotation only"),
    ChangeKind.FIELD_UNDEPRECATED: ("safe", "Annotation only"),
    ChangeKind.FIELD_TAG_REUSED: ("breaking", "Tag previously carried a different field"),
    ChangeKind.RESERVED_TAG_RELEASED: ("breaking", "Released tags may be reused for a different field"),
    ChangeKind.RESERVED_ENUM_NUMBER_RELEASED: ("breaking", "Released numbers may be reused for a different value"),
    ChangeKind.RESERVED_NAME_RELEASED: ("ambiguous", "Released names may be reused with a different meaning"),
    ChangeKind.ENUM_VALUE_ADDED: ("safe", "Unknown values ignorable by convention"),
    ChangeKind.ENUM_VALUE_REMOVED: (
        "breaking",
        "Old senders of that value break new readers expecting exhaustive handling",
    ),
    ChangeKind.ENUM_VALUE_RENAMED: ("ambiguous", "Wire-safe, but breaks JSON name mapping"),
    ChangeKind.METHOD_REQUEST_CHANGED: ("breaking", "Callers send a different message"),
    ChangeKind.METHOD_RESPONSE_CHANGED: ("breaking", "Callers receive a different message"),
    ChangeKind.METHOD_STREAMING_CHANGED: ("breaking", "Transport contract changes"),
    ChangeKind.DEPENDENT_REFERENCE_BROKEN: ("breaking", "An accepted dependent file no longer links"),
}

WIDENING_TYPE_CHANGES = {
    ("int32", "int64"),
    ("uint32", "uint64"),
    ("sint32", "sint64"),
}
WIRE_COMPATIBLE_TYPE_CHANGES = {
    frozenset({"string", "bytes"}),
    frozenset({"int32", "uint32"}),
    frozenset({"int64", "uint64"}),
    frozenset({"int32", "uint64"}),
    frozenset({"int64", "uint32"}),
    frozenset({"fixed32", "sfixed32"}),
    frozenset({"fixed64", "sfixed64"}),
}
NARROWING_TYPE_CHANGES = {
    ("int64", "int32"),
    ("uint64", "uint32"),
    ("sint64", "sint32"),
}
ENUM_COMPATIBLE_PRIMITIVES = {"int32", "int64", "uint32", "uint64"}
CHANGE_KIND_NAMES = frozenset(kind.value for kind in ChangeKind)


def resolve_policy(config: dict[str, Any]) -> GovernancePolicy:
    section = config_section(config, "policy")
    validate_policy_object(section, "config.policy")
    overrides_raw = section.get("severity_overrides")
    overrides = (
        {str(kind).upper(): str(severity) for kind, severity in overrides_raw.items()}
        if isinstance(overrides_raw, dict)
        else {}
    )
    unknown = sorted(set(overrides) - CHANGE_KIND_NAMES)
    if unknown:
        raise ConfigError(f"config.policy.severity_overrides names unknown change kinds: {', '.join(unknown)}")
    waivers = normalize_policy_waivers(section.get("waivers"), "config.policy", section.get("waiver_requirements"))
    for waiver in waivers:
        unknown = sorted(set(waiver.kinds) - CHANGE_KIND_NAMES)
        if unknown:
            raise ConfigError(f"config.policy waiver '{waiver.waiver_id}' names unknown change kinds: {', '.join(unknown)}")
    return GovernancePolicy(
        field_rename_severity=str(section.get("field_rename_severity") or "ambiguous"),
        escalate_ambiguous=bool(section.get("escalate_ambiguous", False)),
        severity_overrides=overrides,
        waivers=tuple(waivers),
    )


@dataclass(frozen=True)
class ChangeRecord:
    entity_path: str
    kind: ChangeKind
    severity: str
    detail: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity_path": self.entity_path,
            "kind": self.kind.value,
            "severity": self.severity,
            "detail": self.detail,
        }


def severity_for(kind: ChangeKind, policy: GovernancePolicy | None = None) -> str:
    if policy is not None:
        override = policy.severity_overrides.get(kind.value)
        if override is not None:
            return override
        if kind is ChangeKind.FIELD_RENAMED:
            return policy.field_rename_severity
    return CLASSIFICATION[kind][0]


def classify_type_change(base: TypeRef, candidate: TypeRef) -> ChangeKind | None:
    if (base.name, base.kind, base.file_key) == (candidate.name, candidate.kind, candidate.file_key):
        return None
    if base.is_primitive and candidate.is_primitive:
        pair = (base.name, candidate.name)
        if pair in WIDENING_TYPE_CHANGES:
            return ChangeKind.FIELD_TYPE_WIDENED
        if frozenset(pair) in WIRE_COMPATIBLE_TYPE_CHANGES or pair in NARROWING_TYPE_CHANGES:
            return ChangeKind.FIELD_TYPE_WIRE_COMPATIBLE
        return ChangeKind.FIELD_TYPE_CHANGED
    kinds = {base.kind, candidate.kind}
    if kinds == {"enum", "primitive"}:
        primitive = base if base.is_primitive else candidate
        if primitive.name in ENUM_COMPATIBLE_PRIMITIVES:
            return ChangeKind.FIELD_TYPE_WIRE_COMPATIBLE
        return ChangeKind.FIELD_TYPE_CHANGED
    if base.name == candidate.name and base.kind == candidate.kind:
        return ChangeKind.FIELD_TYPE_RELOCATED
    return ChangeKind.FIELD_TYPE_CHANGED


def _describe_type(item: Field) -> str:
    ref = item.type.qualified_name
    if item.cardinality == "map":
        return f"map<{item.key_type}, {ref}>"
    if item.cardinality == "singular":
        return ref
    return f"{item.cardinality} {ref}"


def uncovered_ranges(
    ranges: tuple[ReservedRange, ...], covering: tuple[ReservedRange, ...]
) -> list[ReservedRange]:
    """Parts of ``ranges`` not contained in the union of ``covering``."""
    merged: list[list[int]] = []
    for item in sorted(covering, key=lambda value: value.start):
        if merged and item.start <= merged[-1][1] + 1:
            merged[-1][1] = max(merged[-1][1], item.end)
        else:
            merged.append([item.start, item.end])

    out: list[ReservedRange] = []
    for item in ranges:
        cursor = item.start
        for start, end in merged:
            if end < cursor or start > item.end:
                continue
            if start > cursor:
                out.append(ReservedRange(cursor, start - 1))
            cursor = max(cursor, end + 1)
            if cursor > item.end:
                break
        if cursor <= item.end:
            out.append(ReservedRange(cursor, item.end))
    return out


class _Recorder:
    def __init__(self, policy: GovernancePolicy | None) -> None:
        self.policy = policy
        self.records: list[ChangeRecord] = []

    def add(self, entity_path: str, kind: ChangeKind, detail: str) -> None:
        self.records.append(ChangeRecord(entity_path, kind, severity_for(kind, self.policy), detail))


def _compare_field(out: _Recorder, key: str, message: str, base: Field, cand: Field) -> None:
    path = field_path(key, message, cand.name, cand.tag)
    if base.name != cand.name:
        out.add(path, ChangeKind.FIELD_RENAMED, f"field #{cand.tag} renamed from '{base.name}' to '{cand.name}'")

    base_collection = base.cardinality in {"repeated", "map"}
    cand_collection = cand.cardinality in {"repeated", "map"}
    if base.cardinality != cand.cardinality:
        if base_collection or cand_collection:
            out.add(
                path,
                ChangeKind.FIELD_CARDINALITY_CHANGED,
                f"cardinality changed from {base.cardinality} to {cand.cardinality}",
            )
        elif cand.cardinality == "required":
            out.add(path, ChangeKind.FIELD_MADE_REQUIRED, f"field changed from {base.cardinality} to required")
        elif base.cardinality == "required":
            out.add(path, ChangeKind.FIELD_REQUIRED_RELAXED, f"field changed from required to {cand.cardinality}")
        else:
            out.add(
                path,
                ChangeKind.FIELD_PRESENCE_CHANGED,
                f"presence changed from {base.cardinality} to {cand.cardinality}",
            )
    elif base.cardinality == "map" and base.key_type != cand.key_type:
        out.add(
            path,
            ChangeKind.FIELD_CARDINALITY_CHANGED,
            f"map key type changed from {base.key_type} to {cand.key_type}",
        )

    type_change = classify_type_change(base.type, cand.type)
    if type_change is not None:
        out.add(path, type_change, f"type changed from {_describe_type(base)} to {_describe_type(cand)}")

    if base.default != cand.default:
        out.add(
            path,
            ChangeKind.FIELD_DEFAULT_CHANGED,
            f"default changed from {base.default or '<none>'} to {cand.default or '<none>'}",
        )
    if cand.deprecated and not base.deprecated:
        out.add(path, ChangeKind.FIELD_DEPRECATED, f"field '{cand.name}' marked deprecated")
    elif base.deprecated and not cand.deprecated:
        out.add(path, ChangeKind.FIELD_UNDEPRECATED, f"field '{cand.name}' no longer deprecated")


def _added_field(out: _Recorder, key: str, message: Message, item: Field, used_tags: set[int]) -> None:
    path = field_path(key, message.name, item.name, item.tag)
    if item.tag in used_tags:
        out.add(
            path,
            ChangeKind.FIELD_TAG_REUSED,
            f"tag {item.tag} was used by a deleted field of '{message.name}'",
        )
    elif item.cardinality == "required":
        out.add(path, ChangeKind.FIELD_ADDED_REQUIRED, f"required field '{item.name}' added")
    else:
        out.add(path, ChangeKind.FIELD_ADDED, f"field '{item.name}' added as {_describe_type(item)}")


def _released_names(
    out: _Recorder, path: str, base_names: tuple[str, ...], cand_names: tuple[str, ...]
) -> None:
    for name in base_names:
        if name not in cand_names:
            out.add(path, ChangeKind.RESERVED_NAME_RELEASED, f"reserved name '{name}' released")


def _compare_message(out: _Recorder, key: str, base: Message, cand: Message, history: tuple[int, ...]) -> None:
    base_fields = {item.tag: item for item in base.fields}
    cand_fields = {item.tag: item for item in cand.fields}
    used_tags = set(history) | {tag for tag in cand_fields if base.is_tag_reserved(tag)}

    for tag in sorted(set(base_fields) | set(cand_fields)):
        base_field = base_fields.get(tag)
        cand_field = cand_fields.get(tag)
        if base_field is not None and cand_field is not None:
            _compare_field(out, key, cand.name, base_field, cand_field)
        elif base_field is not None:
            path = field_path(key, base.name, base_field.name, tag)
            if cand.is_tag_reserved(tag):
                out.add(path, ChangeKind.FIELD_REMOVED_RESERVED, f"field '{base_field.name}' removed; tag {tag} reserved")
            else:
                out.add(path, ChangeKind.FIELD_REMOVED, f"field '{base_field.name}' removed without reserving tag {tag}")
        elif cand_field is not None:
            _added_field(out, key, cand, cand_field, used_tags)

    path = message_path(key, cand.name)
    for item in uncovered_ranges(base.reserved_ranges, cand.reserved_ranges):
        out.add(path, ChangeKind.RESERVED_TAG_RELEASED, f"reserved tags {item.render()} released")
    _released_names(out, path, base.reserved_names, cand.reserved_names)


def _compare_enum(out: _Recorder, key: str, base: Enum, cand: Enum) -> None:
    base_values = {value.number: value for value in base.values}
    cand_values = {value.number: value for value in cand.values}
    for number in sorted(set(base_values) | set(cand_values)):
        base_value = base_values.get(number)
        cand_value = cand_values.get(number)
        if base_value is not None and cand_value is not None:
            if base_value.name != cand_value.name:
                out.add(
                    enum_value_path(key, cand.name, cand_value.name, number),
                    ChangeKind.ENUM_VALUE_RENAMED,
                    f"value {number} renamed from '{base_value.name}' to '{cand_value.name}'",
                )
        elif base_value is not None:
            out.add(
                enum_value_path(key, base.name, base_value.name, number),
                ChangeKind.ENUM_VALUE_REMOVED,
                f"value '{base_value.name}' ({number}) removed",
            )
        elif cand_value is not None:
            out.add(
                enum_value_path(key, cand.name, cand_value.name, number),
                ChangeKind.ENUM_VALUE_ADDED,
                f"value '{cand_value.name}' ({number}) added",
            )

    path = enum_path(key, cand.name)
    for item in uncovered_ranges(base.reserved_ranges, cand.reserved_ranges):
        out.add(path, ChangeKind.RESERVED_ENUM_NUMBER_RELEASED, f"reserved numbers {item.render()} released")
    _released_names(out, path, base.reserved_names, cand.reserved_names)


def _same_ref(base: TypeRef, cand: TypeRef) -> bool:
    return (base.name, base.kind, base.file_key) == (cand.name, cand.kind, cand.file_key)


def _compare_service(out: _Recorder, key: str, base: Service, cand: Service) -> None:
    for method in base.methods:
        if cand.method_by_name(method.name) is None:
            out.add(method_path(key, base.name, method.name), ChangeKind.METHOD_REMOVED, f"method '{method.name}' removed")
    for method in cand.methods:
        path = method_path(key, cand.name, method.name)
        previous = base.method_by_name(method.name)
        if previous is None:
            out.add(path, ChangeKind.METHOD_ADDED, f"method '{method.name}' added")
            continue
        if not _same_ref(previous.request, method.request):
            out.add(
                path,
                ChangeKind.METHOD_REQUEST_CHANGED,
                f"request changed from {previous.request.qualified_name} to {method.request.qualified_name}",
            )
        if not _same_ref(previous.response, method.response):
            out.add(
                path,
                ChangeKind.METHOD_RESPONSE_CHANGED,
                f"response changed from {previous.response.qualified_name} to {method.response.qualified_name}",
            )
        if previous.streaming_mode != method.streaming_mode:
            out.add(
                path,
                ChangeKind.METHOD_STREAMING_CHANGED,
                f"streaming mode changed from {previous.streaming_mode} to {method.streaming_mode}",
            )


def _compare_added_file(out: _Recorder, candidate: SchemaFile) -> None:
    key = candidate.key
    out.add(key, ChangeKind.FILE_ADDED, f"new file '{key}'")
    for message in candidate.messages:
        out.add(message_path(key, message.name), ChangeKind.MESSAGE_ADDED, f"message '{message.name}' added")
    for item in candidate.enums:
        out.add(enum_path(key, item.name), ChangeKind.ENUM_ADDED, f"enum '{item.name}' added")
    for service in candidate.services:
        out.add(service_path(key, service.name), ChangeKind.SERVICE_ADDED, f"service '{service.name}' added")


def compare_models(
    baseline: Baseline | None,
    candidate: SchemaFile,
    policy: GovernancePolicy | None = None,
) -> list[ChangeRecord]:
    """Classify every difference between the accepted baseline and a candidate.

    Entities are matched by stable identity: top-level declarations by name,
    fields by tag, enum values by number, methods by name.
    """
    out = _Recorder(policy)
    if baseline is None:
        _compare_added_file(out, candidate)
        return out.records

    key = candidate.key
    base = baseline.model
    if baseline.revision == revision_id(candidate):
        return []

    for message in base.messages:
        cand_message = candidate.message(message.name)
        if cand_message is None:
            out.add(message_path(key, message.name), ChangeKind.MESSAGE_REMOVED, f"message '{message.name}' removed")
        else:
            _compare_message(out, key, message, cand_message, baseline.tag_history.get(message.name, ()))
    for message in candidate.messages:
        if base.message(message.name) is not None:
            continue
        out.add(message_path(key, message.name), ChangeKind.MESSAGE_ADDED, f"message '{message.name}' added")
        history = set(baseline.tag_history.get(message.name, ()))
        for item in message.fields:
            if item.tag in history:
                out.add(
                    field_path(key, message.name, item.name, item.tag),
                    ChangeKind.FIELD_TAG_REUSED,
                    f"tag {item.tag} was used by a deleted field of '{message.name}'",
                )

    for item in base.enums:
        cand_enum = candidate.enum(item.name)
        if cand_enum is None:
            out.add(enum_path(key, item.name), ChangeKind.ENUM_REMOVED, f"enum '{item.name}' removed")
        else:
            _compare_enum(out, key, item, cand_enum)
    for item in candidate.enums:
        if base.enum(item.name) is None:
            out.add(enum_path(key, item.name), ChangeKind.ENUM_ADDED, f"enum '{item.name}' added")

    for service in base.services:
        cand_service = candidate.service(service.name)
        if cand_service is None:
            out.add(service_path(key, service.name), ChangeKind.SERVICE_REMOVED, f"service '{service.name}' removed")
        else:
            _compare_service(out, key, service, cand_service)
    for service in candidate.services:
        if base.service(service.name) is None:
            out.add(service_path(key, service.name), ChangeKind.SERVICE_ADDED, f"service '{service.name}' added")

    return out.records


def dependent_break_record(file_key: str, error: ResolutionError, policy: GovernancePolicy | None = None) -> ChangeRecord:
    kind = ChangeKind.DEPENDENT_REFERENCE_BROKEN
    return ChangeRecord(
        entity_path=error.entity_path,
        kind=kind,
        severity=severity_for(kind, policy),
        detail=f"accepted file '{file_key}' no longer links: {error.reason}",
    )


def classify_records(records: list[ChangeRecord]) -> str:
    severities = {record.severity for record in records}
    for severity in ("breaking", "ambiguous", "safe"):
        if severity in severities:
            return severity
    return "none"


def summarize_records(records: list[ChangeRecord]) -> dict[str, int]:
    counts = {severity: 0 for severity in SEVERITIES}
    for record in records:
        counts[record.severity] = counts.get(record.severity, 0) + 1
    return counts
