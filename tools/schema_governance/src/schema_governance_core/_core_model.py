from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field

from ._core_base import *  # noqa: F401,F403

PRIMITIVE_TYPES = (
    "double",
    "float",
    "int32",
    "int64",
    "uint32",
    "uint64",
    "sint32",
    "sint64",
    "fixed32",
    "fixed64",
    "sfixed32",
    "sfixed64",
    "bool",
    "string",
    "bytes",
)
MAP_KEY_TYPES = (
    "int32",
    "int64",
    "uint32",
    "uint64",
    "sint32",
    "sint64",
    "fixed32",
    "fixed64",
    "sfixed32",
    "sfixed64",
    "bool",
    "string",
)
CARDINALITIES = ("singular", "optional", "required", "repeated", "map")
TYPE_KINDS = ("primitive", "message", "enum", "pending")
MIN_TAG = 1
MAX_TAG = 536870911


@dataclass(frozen=True)
class ReservedRange:
    start: int
    end: int

    def contains(self, value: int) -> bool:
        return self.start <= value <= self.end

    def render(self) -> str:
        if self.start == self.end:
            return str(self.start)
        if self.end == MAX_TAG:
            return f"{self.start} to max"
        return f"{self.start} to {self.end}"


@dataclass(frozen=True)
class TypeRef:
    name: str
    kind: str
    file_key: str | None = None
    qualifier: str | None = None

    @property
    def is_primitive(self) -> bool:
        return self.kind == "primitive"

    @property
    def is_pending(self) -> bool:
        return self.kind == "pending"

    @property
    def qualified_name(self) -> str:
        if self.kind in {"message", "enum"} and self.file_key:
            return f"{self.file_key}:{self.name}"
        return self.name

    def source_text(self) -> str:
        if self.qualifier:
            return f"{self.qualifier}.{self.name}"
        return self.name


@dataclass(frozen=True)
class Field:
    name: str
    tag: int
    type: TypeRef
    cardinality: str = "singular"
    key_type: str | None = None
    default: str | None = None
    deprecated: bool = False


@dataclass(frozen=True)
class Message:
    name: str
    fields: tuple[Field, ...] = ()
    reserved_ranges: tuple[ReservedRange, ...] = ()
    reserved_names: tuple[str, ...] = ()
    options: dict[str, Any] = dataclass_field(default_factory=dict)

    def field_by_tag(self, tag: int) -> Field | None:
        for item in self.fields:
            if item.tag == tag:
                return item
        return None

    def is_tag_reserved(self, tag: int) -> bool:
        return any(item.contains(tag) for item in self.reserved_ranges)

    @property
    def description(self) -> str | None:
        return _description(self.options)


@dataclass(frozen=True)
class EnumValue:
    name: str
    number: int


@dataclass(frozen=True)
class Enum:
    name: str
    values: tuple[EnumValue, ...] = ()
    reserved_ranges: tuple[ReservedRange, ...] = ()
    reserved_names: tuple[str, ...] = ()
    options: dict[str, Any] = dataclass_field(default_factory=dict)

    def value_by_number(self, number: int) -> EnumValue | None:
        for item in self.values:
            if item.number == number:
                return item
        return None

    @property
    def description(self) -> str | None:
        return _description(self.options)


@dataclass(frozen=True)
class Method:
    name: str
    request: TypeRef
    response: TypeRef
    client_streaming: bool = False
    server_streaming: bool = False
    options: dict[str, Any] = dataclass_field(default_factory=dict)

    @property
    def streaming_mode(self) -> str:
        if self.client_streaming and self.server_streaming:
            return "bidi"
        if self.client_streaming:
            return "client"
        if self.server_streaming:
            return "server"
        return "unary"

    @property
    def description(self) -> str | None:
        return _description(self.options)


@dataclass(frozen=True)
class Service:
    name: str
    methods: tuple[Method, ...] = ()
    options: dict[str, Any] = dataclass_field(default_factory=dict)

    def method_by_name(self, name: str) -> Method | None:
        for item in self.methods:
            if item.name == name:
                return item
        return None

    @property
    def description(self) -> str | None:
        return _description(self.options)


@dataclass(frozen=True)
class SchemaFile:
    key: str
    syntax: str = "v1"
    imports: tuple[str, ...] = ()
    options: dict[str, Any] = dataclass_field(default_factory=dict)
    messages: tuple[Message, ...] = ()
    enums: tuple[Enum, ...] = ()
    services: tuple[Service, ...] = ()

    def message(self, name: str) -> Message | None:
        for item in self.messages:
            if item.name == name:
                return item
        return None

    def enum(self, name: str) -> Enum | None:
        for item in self.enums:
            if item.name == name:
                return item
        return None

    def service(self, name: str) -> Service | None:
        for item in self.services:
            if item.name == name:
                return item
        return None

    def declared_types(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for message in self.messages:
            out[message.name] = "message"
        for enum in self.enums:
            out[enum.name] = "enum"
        return out

    def type_refs(self) -> list[tuple[str, TypeRef]]:
        refs: list[tuple[str, TypeRef]] = []
        for message in self.messages:
            for item in message.fields:
                refs.append((field_path(self.key, message.name, item.name, item.tag), item.type))
        for service in self.services:
            for method in service.methods:
                path = method_path(self.key, service.name, method.name)
                refs.append((f"{path}(request)", method.request))
                refs.append((f"{path}(response)", method.response))
        return refs

    def pending_refs(self) -> list[tuple[str, TypeRef]]:
        return [(path, ref) for path, ref in self.type_refs() if ref.is_pending]

    def dependencies(self) -> tuple[str, ...]:
        return tuple(sorted(set(self.imports)))


@dataclass(frozen=True)
class Baseline:
    file_key: str
    revision: str
    model: SchemaFile
    dependencies: tuple[str, ...]
    tag_history: dict[str, tuple[int, ...]]
    committed_at_utc: str
    sequence: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "file_key": self.file_key,
            "revision": self.revision,
            "dependencies": list(self.dependencies),
            "tag_history": {name: list(tags) for name, tags in sorted(self.tag_history.items())},
            "committed_at_utc": self.committed_at_utc,
            "sequence": self.sequence,
            "model": model_to_dict(self.model),
        }


def _description(options: dict[str, Any]) -> str | None:
    value = options.get("description")
    if isinstance(value, str) and value.strip():
        return value
    return None


def message_path(file_key: str, message_name: str) -> str:
    return f"{file_key}:{message_name}"


def field_path(file_key: str, message_name: str, field_name: str, tag: int) -> str:
    return f"{file_key}:{message_name}.{field_name}#{tag}"


def enum_path(file_key: str, enum_name: str) -> str:
    return f"{file_key}:{enum_name}"


def enum_value_path(file_key: str, enum_name: str, value_name: str, number: int) -> str:
    return f"{file_key}:{enum_name}.{value_name}={number}"


def service_path(file_key: str, service_name: str) -> str:
    return f"{file_key}:{service_name}"


def method_path(file_key: str, service_name: str, method_name: str) -> str:
    return f"{file_key}:{service_name}.{method_name}"


def _ranges_to_list(ranges: tuple[ReservedRange, ...]) -> list[list[int]]:
    return [[item.start, item.end] for item in ranges]


def _ranges_from_list(value: Any) -> tuple[ReservedRange, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(ReservedRange(int(item[0]), int(item[1])) for item in value)


def type_ref_to_dict(ref: TypeRef) -> dict[str, Any]:
    return {
        "name": ref.name,
        "kind": ref.kind,
        "file_key": ref.file_key,
        "qualifier": ref.qualifier,
    }


def type_ref_from_dict(payload: dict[str, Any]) -> TypeRef:
    kind = str(payload.get("kind"))
    if kind not in TYPE_KINDS:
        raise SchemaGovernanceError(f"Invalid type kind in snapshot: {kind}")
    return TypeRef(
        name=str(payload["name"]),
        kind=kind,
        file_key=payload.get("file_key"),
        qualifier=payload.get("qualifier"),
    )


def model_to_dict(model: SchemaFile) -> dict[str, Any]:
    return {
        "schema_version": MODEL_SCHEMA_VERSION,
        "key": model.key,
        "syntax": model.syntax,
        "imports": list(model.imports),
        "options": dict(model.options),
        "messages": [
            {
                "name": message.name,
                "options": dict(message.options),
                "reserved_ranges": _ranges_to_list(message.reserved_ranges),
                "reserved_names": list(message.reserved_names),
                "fields": [
                    {
                        "name": item.name,
                        "tag": item.tag,
                        "type": type_ref_to_dict(item.type),
                        "cardinality": item.cardinality,
                        "key_type": item.key_type,
                        "default": item.default,
                        "deprecated": item.deprecated,
                    }
                    for item in message.fields
                ],
            }
            for message in model.messages
        ],
        "enums": [
            {
                "name": enum.name,
                "options": dict(enum.options),
                "reserved_ranges": _ranges_to_list(enum.reserved_ranges),
                "reserved_names": list(enum.reserved_names),
                "values": [{"name": value.name, "number": value.number} for value in enum.values],
            }
            for enum in model.enums
        ],
        "services": [
            {
                "name": service.name,
                "options": dict(service.options),
                "methods": [
                    {
                        "name": method.name,
                        "request": type_ref_to_dict(method.request),
                        "response": type_ref_to_dict(method.response),
                        "client_streaming": method.client_streaming,
                        "server_streaming": method.server_streaming,
                        "options": dict(method.options),
                    }
                    for method in service.methods
                ],
            }
            for service in model.services
        ],
    }


def model_from_dict(payload: dict[str, Any]) -> SchemaFile:
    version = payload.get("schema_version")
    if version != MODEL_SCHEMA_VERSION:
        raise SchemaGovernanceError(f"Unsupported model schema_version: {version}")
    try:
        return SchemaFile(
            key=str(payload["key"]),
            syntax=str(payload.get("syntax") or "v1"),
            imports=tuple(str(item) for item in payload.get("imports", [])),
            options=dict(payload.get("options") or {}),
            messages=tuple(
                Message(
                    name=str(message["name"]),
                    options=dict(message.get("options") or {}),
                    reserved_ranges=_ranges_from_list(message.get("reserved_ranges")),
                    reserved_names=tuple(str(item) for item in message.get("reserved_names", [])),
                    fields=tuple(
                        Field(
                            name=str(item["name"]),
                            tag=int(item["tag"]),
                            type=type_ref_from_dict(item["type"]),
                            cardinality=str(item.get("cardinality") or "singular"),
                            key_type=item.get("key_type"),
                            default=item.get("default"),
                            deprecated=bool(item.get("deprecated", False)),
                        )
                        for item in message.get("fields", [])
                    ),
                )
                for message in payload.get("messages", [])
            ),
            enums=tuple(
                Enum(
                    name=str(enum["name"]),
                    options=dict(enum.get("options") or {}),
                    reserved_ranges=_ranges_from_list(enum.get("reserved_ranges")),
                    reserved_names=tuple(str(item) for item in enum.get("reserved_names", [])),
                    values=tuple(
                        EnumValue(name=str(value["name"]), number=int(value["number"]))
                        for value in enum.get("values", [])
                    ),
                )
                for enum in payload.get("enums", [])
            ),
            services=tuple(
                Service(
                    name=str(service["name"]),
                    options=dict(service.get("options") or {}),
                    methods=tuple(
                        Method(
                            name=str(method["name"]),
                            request=type_ref_from_dict(method["request"]),
                            response=type_ref_from_dict(method["response"]),
                            client_streaming=bool(method.get("client_streaming", False)),
                            server_streaming=bool(method.get("server_streaming", False)),
                            options=dict(method.get("options") or {}),
                        )
                        for method in service.get("methods", [])
                    ),
                )
                for service in payload.get("services", [])
            ),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SchemaGovernanceError(f"Malformed model snapshot: {exc}") from exc


def revision_id(model: SchemaFile) -> str:
    return stable_hash(model_to_dict(model))


def baseline_from_dict(payload: dict[str, Any]) -> Baseline:
    try:
        history_raw = payload.get("tag_history") or {}
        return Baseline(
            file_key=str(payload["file_key"]),
            revision=str(payload["revision"]),
            model=model_from_dict(payload["model"]),
            dependencies=tuple(str(item) for item in payload.get("dependencies", [])),
            tag_history={str(name): tuple(int(tag) for tag in tags) for name, tags in history_raw.items()},
            committed_at_utc=str(payload.get("committed_at_utc") or ""),
            sequence=int(payload.get("sequence", 1)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SchemaGovernanceError(f"Malformed baseline snapshot: {exc}") from exc


def merge_tag_history(previous: Baseline | None, model: SchemaFile) -> dict[str, tuple[int, ...]]:
    history: dict[str, set[int]] = {}
    if previous is not None:
        for name, tags in previous.tag_history.items():
            history.setdefault(name, set()).update(tags)
    for message in model.messages:
        history.setdefault(message.name, set()).update(item.tag for item in message.fields)
    return {name: tuple(sorted(tags)) for name, tags in sorted(history.items())}


def build_baseline(file_key: str, model: SchemaFile, previous: Baseline | None) -> Baseline:
    return Baseline(
        file_key=file_key,
        revision=revision_id(model),
        model=model,
        dependencies=model.dependencies(),
        tag_history=merge_tag_history(previous, model),
        committed_at_utc=utc_timestamp_now(),
        sequence=(previous.sequence + 1) if previous is not None else 1,
    )
