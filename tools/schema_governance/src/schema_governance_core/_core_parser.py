from __future__ import annotations

import json
import re
from dataclasses import dataclass

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403

SYMBOLS = set("{}()[]<>;=,.-")
STRING_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "0": "\0",
}
FIELD_LABELS = {"optional", "required", "repeated"}
KNOWN_FIELD_OPTIONS = {"default", "deprecated"}
INT_LITERAL = re.compile(r"-?\d+")
FLOAT_LITERAL = re.compile(r"-?\d+(?:\.\d*)?(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int
    column: int


def tokenize(file_key: str, text: str) -> list[Token]:
    tokens: list[Token] = []
    index = 0
    line = 1
    line_start = 0
    length = len(text)

    def location(at: int) -> SourceLocation:
        return SourceLocation(file_key, line, at - line_start + 1)

    while index < length:
        ch = text[index]
        if ch == "\n":
            line += 1
            index += 1
            line_start = index
            continue
        if ch in " \t\r\f\v":
            index += 1
            continue
        if text.startswith("//", index):
            end = text.find("\n", index)
            index = length if end < 0 else end
            continue
        if text.startswith("/*", index):
            end = text.find("*/", index + 2)
            if end < 0:
                raise ParseError(location(index), "unterminated block comment")
            for offset in range(index, end):
                if text[offset] == "\n":
                    line += 1
                    line_start = offset + 1
            index = end + 2
            continue
        if ch.isalpha() or ch == "_":
            start = index
            while index < length and (text[index].isalnum() or text[index] == "_"):
                index += 1
            tokens.append(Token("ident", text[start:index], line, start - line_start + 1))
            continue
        if ch.isdigit():
            start = index
            if text.startswith(("0x", "0X"), index):
                index += 2
                while index < length and text[index] in "0123456789abcdefABCDEF":
                    index += 1
                tokens.append(Token("int", str(int(text[start:index], 16)), line, start - line_start + 1))
                continue
            kind = "int"
            while index < length and (text[index].isdigit() or text[index] in ".eE"):
                if text[index] in ".eE":
                    kind = "float"
                    if text[index] in "eE" and index + 1 < length and text[index + 1] in "+-":
                        index += 1
                index += 1
            raw = text[start:index]
            try:
                value = str(int(raw)) if kind == "int" else repr(float(raw))
            except ValueError as exc:
                raise ParseError(location(start), f"invalid number literal '{raw}'") from exc
            tokens.append(Token(kind, value, line, start - line_start + 1))
            continue
        if ch in "\"'":
            start = index
            quote = ch
            index += 1
            chars: list[str] = []
            while True:
                if index >= length or text[index] == "\n":
                    raise ParseError(location(start), "unterminated string literal")
                current = text[index]
                if current == quote:
                    index += 1
                    break
                if current == "\\":
                    if index + 1 >= length:
                        raise ParseError(location(index), "unterminated string literal")
                    escape = text[index + 1]
                    if escape == "u":
                        digits = text[index + 2 : index + 6]
                        if len(digits) != 4 or any(item not in "0123456789abcdefABCDEF" for item in digits):
                            raise ParseError(location(index), "invalid unicode escape")
                        chars.append(chr(int(digits, 16)))
                        index += 6
                        continue
                    if escape not in STRING_ESCAPES:
                        raise ParseError(location(index), f"invalid escape sequence '\\{escape}'")
                    chars.append(STRING_ESCAPES[escape])
                    index += 2
                    continue
                chars.append(current)
                index += 1
            tokens.append(Token("string", "".join(chars), line, start - line_start + 1))
            continue
        if ch in SYMBOLS:
            tokens.append(Token("symbol", ch, line, index - line_start + 1))
            index += 1
            continue
        raise ParseError(location(index), f"unexpected character '{ch}'")

    tokens.append(Token("eof", "", line, index - line_start + 1))
    return tokens


@dataclass
class _RawType:
    name: str
    qualifier: str | None
    token: Token


class DefinitionParser:
    """Recursive-descent parser for one interface definition document.

    Produces a SchemaFile whose type references are either resolved locally
    or left pending for the repository link phase. Raises ParseError on the
    first structural problem.
    """

    def __init__(self, file_key: str, text: str) -> None:
        self.file_key = validate_file_key(file_key)
        self.tokens = tokenize(self.file_key, text)
        self.pos = 0
        self.syntax = "v1"
        self.imports: list[str] = []
        self.import_aliases: dict[str, str] = {}
        self.options: dict[str, Any] = {}
        self.messages: list[tuple[Message, list[tuple[int, _RawType]], Token]] = []
        self.enums: list[tuple[Enum, Token]] = []
        self.services: list[tuple[str, dict[str, Any], list[dict[str, Any]], Token]] = []
        self.top_level_names: dict[str, Token] = {}
        self.default_tokens: dict[tuple[str, int], Token] = {}

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "eof":
            self.pos += 1
        return token

    def error(self, token: Token, reason: str) -> ParseError:
        return ParseError(SourceLocation(self.file_key, token.line, token.column), reason)

    def describe(self, token: Token) -> str:
        if token.kind == "eof":
            return "end of file"
        if token.kind == "string":
            return f"string {json.dumps(token.value)}"
        return f"'{token.value}'"

    def at_symbol(self, value: str) -> bool:
        token = self.peek()
        return token.kind == "symbol" and token.value == value

    def at_keyword(self, value: str) -> bool:
        token = self.peek()
        return token.kind == "ident" and token.value == value

    def expect_symbol(self, value: str) -> Token:
        token = self.advance()
        if token.kind != "symbol" or token.value != value:
            raise self.error(token, f"expected '{value}' but found {self.describe(token)}")
        return token

    def expect_keyword(self, value: str) -> Token:
        token = self.advance()
        if token.kind != "ident" or token.value != value:
            raise self.error(token, f"expected '{value}' but found {self.describe(token)}")
        return token

    def expect_ident(self, what: str) -> Token:
        token = self.advance()
        if token.kind != "ident":
            raise self.error(token, f"expected {what} but found {self.describe(token)}")
        return token

    def expect_string(self, what: str) -> Token:
        token = self.advance()
        if token.kind != "string":
            raise self.error(token, f"expected {what} string but found {self.describe(token)}")
        return token

    def expect_int(self, what: str, allow_negative: bool = False) -> tuple[int, Token]:
        negative = False
        first = self.peek()
        if allow_negative and self.at_symbol("-"):
            self.advance()
            negative = True
        token = self.advance()
        if token.kind != "int":
            raise self.error(token, f"expected {what} but found {self.describe(token)}")
        value = int(token.value)
        return (-value if negative else value), first

    # -- top level -------------------------------------------------------

    def parse(self) -> SchemaFile:
        if self.at_keyword("syntax"):
            self.parse_syntax()
        while self.peek().kind != "eof":
            token = self.peek()
            if token.kind == "symbol" and token.value == ";":
                self.advance()
            elif self.at_keyword("import"):
                self.parse_import()
            elif self.at_keyword("option"):
                key, value = self.parse_option_statement()
                self.options[key] = value
            elif self.at_keyword("message"):
                self.parse_message()
            elif self.at_keyword("enum"):
                self.parse_enum()
            elif self.at_keyword("service"):
                self.parse_service()
            elif self.at_keyword("syntax"):
                raise self.error(token, "syntax declaration must be the first statement")
            else:
                raise self.error(token, f"unexpected {self.describe(token)} at top level")
        return self.build()

    def parse_syntax(self) -> None:
        self.expect_keyword("syntax")
        self.expect_symbol("=")
        token = self.expect_string("syntax")
        if token.value != "v1":
            raise self.error(token, f"unsupported syntax '{token.value}' (expected \"v1\")")
        self.syntax = token.value
        self.expect_symbol(";")

    def parse_import(self) -> None:
        self.expect_keyword("import")
        token = self.expect_string("import path")
        self.expect_symbol(";")
        try:
            target = validate_file_key(token.value)
        except ChangesetError as exc:
            raise self.error(token, str(exc)) from exc
        if target == self.file_key:
            raise self.error(token, "a file cannot import itself")
        if target in self.imports:
            raise self.error(token, f"duplicate import '{target}'")
        alias = file_key_alias(target)
        if alias in self.import_aliases:
            raise self.error(
                token,
                f"import '{target}' shares alias '{alias}' with import '{self.import_aliases[alias]}'",
            )
        self.imports.append(target)
        self.import_aliases[alias] = target

    def parse_constant(self) -> tuple[Any, str, Token]:
        """Returns (python value, canonical literal text, first token)."""
        first = self.peek()
        negative = False
        if self.at_symbol("-"):
            self.advance()
            negative = True
        token = self.advance()
        if token.kind == "string" and not negative:
            return token.value, json.dumps(token.value, ensure_ascii=False), first
        if token.kind == "int":
            value = -int(token.value) if negative else int(token.value)
            return value, str(value), first
        if token.kind == "float":
            fvalue = -float(token.value) if negative else float(token.value)
            return fvalue, repr(fvalue), first
        if token.kind == "ident" and not negative:
            if token.value == "true":
                return True, "true", first
            if token.value == "false":
                return False, "false", first
            return token.value, token.value, first
        raise self.error(token, f"expected constant but found {self.describe(token)}")

    def parse_option_statement(self) -> tuple[str, Any]:
        self.expect_keyword("option")
        name = self.expect_ident("option name")
        self.expect_symbol("=")
        value, _, first = self.parse_constant()
        self.expect_symbol(";")
        if name.value == "description" and not isinstance(value, str):
            raise self.error(first, "option 'description' must be a string")
        return name.value, value

    def at_nested_declaration(self) -> bool:
        token = self.peek()
        follower = self.peek(2)
        return (
            token.kind == "ident"
            and token.value in {"message", "enum", "service"}
            and self.peek(1).kind == "ident"
            and follower.kind == "symbol"
            and follower.value == "{"
        )

    def register_top_level(self, token: Token) -> None:
        existing = self.top_level_names.get(token.value)
        if existing is not None:
            raise self.error(
                token,
                f"duplicate name '{token.value}' (first declared at line {existing.line})",
            )
        self.top_level_names[token.value] = token

    def parse_type_name(self) -> _RawType:
        first = self.expect_ident("type name")
        if self.at_symbol("."):
            self.advance()
            second = self.expect_ident("type name after qualifier")
            if self.at_symbol("."):
                raise self.error(self.peek(), "type references may use at most one qualifier")
            return _RawType(name=second.value, qualifier=first.value, token=first)
        return _RawType(name=first.value, qualifier=None, token=first)

    def parse_reserved(self) -> tuple[list[ReservedRange], list[str], Token]:
        keyword = self.expect_keyword("reserved")
        ranges: list[ReservedRange] = []
        names: list[str] = []
        if self.peek().kind == "string":
            while True:
                names.append(self.expect_string("reserved name").value)
                if not self.at_symbol(","):
                    break
                self.advance()
        else:
            while True:
                start, start_token = self.expect_int("reserved number", allow_negative=True)
                end = start
                if self.at_keyword("to"):
                    self.advance()
                    if self.at_keyword("max"):
                        self.advance()
                        end = MAX_TAG
                    else:
                        end, _ = self.expect_int("reserved range end", allow_negative=True)
                if end < start:
                    raise self.error(start_token, f"reserved range {start} to {end} is empty")
                ranges.append(ReservedRange(start, end))
                if not self.at_symbol(","):
                    break
                self.advance()
        self.expect_symbol(";")
        return ranges, names, keyword

    # -- message ---------------------------------------------------------

    def parse_message(self) -> None:
        self.expect_keyword("message")
        name = self.expect_ident("message name")
        self.register_top_level(name)
        self.expect_symbol("{")

        options: dict[str, Any] = {}
        reserved_ranges: list[ReservedRange] = []
        reserved_names: list[str] = []
        raw_fields: list[dict[str, Any]] = []

        while not self.at_symbol("}"):
            token = self.peek()
            if token.kind == "eof":
                raise self.error(token, f"unterminated message '{name.value}'")
            if token.kind == "symbol" and token.value == ";":
                self.advance()
            elif self.at_keyword("option"):
                key, value = self.parse_option_statement()
                options[key] = value
            elif self.at_keyword("reserved"):
                ranges, names, _ = self.parse_reserved()
                reserved_ranges.extend(ranges)
                reserved_names.extend(names)
            elif self.at_nested_declaration():
                raise self.error(token, "nested declarations are not supported; declare types at top level")
            else:
                raw_fields.append(self.parse_field())
        self.expect_symbol("}")

        fields: list[Field] = []
        pending_types: list[tuple[int, _RawType]] = []
        seen_names: dict[str, Token] = {}
        seen_tags: dict[int, Token] = {}
        for raw in raw_fields:
            name_token: Token = raw["name_token"]
            tag_token: Token = raw["tag_token"]
            tag: int = raw["tag"]
            if name_token.value in seen_names:
                raise self.error(name_token, f"duplicate field name '{name_token.value}' in message '{name.value}'")
            if tag in seen_tags:
                raise self.error(tag_token, f"duplicate field tag {tag} in message '{name.value}'")
            if any(item.contains(tag) for item in reserved_ranges):
                raise self.error(tag_token, f"field tag {tag} is reserved in message '{name.value}'")
            if name_token.value in reserved_names:
                raise self.error(name_token, f"field name '{name_token.value}' is reserved in message '{name.value}'")
            seen_names[name_token.value] = name_token
            seen_tags[tag] = tag_token
            pending_types.append((len(fields), raw["type"]))
            fields.append(
                Field(
                    name=name_token.value,
                    tag=tag,
                    type=TypeRef(name=raw["type"].name, kind="pending", qualifier=raw["type"].qualifier),
                    cardinality=raw["cardinality"],
                    key_type=raw["key_type"],
                    default=raw["default"],
                    deprecated=raw["deprecated"],
                )
            )

        message = Message(
            name=name.value,
            fields=tuple(fields),
            reserved_ranges=tuple(reserved_ranges),
            reserved_names=tuple(reserved_names),
            options=options,
        )
        self.messages.append((message, pending_types, name))
        for raw in raw_fields:
            if raw["default_token"] is not None:
                self.default_tokens[(name.value, raw["tag"])] = raw["default_token"]

    def parse_field(self) -> dict[str, Any]:
        cardinality = "singular"
        label_token = None
        if self.peek().kind == "ident" and self.peek().value in FIELD_LABELS and self.peek(1).kind == "ident":
            label_token = self.advance()
            cardinality = label_token.value

        key_type: str | None = None
        if self.at_keyword("map") and self.peek(1).kind == "symbol" and self.peek(1).value == "<":
            self.advance()
            if label_token is not None:
                raise self.error(label_token, "map fields cannot carry a label")
            self.expect_symbol("<")
            key_token = self.expect_ident("map key type")
            if key_token.value not in MAP_KEY_TYPES:
                raise self.error(key_token, f"invalid map key type '{key_token.value}'")
            self.expect_symbol(",")
            value_type = self.parse_type_name()
            if value_type.qualifier is None and value_type.name == "map":
                raise self.error(value_type.token, "map values cannot be maps")
            self.expect_symbol(">")
            key_type = key_token.value
            cardinality = "map"
            raw_type = value_type
        else:
            raw_type = self.parse_type_name()

        name_token = self.expect_ident("field name")
        self.expect_symbol("=")
        tag, tag_token = self.expect_int("field tag", allow_negative=True)
        if tag < MIN_TAG or tag > MAX_TAG:
            raise self.error(tag_token, f"field tag {tag} is outside {MIN_TAG}..{MAX_TAG}")

        default: str | None = None
        default_token: Token | None = None
        deprecated = False
        if self.at_symbol("["):
            self.advance()
            seen: set[str] = set()
            while True:
                option_name = self.expect_ident("field option name")
                if option_name.value not in KNOWN_FIELD_OPTIONS:
                    raise self.error(option_name, f"unknown field option '{option_name.value}'")
                if option_name.value in seen:
                    raise self.error(option_name, f"duplicate field option '{option_name.value}'")
                seen.add(option_name.value)
                self.expect_symbol("=")
                value, literal, first = self.parse_constant()
                if option_name.value == "default":
                    if cardinality in {"repeated", "map"}:
                        raise self.error(option_name, "repeated and map fields cannot declare a default")
                    default = literal
                    default_token = first
                else:
                    if not isinstance(value, bool):
                        raise self.error(first, "option 'deprecated' must be true or false")
                    deprecated = value
                if not self.at_symbol(","):
                    break
                self.advance()
            self.expect_symbol("]")
        self.expect_symbol(";")

        return {
            "name_token": name_token,
            "tag": tag,
            "tag_token": tag_token,
            "type": raw_type,
            "cardinality": cardinality,
            "key_type": key_type,
            "default": default,
            "default_token": default_token,
            "deprecated": deprecated,
        }

    # -- enum ------------------------------------------------------------

    def parse_enum(self) -> None:
        self.expect_keyword("enum")
        name = self.expect_ident("enum name")
        self.register_top_level(name)
        self.expect_symbol("{")

        options: dict[str, Any] = {}
        reserved_ranges: list[ReservedRange] = []
        reserved_names: list[str] = []
        values: list[EnumValue] = []
        seen_names: set[str] = set()
        seen_numbers: set[int] = set()
        value_tokens: list[tuple[str, int, Token, Token]] = []

        while not self.at_symbol("}"):
            token = self.peek()
            if token.kind == "eof":
                raise self.error(token, f"unterminated enum '{name.value}'")
            if token.kind == "symbol" and token.value == ";":
                self.advance()
            elif self.at_keyword("option"):
                key, value = self.parse_option_statement()
                options[key] = value
            elif self.at_keyword("reserved"):
                ranges, names, _ = self.parse_reserved()
                reserved_ranges.extend(ranges)
                reserved_names.extend(names)
            else:
                value_name = self.expect_ident("enum value name")
                self.expect_symbol("=")
                number, number_token = self.expect_int("enum value number", allow_negative=True)
                self.expect_symbol(";")
                value_tokens.append((value_name.value, number, value_name, number_token))
        self.expect_symbol("}")

        for value_name, number, name_token, number_token in value_tokens:
            if value_name in seen_names:
                raise self.error(name_token, f"duplicate enum value name '{value_name}' in enum '{name.value}'")
            if number in seen_numbers:
                raise self.error(number_token, f"duplicate enum value number {number} in enum '{name.value}'")
            if any(item.contains(number) for item in reserved_ranges):
                raise self.error(number_token, f"enum value number {number} is reserved in enum '{name.value}'")
            if value_name in reserved_names:
                raise self.error(name_token, f"enum value name '{value_name}' is reserved in enum '{name.value}'")
            seen_names.add(value_name)
            seen_numbers.add(number)
            values.append(EnumValue(name=value_name, number=number))

        if not values:
            raise self.error(name, f"enum '{name.value}' must declare at least one value")

        self.enums.append(
            (
                Enum(
                    name=name.value,
                    values=tuple(values),
                    reserved_ranges=tuple(reserved_ranges),
                    reserved_names=tuple(reserved_names),
                    options=options,
                ),
                name,
            )
        )

    # -- service ---------------------------------------------------------

    def parse_service(self) -> None:
        self.expect_keyword("service")
        name = self.expect_ident("service name")
        self.register_top_level(name)
        self.expect_symbol("{")

        options: dict[str, Any] = {}
        methods: list[dict[str, Any]] = []
        seen: dict[str, Token] = {}
        while not self.at_symbol("}"):
            token = self.peek()
            if token.kind == "eof":
                raise self.error(token, f"unterminated service '{name.value}'")
            if token.kind == "symbol" and token.value == ";":
                self.advance()
            elif self.at_keyword("option"):
                key, value = self.parse_option_statement()
                options[key] = value
            elif self.at_keyword("rpc"):
                method = self.parse_rpc()
                method_name: Token = method["name_token"]
                if method_name.value in seen:
                    raise self.error(
                        method_name,
                        f"duplicate method name '{method_name.value}' in service '{name.value}'",
                    )
                seen[method_name.value] = method_name
                methods.append(method)
            else:
                raise self.error(token, f"unexpected {self.describe(token)} in service '{name.value}'")
        self.expect_symbol("}")
        self.services.append((name.value, options, methods, name))

    def parse_rpc(self) -> dict[str, Any]:
        self.expect_keyword("rpc")
        name = self.expect_ident("method name")
        self.expect_symbol("(")
        client_streaming = False
        if self.at_keyword("stream") and self.peek(1).kind == "ident":
            self.advance()
            client_streaming = True
        request = self.parse_type_name()
        self.expect_symbol(")")
        self.expect_keyword("returns")
        self.expect_symbol("(")
        server_streaming = False
        if self.at_keyword("stream") and self.peek(1).kind == "ident":
            self.advance()
            server_streaming = True
        response = self.parse_type_name()
        self.expect_symbol(")")

        options: dict[str, Any] = {}
        if self.at_symbol("{"):
            self.advance()
            while not self.at_symbol("}"):
                token = self.peek()
                if token.kind == "eof":
                    raise self.error(token, f"unterminated method '{name.value}'")
                if token.kind == "symbol" and token.value == ";":
                    self.advance()
                elif self.at_keyword("option"):
                    key, value = self.parse_option_statement()
                    options[key] = value
                else:
                    raise self.error(token, f"unexpected {self.describe(token)} in method '{name.value}'")
            self.expect_symbol("}")
        else:
            self.expect_symbol(";")

        return {
            "name_token": name,
            "request": request,
            "response": response,
            "client_streaming": client_streaming,
            "server_streaming": server_streaming,
            "options": options,
        }

    # -- local resolution ------------------------------------------------

    def resolve_type(self, raw: _RawType, declared: dict[str, str]) -> TypeRef:
        if raw.qualifier is None and raw.name in PRIMITIVE_TYPES:
            return TypeRef(name=raw.name, kind="primitive")
        if raw.qualifier is not None:
            if raw.qualifier not in self.import_aliases:
                raise self.error(
                    raw.token,
                    f"unknown import alias '{raw.qualifier}' in type reference '{raw.qualifier}.{raw.name}'",
                )
            return TypeRef(name=raw.name, kind="pending", qualifier=raw.qualifier)
        kind = declared.get(raw.name)
        if kind is not None:
            return TypeRef(name=raw.name, kind=kind, file_key=self.file_key)
        if self.imports:
            return TypeRef(name=raw.name, kind="pending")
        raise self.error(raw.token, f"unresolved type reference '{raw.name}'")

    def check_default(self, item: Field, token: Token, enums: dict[str, Enum]) -> None:
        literal = item.default
        if literal is None:
            return
        ref = item.type
        if ref.kind == "message":
            raise self.error(token, f"message-typed field '{item.name}' cannot declare a default")
        if ref.kind == "primitive":
            if ref.name in {"string", "bytes"}:
                ok = literal.startswith('"')
            elif ref.name == "bool":
                ok = literal in {"true", "false"}
            elif ref.name in {"float", "double"}:
                ok = FLOAT_LITERAL.fullmatch(literal) is not None or literal in {"inf", "nan"}
            else:
                ok = INT_LITERAL.fullmatch(literal) is not None
            if not ok:
                raise self.error(token, f"default {literal} does not match type '{ref.name}' of field '{item.name}'")
            return
        if ref.kind == "enum":
            enum = enums.get(ref.name)
            names = {value.name for value in enum.values} if enum is not None else set()
            if literal not in names:
                raise self.error(token, f"default {literal} is not a value of enum '{ref.name}'")

    def build(self) -> SchemaFile:
        declared: dict[str, str] = {}
        for message, _, _ in self.messages:
            declared[message.name] = "message"
        for enum, _ in self.enums:
            declared[enum.name] = "enum"
        enums_by_name = {enum.name: enum for enum, _ in self.enums}

        messages: list[Message] = []
        for message, pending_types, _ in self.messages:
            fields = list(message.fields)
            for index, raw in pending_types:
                resolved = self.resolve_type(raw, declared)
                fields[index] = Field(
                    name=fields[index].name,
                    tag=fields[index].tag,
                    type=resolved,
                    cardinality=fields[index].cardinality,
                    key_type=fields[index].key_type,
                    default=fields[index].default,
                    deprecated=fields[index].deprecated,
                )
            built = Message(
                name=message.name,
                fields=tuple(fields),
                reserved_ranges=message.reserved_ranges,
                reserved_names=message.reserved_names,
                options=message.options,
            )
            for item in built.fields:
                token = self.default_tokens.get((message.name, item.tag))
                if token is not None:
                    self.check_default(item, token, enums_by_name)
            messages.append(built)

        services: list[Service] = []
        for service_name, options, raw_methods, _ in self.services:
            methods = tuple(
                Method(
                    name=raw["name_token"].value,
                    request=self.resolve_type(raw["request"], declared),
                    response=self.resolve_type(raw["response"], declared),
                    client_streaming=raw["client_streaming"],
                    server_streaming=raw["server_streaming"],
                    options=raw["options"],
                )
                for raw in raw_methods
            )
            services.append(Service(name=service_name, methods=methods, options=options))

        return SchemaFile(
            key=self.file_key,
            syntax=self.syntax,
            imports=tuple(self.imports),
            options=dict(self.options),
            messages=tuple(messages),
            enums=tuple(enum for enum, _ in self.enums),
            services=tuple(services),
        )


def parse_schema(file_key: str, text: str) -> SchemaFile:
    return DefinitionParser(file_key, text).parse()


def _render_option_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value) if isinstance(value, float) else str(value)
    return json.dumps(str(value), ensure_ascii=False)


def _render_options(options: dict[str, Any], indent: str) -> list[str]:
    return [f"{indent}option {key} = {_render_option_value(value)};" for key, value in options.items()]


def _render_reserved(ranges: tuple[ReservedRange, ...], names: tuple[str, ...], indent: str) -> list[str]:
    lines: list[str] = []
    if ranges:
        lines.append(f"{indent}reserved {', '.join(item.render() for item in ranges)};")
    if names:
        lines.append(f"{indent}reserved {', '.join(json.dumps(name, ensure_ascii=False) for name in names)};")
    return lines


def _render_field(item: Field) -> str:
    type_text = item.type.source_text()
    if item.cardinality == "map":
        head = f"map<{item.key_type}, {type_text}>"
    elif item.cardinality == "singular":
        head = type_text
    else:
        head = f"{item.cardinality} {type_text}"
    options: list[str] = []
    if item.default is not None:
        options.append(f"default = {item.default}")
    if item.deprecated:
        options.append("deprecated = true")
    suffix = f" [{', '.join(options)}]" if options else ""
    return f"  {head} {item.name} = {item.tag}{suffix};"


def render_schema_file(model: SchemaFile) -> str:
    """Render a model as canonical definition text.

    Parsing the result under the same file key yields an equal model.
    """
    blocks: list[list[str]] = [[f"syntax = {json.dumps(model.syntax)};"]]
    if model.imports:
        blocks.append([f"import {json.dumps(item)};" for item in model.imports])
    if model.options:
        blocks.append(_render_options(model.options, ""))

    for message in model.messages:
        lines = [f"message {message.name} {{"]
        lines.extend(_render_options(message.options, "  "))
        lines.extend(_render_reserved(message.reserved_ranges, message.reserved_names, "  "))
        lines.extend(_render_field(item) for item in message.fields)
        lines.append("}")
        blocks.append(lines)

    for enum in model.enums:
        lines = [f"enum {enum.name} {{"]
        lines.extend(_render_options(enum.options, "  "))
        lines.extend(_render_reserved(enum.reserved_ranges, enum.reserved_names, "  "))
        lines.extend(f"  {value.name} = {value.number};" for value in enum.values)
        lines.append("}")
        blocks.append(lines)

    for service in model.services:
        lines = [f"service {service.name} {{"]
        lines.extend(_render_options(service.options, "  "))
        for method in service.methods:
            request = ("stream " if method.client_streaming else "") + method.request.source_text()
            response = ("stream " if method.server_streaming else "") + method.response.source_text()
            head = f"  rpc {method.name}({request}) returns ({response})"
            if method.options:
                lines.append(head + " {")
                lines.extend(_render_options(method.options, "    "))
                lines.append("  }")
            else:
                lines.append(head + ";")
        lines.append("}")
        blocks.append(lines)

    return "\n\n".join("\n".join(block) for block in blocks) + "\n"
