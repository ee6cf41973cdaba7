from __future__ import annotations

import unittest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
import schema_governance_core as schema_governance  # noqa: E402
from schema_governance_core import core as sg_core  # noqa: E402

ACCOUNT_SCHEMA = """syntax = "v1";

// Account records owned by the auth domain.
message Account {
  option description = "A user account";
  string account_id = 1;
  string email = 3;
  AccountStatus status = 4 [default = ACCOUNT_STATUS_ACTIVE];
  repeated string tags = 5;
  map<string, int64> counters = 6;
  optional double ratio = 7 [default = 1.5];
  int32 legacy_flags = 8 [deprecated = true];
  reserved 2, 10 to 12, 100 to max;
  reserved "password";
}

enum AccountStatus {
  ACCOUNT_STATUS_UNSPECIFIED = 0;
  ACCOUNT_STATUS_ACTIVE = 1;
  reserved 5;
}

/* Lookup service. */
service AccountService {
  option description = "Account lookup";
  rpc GetAccount(GetAccountRequest) returns (Account) {
    option description = "Fetch one account";
  }
  rpc WatchAccounts(stream GetAccountRequest) returns (stream Account);
}

message GetAccountRequest {
  string account_id = 1;
}
"""


class DefinitionParserTests(unittest.TestCase):
    def assert_parse_error(self, text: str, fragment: str, file_key: str = "auth/account") -> sg_core.ParseError:
        with self.assertRaises(schema_governance.ParseError) as ctx:
            schema_governance.parse_schema(file_key, text)
        self.assertIn(fragment, ctx.exception.reason)
        return ctx.exception

    def test_parses_messages_enums_and_services(self) -> None:
        model = schema_governance.parse_schema("auth/account", ACCOUNT_SCHEMA)

        self.assertEqual(model.key, "auth/account")
        self.assertEqual([item.name for item in model.messages], ["Account", "GetAccountRequest"])
        account = model.message("Account")
        self.assertIsNotNone(account)
        self.assertEqual(account.description, "A user account")
        self.assertEqual([item.tag for item in account.fields], [1, 3, 4, 5, 6, 7, 8])

        status = account.field_by_tag(4)
        self.assertEqual(status.type.kind, "enum")
        self.assertEqual(status.type.file_key, "auth/account")
        self.assertEqual(status.default, "ACCOUNT_STATUS_ACTIVE")

        counters = account.field_by_tag(6)
        self.assertEqual(counters.cardinality, "map")
        self.assertEqual(counters.key_type, "string")
        self.assertEqual(counters.type.name, "int64")

        self.assertEqual(account.field_by_tag(7).cardinality, "optional")
        self.assertEqual(account.field_by_tag(7).default, "1.5")
        self.assertTrue(account.field_by_tag(8).deprecated)
        self.assertTrue(account.is_tag_reserved(11))
        self.assertTrue(account.is_tag_reserved(sg_core.MAX_TAG))
        self.assertFalse(account.is_tag_reserved(9))
        self.assertEqual(account.reserved_names, ("password",))

        service = model.service("AccountService")
        watch = service.method_by_name("WatchAccounts")
        self.assertEqual(watch.streaming_mode, "bidi")
        self.assertEqual(service.method_by_name("GetAccount").streaming_mode, "unary")
        self.assertEqual(service.method_by_name("GetAccount").request.kind, "message")
        self.assertEqual(model.pending_refs(), [])

    def test_render_is_canonical_and_reparses_to_equal_model(self) -> None:
        model = schema_governance.parse_schema("auth/account", ACCOUNT_SCHEMA)
        rendered = schema_governance.render_schema_file(model)

        reparsed = schema_governance.parse_schema("auth/account", rendered)
        self.assertEqual(reparsed, model)
        self.assertEqual(schema_governance.render_schema_file(reparsed), rendered)
        self.assertEqual(schema_governance.revision_id(reparsed), schema_governance.revision_id(model))
        self.assertIn("reserved 2, 10 to 12, 100 to max;", rendered)

    def test_comments_and_whitespace_do_not_change_revision(self) -> None:
        compact = 'syntax = "v1"; message GetAccountRequest { string account_id = 1; }'
        spaced = """// leading comment
syntax = "v1";

message GetAccountRequest {
  /* identifier */
  string account_id = 1;
}
"""
        left = schema_governance.parse_schema("auth/lookup", compact)
        right = schema_governance.parse_schema("auth/lookup", spaced)
        self.assertEqual(schema_governance.revision_id(left), schema_governance.revision_id(right))

    def test_imported_references_stay_pending(self) -> None:
        text = """syntax = "v1";
import "shared/common";

message Invoice {
  Money subtotal = 1;
  common.Money total = 2;
  string note = 3;
}
"""
        model = schema_governance.parse_schema("billing/invoice", text)
        pending = model.pending_refs()

        self.assertEqual(len(pending), 2)
        self.assertEqual(pending[0][0], "billing/invoice:Invoice.subtotal#1")
        self.assertIsNone(pending[0][1].qualifier)
        self.assertEqual(pending[1][1].qualifier, "common")
        self.assertEqual(model.dependencies(), ("shared/common",))

    def test_error_location_points_at_duplicate_tag(self) -> None:
        text = 'syntax = "v1";\nmessage A {\n  string a = 1;\n  string b = 1;\n}\n'
        error = self.assert_parse_error(text, "duplicate field tag 1")
        self.assertEqual((error.location.line, error.location.column), (4, 14))
        self.assertEqual(error.as_dict()["file_key"], "auth/account")
        self.assertTrue(str(error).startswith("auth/account:4:14:"))

    def test_structural_errors(self) -> None:
        cases = [
            ('syntax = "v2";', "unsupported syntax"),
            ("message A { Missing value = 1; }", "unresolved type reference 'Missing'"),
            ('import "shared/common"; message A { billing.Invoice inv = 1; }', "unknown import alias 'billing'"),
            ('import "auth/account";', "cannot import itself"),
            ('import "shared/common"; import "shared/common";', "duplicate import"),
            ('import "shared/common"; import "billing/common";', "shares alias 'common'"),
            ("message A { string a = 0; }", "outside 1..536870911"),
            ("message A { reserved 2; string a = 2; }", "field tag 2 is reserved"),
            ('message A { reserved "a"; string a = 1; }', "field name 'a' is reserved"),
            ("message A { string a = 1; int32 a = 2; }", "duplicate field name 'a'"),
            ("message A { message B { string c = 1; } }", "nested declarations are not supported"),
            ("message A { string a = 1; } enum A { A_X = 0; }", "duplicate name 'A'"),
            ("enum E { }", "must declare at least one value"),
            ("enum E { E_A = 0; E_B = 0; }", "duplicate enum value number 0"),
            ('message A { int32 count = 1 [default = "x"]; }', "does not match type 'int32'"),
            ("message A { repeated int32 n = 1 [default = 1]; }", "cannot declare a default"),
            ("message A { string a = 1 [packed = true]; }", "unknown field option 'packed'"),
            ("message A { map<double, string> m = 1; }", "invalid map key type 'double'"),
            ("message A { string a = 1 }", "expected ';'"),
            ('message A { string a = 1; } option description = "x', "unterminated string literal"),
            ("message A { string a = 1; } /* open", "unterminated block comment"),
            ("message A { string a = 1; } #", "unexpected character '#'"),
            ("message A { string a = 1; } service S { rpc Get(A) returns (A); rpc Get(A) returns (A); }",
             "duplicate method name 'Get'"),
            ("enum E { E_A = 0; } message A { E e = 1 [default = E_B]; }", "not a value of enum 'E'"),
        ]
        for text, fragment in cases:
            with self.subTest(text=text):
                self.assert_parse_error(text, fragment)

    def test_invalid_file_key_is_rejected(self) -> None:
        with self.assertRaises(schema_governance.ChangesetError):
            schema_governance.parse_schema("Auth/Account", "message A { string a = 1; }")

    def test_string_escapes_and_hex_literals(self) -> None:
        text = 'option description = "line\\n\\u00e9"; message A { int32 n = 1 [default = 0x10]; }'
        model = schema_governance.parse_schema("auth/escapes", text)
        self.assertEqual(model.options["description"], "line\né")
        self.assertEqual(model.message("A").field_by_tag(1).default, "16")

    def test_model_dict_round_trip(self) -> None:
        model = schema_governance.parse_schema("auth/account", ACCOUNT_SCHEMA)
        self.assertEqual(sg_core.model_from_dict(sg_core.model_to_dict(model)), model)


if __name__ == "__main__":
    unittest.main()
