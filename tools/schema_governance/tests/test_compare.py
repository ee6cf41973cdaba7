from __future__ import annotations

import unittest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
import schema_governance_core as schema_governance  # noqa: E402
from schema_governance_core import core as sg_core  # noqa: E402

ChangeKind = schema_governance.ChangeKind

BASE_ACCOUNT = """syntax = "v1";

message Account {
  string account_id = 1;
  string email = 3;
  AccountStatus status = 4;
}

enum AccountStatus {
  ACCOUNT_STATUS_UNSPECIFIED = 0;
  ACCOUNT_STATUS_ACTIVE = 1;
}
"""


def baseline_of(text: str, file_key: str = "auth/account", previous: sg_core.Baseline | None = None) -> sg_core.Baseline:
    return sg_core.build_baseline(file_key, schema_governance.parse_schema(file_key, text), previous)


def compare(base_text: str, candidate_text: str, policy: sg_core.GovernancePolicy | None = None) -> list[sg_core.ChangeRecord]:
    return schema_governance.compare_models(
        baseline_of(base_text),
        schema_governance.parse_schema("auth/account", candidate_text),
        policy,
    )


def kinds(records: list[sg_core.ChangeRecord]) -> list[ChangeKind]:
    return [item.kind for item in records]


def message_schema(body: str, extra: str = "") -> str:
    return f'syntax = "v1";\n\nmessage Account {{\n{body}\n}}\n{extra}'


class CompatibilityAnalyzerTests(unittest.TestCase):
    def test_email_type_change_is_breaking(self) -> None:
        candidate = BASE_ACCOUNT.replace("string email = 3;", "int32 email = 3;")
        records = compare(BASE_ACCOUNT, candidate)

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].kind, ChangeKind.FIELD_TYPE_CHANGED)
        self.assertEqual(records[0].severity, "breaking")
        self.assertEqual(records[0].entity_path, "auth/account:Account.email#3")
        self.assertEqual(sg_core.classify_records(records), "breaking")

    def test_enum_value_addition_is_safe(self) -> None:
        candidate = BASE_ACCOUNT.replace(
            "ACCOUNT_STATUS_ACTIVE = 1;",
            "ACCOUNT_STATUS_ACTIVE = 1;\n  ACCOUNT_STATUS_SUSPENDED = 2;",
        )
        records = compare(BASE_ACCOUNT, candidate)

        self.assertEqual(kinds(records), [ChangeKind.ENUM_VALUE_ADDED])
        self.assertEqual(records[0].entity_path, "auth/account:AccountStatus.ACCOUNT_STATUS_SUSPENDED=2")
        self.assertEqual(sg_core.classify_records(records), "safe")

    def test_unchanged_file_yields_no_records(self) -> None:
        reformatted = "// same content\n" + BASE_ACCOUNT.replace("\n\n", "\n")
        self.assertEqual(compare(BASE_ACCOUNT, reformatted), [])
        self.assertEqual(sg_core.classify_records([]), "none")

    def test_new_file_reports_file_and_declarations(self) -> None:
        model = schema_governance.parse_schema("auth/account", BASE_ACCOUNT)
        records = schema_governance.compare_models(None, model)

        self.assertEqual(
            kinds(records),
            [ChangeKind.FILE_ADDED, ChangeKind.MESSAGE_ADDED, ChangeKind.ENUM_ADDED],
        )
        self.assertTrue(all(item.severity == "safe" for item in records))

    def test_field_removal_depends_on_reservation(self) -> None:
        base = message_schema("  string account_id = 1;\n  string email = 3;")
        removed = message_schema("  string account_id = 1;")
        reserved = message_schema("  string account_id = 1;\n  reserved 3;")

        self.assertEqual(kinds(compare(base, removed)), [ChangeKind.FIELD_REMOVED])
        self.assertEqual(compare(base, removed)[0].severity, "breaking")
        self.assertEqual(kinds(compare(base, reserved)), [ChangeKind.FIELD_REMOVED_RESERVED])
        self.assertEqual(compare(base, reserved)[0].severity, "safe")

    def test_releasing_a_reserved_tag_and_reusing_it_is_breaking(self) -> None:
        first = baseline_of(message_schema("  string account_id = 1;\n  string email = 3;"))
        second = baseline_of(message_schema("  string account_id = 1;\n  reserved 3;"), previous=first)
        candidate = schema_governance.parse_schema(
            "auth/account", message_schema("  string account_id = 1;\n  int64 phone = 3;")
        )
        records = schema_governance.compare_models(second, candidate)

        self.assertIn(ChangeKind.FIELD_TAG_REUSED, kinds(records))
        self.assertIn(ChangeKind.RESERVED_TAG_RELEASED, kinds(records))
        self.assertTrue(all(item.severity == "breaking" for item in records))

    def test_tag_history_detects_reuse_without_reservation(self) -> None:
        first = baseline_of(message_schema("  string account_id = 1;\n  string email = 3;"))
        second = baseline_of(message_schema("  string account_id = 1;"), previous=first)
        self.assertEqual(second.tag_history["Account"], (1, 3))

        candidate = schema_governance.parse_schema(
            "auth/account", message_schema("  string account_id = 1;\n  int64 phone = 3;")
        )
        records = schema_governance.compare_models(second, candidate)
        self.assertEqual(kinds(records), [ChangeKind.FIELD_TAG_REUSED])

    def test_readding_a_removed_message_checks_history(self) -> None:
        first = baseline_of(message_schema("  string account_id = 1;", "\nmessage Extra {\n  int32 n = 1;\n}\n"))
        second = baseline_of(message_schema("  string account_id = 1;"), previous=first)
        candidate = schema_governance.parse_schema(
            "auth/account",
            message_schema("  string account_id = 1;", "\nmessage Extra {\n  string label = 1;\n}\n"),
        )
        records = schema_governance.compare_models(second, candidate)
        self.assertEqual(kinds(records), [ChangeKind.MESSAGE_ADDED, ChangeKind.FIELD_TAG_REUSED])

    def test_field_level_transitions(self) -> None:
        cases = [
            ("  int32 count = 1;", "  int64 count = 1;", ChangeKind.FIELD_TYPE_WIDENED, "safe"),
            ("  int64 count = 1;", "  int32 count = 1;", ChangeKind.FIELD_TYPE_WIRE_COMPATIBLE, "ambiguous"),
            ("  string data = 1;", "  bytes data = 1;", ChangeKind.FIELD_TYPE_WIRE_COMPATIBLE, "ambiguous"),
            ("  string data = 1;", "  bool data = 1;", ChangeKind.FIELD_TYPE_CHANGED, "breaking"),
            ("  string name = 1;", "  string full_name = 1;", ChangeKind.FIELD_RENAMED, "ambiguous"),
            ("  string name = 1;", "  optional string name = 1;", ChangeKind.FIELD_PRESENCE_CHANGED, "safe"),
            ("  string name = 1;", "  required string name = 1;", ChangeKind.FIELD_MADE_REQUIRED, "breaking"),
            ("  required string name = 1;", "  string name = 1;", ChangeKind.FIELD_REQUIRED_RELAXED, "breaking"),
            ("  string name = 1;", "  repeated string name = 1;", ChangeKind.FIELD_CARDINALITY_CHANGED, "breaking"),
            (
                "  map<string, int32> counts = 1;",
                "  map<int64, int32> counts = 1;",
                ChangeKind.FIELD_CARDINALITY_CHANGED,
                "breaking",
            ),
            (
                '  string region = 1 [default = "eu"];',
                '  string region = 1 [default = "us"];',
                ChangeKind.FIELD_DEFAULT_CHANGED,
                "ambiguous",
            ),
            ("  string name = 1;", "  string name = 1 [deprecated = true];", ChangeKind.FIELD_DEPRECATED, "safe"),
            ("  string name = 1;", "  string name = 1;\n  required int32 n = 2;", ChangeKind.FIELD_ADDED_REQUIRED, "breaking"),
            ("  string name = 1;", "  string name = 1;\n  int32 n = 2;", ChangeKind.FIELD_ADDED, "safe"),
        ]
        for before, after, kind, severity in cases:
            with self.subTest(before=before, after=after):
                records = compare(message_schema(before), message_schema(after))
                self.assertEqual(kinds(records), [kind])
                self.assertEqual(records[0].severity, severity)

    def test_enum_and_int_are_wire_compatible(self) -> None:
        enum_decl = "\nenum Level {\n  LEVEL_UNSPECIFIED = 0;\n}\n"
        records = compare(message_schema("  int32 level = 1;", enum_decl), message_schema("  Level level = 1;", enum_decl))
        self.assertEqual(kinds(records), [ChangeKind.FIELD_TYPE_WIRE_COMPATIBLE])

    def test_enum_value_changes(self) -> None:
        base = "enum Level {\n  LEVEL_UNSPECIFIED = 0;\n  LEVEL_HIGH = 1;\n  reserved 5 to 9;\n}\n"
        renamed = base.replace("LEVEL_HIGH = 1", "LEVEL_TOP = 1")
        removed_reserved = "enum Level {\n  LEVEL_UNSPECIFIED = 0;\n  reserved 1, 5 to 9;\n}\n"
        released = "enum Level {\n  LEVEL_UNSPECIFIED = 0;\n  LEVEL_HIGH = 1;\n  reserved 5 to 6;\n}\n"

        self.assertEqual(kinds(compare(base, renamed)), [ChangeKind.ENUM_VALUE_RENAMED])
        self.assertEqual(kinds(compare(base, removed_reserved)), [ChangeKind.ENUM_VALUE_REMOVED])
        self.assertEqual(compare(base, removed_reserved)[0].severity, "breaking")
        records = compare(base, released)
        self.assertEqual(kinds(records), [ChangeKind.RESERVED_ENUM_NUMBER_RELEASED])
        self.assertIn("7 to 9", records[0].detail)

    def test_service_changes(self) -> None:
        base = """message Req {
  string id = 1;
}
message Other {
  string id = 1;
}
service AccountService {
  rpc Get(Req) returns (Req);
  rpc Drop(Req) returns (Req);
}
"""
        candidate = """message Req {
  string id = 1;
}
message Other {
  string id = 1;
}
service AccountService {
  rpc Get(Other) returns (stream Req);
  rpc Create(Req) returns (Req);
}
"""
        records = compare(base, candidate)
        self.assertEqual(
            sorted(item.kind.value for item in records),
            sorted(
                [
                    ChangeKind.METHOD_REMOVED.value,
                    ChangeKind.METHOD_REQUEST_CHANGED.value,
                    ChangeKind.METHOD_STREAMING_CHANGED.value,
                    ChangeKind.METHOD_ADDED.value,
                ]
            ),
        )

    def test_removed_declarations_are_breaking(self) -> None:
        records = compare(BASE_ACCOUNT, 'syntax = "v1";\n')
        self.assertEqual(kinds(records), [ChangeKind.MESSAGE_REMOVED, ChangeKind.ENUM_REMOVED])
        self.assertTrue(all(item.severity == "breaking" for item in records))

    def test_policy_controls_rename_and_overrides(self) -> None:
        before = message_schema("  string name = 1;")
        after = message_schema("  string full_name = 1;")
        strict = schema_governance.GovernancePolicy(field_rename_severity="breaking")
        self.assertEqual(compare(before, after, strict)[0].severity, "breaking")

        override = schema_governance.GovernancePolicy(severity_overrides={"FIELD_RENAMED": "safe"})
        self.assertEqual(compare(before, after, override)[0].severity, "safe")

    def test_policy_config_rejects_unknown_change_kinds(self) -> None:
        policy = sg_core.resolve_policy({"policy": {"severity_overrides": {"field_renamed": "safe"}}})
        self.assertEqual(policy.severity_overrides, {"FIELD_RENAMED": "safe"})

        with self.assertRaises(schema_governance.ConfigError) as ctx:
            sg_core.resolve_policy({"policy": {"severity_overrides": {"FIELD_RENAME": "safe"}}})
        self.assertIn("FIELD_RENAME", str(ctx.exception))

        with self.assertRaises(schema_governance.ConfigError):
            sg_core.resolve_policy({"policy": {"waivers": [{"id": "typo", "pattern": ".", "kinds": ["FIELD_DROPPED"]}]}})

    def test_uncovered_ranges(self) -> None:
        Range = sg_core.ReservedRange
        self.assertEqual(
            sg_core.uncovered_ranges((Range(1, 10),), (Range(3, 4), Range(8, 20))),
            [Range(1, 2), Range(5, 7)],
        )
        self.assertEqual(sg_core.uncovered_ranges((Range(1, 10),), (Range(1, 5), Range(6, 10))), [])

    def test_summary_counts(self) -> None:
        records = [
            sg_core.ChangeRecord("a:A", ChangeKind.FIELD_ADDED, "safe", ""),
            sg_core.ChangeRecord("a:B", ChangeKind.FIELD_RENAMED, "ambiguous", ""),
        ]
        self.assertEqual(sg_core.summarize_records(records), {"safe": 1, "ambiguous": 1, "breaking": 0})
        self.assertEqual(sg_core.classify_records(records), "ambiguous")


if __name__ == "__main__":
    unittest.main()
