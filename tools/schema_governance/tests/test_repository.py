from __future__ import annotations

import json
import tempfile
import threading
import unittest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
import schema_governance_core as schema_governance  # noqa: E402
from schema_governance_core import core as sg_core  # noqa: E402

COMMON_SCHEMA = """syntax = "v1";

message Money {
  string currency = 1;
  int64 units = 2;
}

enum Currency {
  CURRENCY_UNSPECIFIED = 0;
}
"""

INVOICE_SCHEMA = """syntax = "v1";
import "shared/common";

message Invoice {
  common.Money total = 1;
  Currency currency = 2;
}
"""


def parse(file_key: str, text: str) -> sg_core.SchemaFile:
    return schema_governance.parse_schema(file_key, text)


class BaselineStoreTests(unittest.TestCase):
    def test_commit_checks_expected_revision(self) -> None:
        with schema_governance.MemoryBaselineStore() as store:
            repository = schema_governance.SchemaRepository(store)
            first = repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
            self.assertEqual(first.sequence, 1)
            self.assertEqual(repository.get_baseline("shared/common").revision, first.revision)

            with self.assertRaises(schema_governance.ConcurrentModificationError) as ctx:
                repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
            self.assertEqual(ctx.exception.actual_revision, first.revision)

            changed = COMMON_SCHEMA.replace("int64 units = 2;", "int64 units = 2;\n  int32 nanos = 3;")
            second = repository.commit_baseline("shared/common", parse("shared/common", changed), first.revision)
            self.assertEqual(second.sequence, 2)
            self.assertEqual([item["sequence"] for item in store.history("shared/common")], [1, 2])

    def test_changeset_commit_is_all_or_nothing(self) -> None:
        with schema_governance.MemoryBaselineStore() as store:
            repository = schema_governance.SchemaRepository(store)
            current = repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
            models = {
                "billing/invoice": parse("billing/invoice", INVOICE_SCHEMA),
                "shared/common": parse("shared/common", COMMON_SCHEMA + "\nmessage Extra {\n  int32 n = 1;\n}\n"),
            }
            with self.assertRaises(schema_governance.ConcurrentModificationError):
                repository.commit_changeset(models, {"billing/invoice": None, "shared/common": "stale"})

            self.assertIsNone(repository.get_baseline("billing/invoice"))
            self.assertEqual(repository.get_baseline("shared/common").revision, current.revision)

    def test_racing_commits_adopt_exactly_one(self) -> None:
        with schema_governance.MemoryBaselineStore() as store:
            repository = schema_governance.SchemaRepository(store)
            barrier = threading.Barrier(2)
            outcomes: list[str] = []
            lock = threading.Lock()

            def attempt(extra: str) -> None:
                model = parse("shared/common", COMMON_SCHEMA + extra)
                barrier.wait()
                try:
                    repository.commit_baseline("shared/common", model, None)
                    result = "committed"
                except schema_governance.ConcurrentModificationError:
                    result = "rejected"
                with lock:
                    outcomes.append(result)

            threads = [
                threading.Thread(target=attempt, args=("\nmessage A {\n  int32 n = 1;\n}\n",)),
                threading.Thread(target=attempt, args=("\nmessage B {\n  int32 n = 1;\n}\n",)),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            self.assertEqual(sorted(outcomes), ["committed", "rejected"])
            self.assertEqual(repository.get_baseline("shared/common").sequence, 1)

    def test_store_must_be_open(self) -> None:
        store = schema_governance.MemoryBaselineStore()
        self.assertFalse(store.is_open)
        with self.assertRaises(schema_governance.SchemaGovernanceError):
            store.get("shared/common")
        with store:
            self.assertTrue(store.is_open)
            self.assertIsNone(store.get("shared/common"))
        self.assertFalse(store.is_open)

    def test_file_store_persists_snapshots_and_history(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir) / "baselines"
            with schema_governance.FileBaselineStore(root) as store:
                repository = schema_governance.SchemaRepository(store)
                first = repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
                repository.commit_baseline("billing/invoice", parse("billing/invoice", INVOICE_SCHEMA), None)

            manifest = json.loads((root / "manifest.json").read_text(encoding="utf-8"))
            self.assertEqual(sorted(manifest["files"]), ["billing/invoice", "shared/common"])
            snapshot = root / manifest["files"]["shared/common"]["snapshot"]
            self.assertTrue(snapshot.exists())

            with schema_governance.FileBaselineStore(root) as store:
                repository = schema_governance.SchemaRepository(store)
                loaded = repository.get_baseline("shared/common")
                self.assertEqual(loaded.revision, first.revision)
                self.assertEqual(loaded.model, parse("shared/common", COMMON_SCHEMA))
                self.assertEqual(repository.get_baseline("billing/invoice").dependencies, ("shared/common",))

                changed = COMMON_SCHEMA.replace("int64 units = 2;", "int64 units = 2;\n  int32 nanos = 3;")
                repository.commit_baseline("shared/common", parse("shared/common", changed), first.revision)

            with schema_governance.FileBaselineStore(root) as store:
                history = store.history("shared/common")
                self.assertEqual([item["sequence"] for item in history], [1, 2])
                self.assertEqual(store.get("shared/common").tag_history["Money"], (1, 2, 3))
            self.assertEqual(len(list((root / "snapshots" / "shared" / "common").glob("*.json"))), 2)

    def test_file_stores_on_one_directory_check_against_disk(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            changed = COMMON_SCHEMA.replace("int64 units = 2;", "int64 units = 2;\n  int32 nanos = 3;")
            with schema_governance.FileBaselineStore(root) as first, schema_governance.FileBaselineStore(root) as second:
                winner = schema_governance.SchemaRepository(first).commit_baseline(
                    "shared/common", parse("shared/common", COMMON_SCHEMA), None
                )
                loser = schema_governance.SchemaRepository(second)
                with self.assertRaises(schema_governance.ConcurrentModificationError) as ctx:
                    loser.commit_baseline("shared/common", parse("shared/common", changed), None)
                self.assertEqual(ctx.exception.actual_revision, winner.revision)
                self.assertEqual(second.get("shared/common").revision, winner.revision)

                advanced = loser.commit_baseline("shared/common", parse("shared/common", changed), winner.revision)
                self.assertEqual(advanced.sequence, 2)

            self.assertFalse((root / ".lock").exists())
            with schema_governance.FileBaselineStore(root) as store:
                self.assertEqual(store.get("shared/common").revision, advanced.revision)
                self.assertEqual([item["sequence"] for item in store.history("shared/common")], [1, 2])

    def test_closing_a_stale_file_store_keeps_other_commits(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            with schema_governance.FileBaselineStore(root) as store:
                schema_governance.SchemaRepository(store).commit_baseline(
                    "shared/common", parse("shared/common", COMMON_SCHEMA), None
                )

            stale = schema_governance.FileBaselineStore(root)
            stale.open()
            with schema_governance.FileBaselineStore(root) as other:
                schema_governance.SchemaRepository(other).commit_baseline(
                    "billing/invoice", parse("billing/invoice", INVOICE_SCHEMA), None
                )
            stale.close()

            with schema_governance.FileBaselineStore(root) as store:
                self.assertEqual(store.file_keys(), ["billing/invoice", "shared/common"])

    def test_file_store_commit_waits_for_lock(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / ".lock").write_text("4242", encoding="utf-8")
            with schema_governance.FileBaselineStore(root, lock_timeout_seconds=0.1) as store:
                with self.assertRaises(schema_governance.SchemaGovernanceError):
                    store.commit(
                        [sg_core.CommitEntry("shared/common", parse("shared/common", COMMON_SCHEMA), None)]
                    )
                self.assertIsNone(store.get("shared/common"))
            self.assertTrue((root / ".lock").exists())

    def test_file_store_rejects_unknown_manifest_version(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "manifest.json").write_text(json.dumps({"manifest_version": 99, "files": {}}), encoding="utf-8")
            with self.assertRaises(schema_governance.SchemaGovernanceError):
                schema_governance.FileBaselineStore(root).open()

    def test_create_store_kinds(self) -> None:
        self.assertIsInstance(schema_governance.create_store("memory"), schema_governance.MemoryBaselineStore)
        with self.assertRaises(schema_governance.ConfigError):
            schema_governance.create_store("sqlite", Path("."))


class SchemaRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = schema_governance.MemoryBaselineStore()
        self.store.open()
        self.repository = schema_governance.SchemaRepository(self.store)

    def tearDown(self) -> None:
        self.store.close()

    def test_link_resolves_qualified_and_unqualified_references(self) -> None:
        self.repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
        linked, errors = self.repository.link({"billing/invoice": parse("billing/invoice", INVOICE_SCHEMA)})

        self.assertEqual(errors, [])
        invoice = linked["billing/invoice"].message("Invoice")
        total = invoice.field_by_tag(1).type
        self.assertEqual((total.kind, total.file_key, total.qualifier), ("message", "shared/common", "common"))
        currency = invoice.field_by_tag(2).type
        self.assertEqual((currency.kind, currency.file_key), ("enum", "shared/common"))
        self.assertEqual(linked["billing/invoice"].pending_refs(), [])

    def test_link_prefers_candidates_over_baselines(self) -> None:
        self.repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
        candidate_common = parse("shared/common", 'syntax = "v1";\nmessage Other {\n  int32 n = 1;\n}\n')
        _, errors = self.repository.link(
            {"billing/invoice": parse("billing/invoice", INVOICE_SCHEMA)},
            context={"shared/common": candidate_common},
        )
        reasons = sorted(item.reason for item in errors)
        self.assertEqual(
            reasons,
            ["type 'Money' is not declared in 'shared/common'", "unknown type 'Currency'"],
        )
        self.assertEqual(errors[0].file_key, "billing/invoice")

    def test_link_reports_unknown_imports_and_ambiguity(self) -> None:
        _, errors = self.repository.link({"billing/invoice": parse("billing/invoice", INVOICE_SCHEMA)})
        self.assertIn("imports unknown file 'shared/common'", [item.reason for item in errors])

        ambiguous = """syntax = "v1";
import "shared/common";
import "legacy/money";

message Invoice {
  Money total = 1;
}
"""
        models = {
            "shared/common": parse("shared/common", COMMON_SCHEMA),
            "legacy/money": parse("legacy/money", 'message Money {\n  int32 cents = 1;\n}\n'),
            "billing/invoice": parse("billing/invoice", ambiguous),
        }
        _, errors = self.repository.link(models)
        self.assertEqual(len(errors), 1)
        self.assertIn("ambiguous type 'Money'", errors[0].reason)
        self.assertEqual(errors[0].entity_path, "billing/invoice:Invoice.total#1")

    def test_dependency_graph_cycles_and_closure(self) -> None:
        graph = {
            "shared/common": (),
            "billing/invoice": ("shared/common",),
            "billing/report": ("billing/invoice",),
            "auth/account": (),
        }
        self.assertIsNone(sg_core.find_cycle(graph))
        self.assertEqual(
            sg_core.affected_closure(["shared/common"], graph),
            ["billing/invoice", "billing/report"],
        )

        cyclic = dict(graph)
        cyclic["shared/common"] = ("billing/report",)
        with self.assertRaises(schema_governance.DependencyCycleError) as ctx:
            sg_core.check_acyclic(cyclic)
        cycle = ctx.exception.cycle
        self.assertEqual(cycle[0], cycle[-1])
        self.assertEqual(set(cycle), {"shared/common", "billing/invoice", "billing/report"})

    def test_repository_graph_uses_overlay_and_domains(self) -> None:
        self.repository.commit_baseline("shared/common", parse("shared/common", COMMON_SCHEMA), None)
        self.repository.commit_baseline("billing/invoice", parse("billing/invoice", INVOICE_SCHEMA), None)

        self.assertEqual(self.repository.dependents_of("shared/common"), ["billing/invoice"])
        self.assertEqual(self.repository.domains(), ["billing", "shared"])
        self.assertEqual(self.repository.files_in_domain("billing"), ["billing/invoice"])

        overlay = {"shared/common": parse("shared/common", 'import "billing/invoice";\nmessage Money {\n  int32 n = 1;\n}\n')}
        with self.assertRaises(schema_governance.DependencyCycleError):
            self.repository.check_acyclic(overlay)


if __name__ == "__main__":
    unittest.main()
