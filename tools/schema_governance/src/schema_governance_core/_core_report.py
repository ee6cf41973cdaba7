from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_lint import *  # noqa: F401,F403
from ._core_compare import *  # noqa: F401,F403

SARIF_ERROR_RULE = "SG001"
SARIF_WARNING_RULE = "SG002"
SARIF_LEVELS = {"error": "error", "warning": "warning", "breaking": "error", "ambiguous": "warning", "safe": "note"}


def print_verdict(report: dict[str, Any], verbose: bool = False) -> None:
    print(f"Governance status: {report.get('status', 'unknown')}")
    print(f"States: {' -> '.join(report.get('state_history', []))}")
    summary = report.get("summary") or {}
    counts = summary.get("changes") or {}
    print(
        "Changes: "
        f"{counts.get('breaking', 0)} breaking, {counts.get('ambiguous', 0)} ambiguous, {counts.get('safe', 0)} safe"
    )
    print(f"Lint: {summary.get('lint_errors', 0)} error(s), {summary.get('lint_warnings', 0)} warning(s)")

    committed = report.get("committed") or {}
    if committed:
        print("Committed:")
        for key, revision in committed.items():
            print(f"  - {key}@{revision[:12]}")

    sections = [
        ("Errors", [str(item) for item in report.get("errors", [])]),
        ("Blocking changes", [_format_change(item) for item in report.get("blocking", [])]),
        ("Lint errors", [_format_finding(item) for item in report.get("findings", []) if item.get("severity") == "error"]),
        ("Waived", [f"{_format_change(item)} (waiver {item.get('waiver_id')})" for item in report.get("waived", [])]),
        ("Warnings", [str(item) for item in report.get("warnings", [])]),
    ]
    if verbose:
        sections.append(("All changes", [_format_change(item) for item in report.get("changes", [])]))
        sections.append(
            ("Lint warnings", [_format_finding(item) for item in report.get("findings", []) if item.get("severity") != "error"])
        )
    for title, items in sections:
        if items:
            print(f"{title}:")
            for item in items:
                print(f"  - {item}")

    generation = report.get("generation")
    if isinstance(generation, dict):
        artifacts = generation.get("artifacts", [])
        print(f"Generation: {len(artifacts)} artifact(s), {generation.get('failed', 0)} failed")


def _format_change(item: dict[str, Any]) -> str:
    return f"[{item.get('severity')}] {item.get('kind')} {item.get('entity_path')}: {item.get('detail')}"


def _format_finding(item: dict[str, Any]) -> str:
    return f"[{item.get('severity')}] {item.get('rule')} {item.get('entity_path')}: {item.get('message')}"


def write_markdown_report(path: Path, report: dict[str, Any]) -> None:
    summary = report.get("summary") or {}
    counts = summary.get("changes") or {}
    lines: list[str] = []
    lines.append(f"# Schema Governance Report ({report.get('status', 'unknown')})")
    lines.append("")
    lines.append(f"- States: `{' -> '.join(report.get('state_history', []))}`")
    lines.append(f"- Classification: `{summary.get('classification', 'none')}`")
    lines.append(f"- Breaking changes: `{counts.get('breaking', 0)}`")
    lines.append(f"- Ambiguous changes: `{counts.get('ambiguous', 0)}`")
    lines.append(f"- Safe changes: `{counts.get('safe', 0)}`")
    lines.append(f"- Lint errors: `{summary.get('lint_errors', 0)}`")
    lines.append(f"- Waived: `{summary.get('waived', 0)}`")
    lines.append("")

    revisions = report.get("revisions") or {}
    if revisions:
        committed = report.get("committed") or {}
        lines.append("## Files")
        lines.append("")
        lines.append("| File | Revision | Committed |")
        lines.append("|---|---|---|")
        for key, revision in revisions.items():
            lines.append(f"| `{key}` | `{revision[:12]}` | {'yes' if key in committed else 'no'} |")
        lines.append("")

    changes = report.get("changes", [])
    if changes:
        lines.append("## Changes")
        lines.append("")
        lines.append("| Severity | Kind | Entity | Detail |")
        lines.append("|---|---|---|---|")
        for item in changes:
            lines.append(
                f"| {item.get('severity')} | `{item.get('kind')}` | `{item.get('entity_path')}` | {item.get('detail')} |"
            )
        lines.append("")

    findings = report.get("findings", [])
    if findings:
        lines.append("## Lint Findings")
        lines.append("")
        for item in findings:
            lines.append(f"- {_format_finding(item)}")
        lines.append("")

    for title, key in (("Waived", "waived"), ("Warnings", "warnings"), ("Errors", "errors")):
        values = report.get(key, [])
        if not values:
            continue
        lines.append(f"## {title}")
        for value in values:
            lines.append(f"- {_format_change(value) if isinstance(value, dict) else value}")
        lines.append("")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _sarif_location(entity_path: str, line: int = 1, column: int | None = None) -> dict[str, Any]:
    file_key = entity_path.split(":", 1)[0]
    region: dict[str, Any] = {"startLine": max(line, 1)}
    if column is not None:
        region["startColumn"] = max(column, 1)
    return {
        "physicalLocation": {
            "artifactLocation": {"uri": f"{file_key}{DEFINITION_SUFFIX}", "uriBaseId": "SCHEMA_ROOT"},
            "region": region,
        },
        "logicalLocations": [{"fullyQualifiedName": entity_path}],
    }


def build_sarif_results(report: dict[str, Any]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for item in report.get("parse_errors", []):
        results.append(
            {
                "ruleId": SARIF_ERROR_RULE,
                "level": "error",
                "message": {"text": str(item.get("reason"))},
                "locations": [_sarif_location(str(item.get("file_key")), int(item.get("line", 1)), int(item.get("column", 1)))],
            }
        )
    for message in get_message_list(report, "errors"):
        if message.startswith("parse error: "):
            continue
        results.append({"ruleId": SARIF_ERROR_RULE, "level": "error", "message": {"text": message}})
    for item in report.get("findings", []):
        results.append(
            {
                "ruleId": str(item.get("rule")),
                "level": SARIF_LEVELS.get(str(item.get("severity")), "warning"),
                "message": {"text": str(item.get("message"))},
                "locations": [_sarif_location(str(item.get("entity_path")))],
            }
        )
    for item in report.get("changes", []):
        results.append(
            {
                "ruleId": str(item.get("kind")),
                "level": SARIF_LEVELS.get(str(item.get("severity")), "warning"),
                "message": {"text": str(item.get("detail"))},
                "locations": [_sarif_location(str(item.get("entity_path")))],
            }
        )
    for message in get_message_list(report, "warnings"):
        results.append({"ruleId": SARIF_WARNING_RULE, "level": "warning", "message": {"text": message}})
    return results


def sarif_rules() -> list[dict[str, Any]]:
    rules: list[dict[str, Any]] = [
        {
            "id": SARIF_ERROR_RULE,
            "name": "SchemaGovernanceError",
            "shortDescription": {"text": "Schema governance error"},
            "defaultConfiguration": {"level": "error"},
        },
        {
            "id": SARIF_WARNING_RULE,
            "name": "SchemaGovernanceWarning",
            "shortDescription": {"text": "Schema governance warning"},
            "defaultConfiguration": {"level": "warning"},
        },
    ]
    for rule in LINT_RULES:
        rules.append(
            {
                "id": rule.rule_id,
                "shortDescription": {"text": rule.description},
                "defaultConfiguration": {"level": SARIF_LEVELS[rule.default_severity]},
            }
        )
    for kind, (severity, rationale) in CLASSIFICATION.items():
        rules.append(
            {
                "id": kind.value,
                "shortDescription": {"text": rationale},
                "defaultConfiguration": {"level": SARIF_LEVELS[severity]},
            }
        )
    return rules


def write_sarif_report(path: Path, results: list[dict[str, Any]]) -> None:
    payload = {
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "schema_governance",
                        "version": TOOL_VERSION,
                        "rules": sarif_rules(),
                    }
                },
                "results": results,
            }
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
