from __future__ import annotations

import argparse
import logging
import sys

from .core import SchemaGovernanceError
from .commands import (
    command_baselines,
    command_diff,
    command_generate,
    command_govern,
    command_lint,
    command_parse,
)


def _add_repository_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--repo-root",
        default=".",
        help="Repository root used to resolve relative paths (default: current directory).",
    )
    parser.add_argument("--config", help="Path to schema governance JSON config.")
    parser.add_argument("--schema-root", help="Directory holding .schema definitions (overrides config schema_root).")
    parser.add_argument("--store", help="Baseline store directory (overrides config store; always a file store).")


def _add_report_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--report", help="Write JSON report to this path.")
    parser.add_argument("--markdown-report", help="Write Markdown report to this path.")
    parser.add_argument("--sarif-report", help="Write SARIF 2.1.0 report to this path.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schema_governance",
        description="Schema registry with lint and breaking-change governance (parse/lint/diff/govern/generate).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    parse = sub.add_parser("parse", help="Parse definition files and report their structure.")
    _add_repository_arguments(parse)
    parse.add_argument("files", nargs="+", help="Definition files under the schema root.")
    parse.add_argument("--render", action="store_true", help="Print the canonical rendering of each file.")
    parse.add_argument("--output", help="Write the parsed models as JSON to this path.")
    parse.set_defaults(func=command_parse)

    lint = sub.add_parser("lint", help="Lint definition files after linking against accepted baselines.")
    _add_repository_arguments(lint)
    lint.add_argument("files", nargs="+", help="Definition files under the schema root.")
    lint.add_argument("--report", help="Write JSON lint report to this path.")
    lint.add_argument("--fail-on-warnings", action="store_true", help="Exit non-zero when warnings are found.")
    lint.set_defaults(func=command_lint)

    diff = sub.add_parser("diff", help="Classify changes of one definition against its baseline.")
    _add_repository_arguments(diff)
    diff.add_argument("candidate", help="Candidate definition file.")
    diff.add_argument("--baseline", help="Compare against this definition file instead of the accepted baseline.")
    diff.add_argument("--file-key", help="File key of the candidate (default: derived from its path).")
    _add_report_arguments(diff)
    diff.set_defaults(func=command_diff)

    govern = sub.add_parser("govern", help="Run a changeset through lint, compatibility checks and commit.")
    _add_repository_arguments(govern)
    govern.add_argument("files", nargs="*", help="Definition files the changeset intends to accept.")
    govern.add_argument(
        "--context",
        action="append",
        default=[],
        help="Definition file used only to resolve references (repeatable).",
    )
    govern.add_argument(
        "--all",
        action="store_true",
        help="Include every definition under the schema root (intended when no files are given).",
    )
    govern.add_argument("--dry-run", action="store_true", help="Evaluate without committing baselines.")
    govern.add_argument("--no-generate", action="store_true", help="Skip downstream generation after commit.")
    govern.add_argument("--details", action="store_true", help="Print every change and lint warning.")
    _add_report_arguments(govern)
    govern.set_defaults(func=command_govern)

    baselines = sub.add_parser("baselines", help="List accepted baselines or show one in detail.")
    _add_repository_arguments(baselines)
    baselines.add_argument("--file-key", help="Show details and history of one file key.")
    baselines.add_argument("--domain", help="List only file keys in this domain.")
    baselines.add_argument("--render", action="store_true", help="With --file-key, print the accepted definition.")
    baselines.add_argument("--json", action="store_true", help="Print JSON instead of text.")
    baselines.set_defaults(func=command_baselines)

    generate = sub.add_parser("generate", help="Re-run generators for accepted baselines.")
    _add_repository_arguments(generate)
    generate.add_argument("--file-key", action="append", default=[], help="File key to generate (repeatable).")
    generate.add_argument("--output-root", help="Override generation output root.")
    generate.add_argument("--report", help="Write JSON generation report to this path.")
    generate.set_defaults(func=command_generate)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        return int(args.func(args))
    except SchemaGovernanceError as exc:
        print(f"schema_governance error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
