from __future__ import annotations

import argparse
import sys

from ..core import *  # noqa: F401,F403
from .common import (
    build_store,
    load_command_config,
    read_definitions,
    resolve_command_schema_root,
    resolve_repo_root,
)


def parse_definitions(files: dict[str, str]) -> tuple[dict[str, SchemaFile], list[ParseError]]:
    models: dict[str, SchemaFile] = {}
    errors: list[ParseError] = []
    for key, text in sorted(files.items()):
        try:
            models[key] = parse_schema(key, text)
        except ParseError as exc:
            errors.append(exc)
    return models, errors


def command_parse(args: argparse.Namespace) -> int:
    repo_root = resolve_repo_root(args)
    config = load_command_config(args, repo_root)
    schema_root = resolve_command_schema_root(args, config, repo_root)
    models, errors = parse_definitions(read_definitions(args.files, schema_root, repo_root))

    for error in errors:
        print(f"parse error: {error}", file=sys.stderr)
    for key, model in sorted(models.items()):
        if args.render:
            print(render_schema_file(model), end="")
            continue
        print(
            f"{key}: {len(model.messages)} message(s), {len(model.enums)} enum(s), "
            f"{len(model.services)} service(s), {len(model.pending_refs())} pending reference(s)"
        )

    if args.output:
        write_json(
            ensure_relative_path(repo_root, args.output).resolve(),
            {
                "tool_version": TOOL_VERSION,
                "files": {key: model_to_dict(model) for key, model in sorted(models.items())},
                "errors": [item.as_dict() for item in errors],
            },
        )
    return 1 if errors else 0


def command_lint(args: argparse.Namespace) -> int:
    repo_root = resolve_repo_root(args)
    config = load_command_config(args, repo_root)
    schema_root = resolve_command_schema_root(args, config, repo_root)
    lint_config = resolve_lint_config(config)
    models, parse_errors = parse_definitions(read_definitions(args.files, schema_root, repo_root))

    errors = [f"parse error: {item}" for item in parse_errors]
    with build_store(args, config, repo_root) as store:
        linked, resolution_errors = SchemaRepository(store).link(models)
    errors.extend(f"resolution error: {item}" for item in resolution_errors)

    findings: list[LintFinding] = []
    for key in sorted(linked):
        findings.extend(lint_model(linked[key], lint_config))

    for item in findings:
        print(f"[{item.severity}] {item.rule} {item.entity_path}: {item.message}")
    for message in errors:
        print(message, file=sys.stderr)
    error_count = len(lint_errors(findings))
    print(f"Lint: {error_count} error(s), {len(findings) - error_count} warning(s)")

    if args.report:
        write_json(
            ensure_relative_path(repo_root, args.report).resolve(),
            {
                "tool_version": TOOL_VERSION,
                "findings": [item.as_dict() for item in findings],
                "errors": errors,
            },
        )
    if errors or error_count:
        return 1
    if args.fail_on_warnings and findings:
        return 1
    return 0
