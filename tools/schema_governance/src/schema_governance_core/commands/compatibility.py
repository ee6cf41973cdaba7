from __future__ import annotations

import argparse
import sys

from ..core import *  # noqa: F401,F403
from .common import (
    build_store,
    load_command_config,
    read_all_definitions,
    read_definitions,
    resolve_command_schema_root,
    resolve_repo_root,
    write_requested_reports,
)


def _link_single(repository: SchemaRepository, model: SchemaFile) -> SchemaFile:
    linked, errors = repository.link({model.key: model})
    if errors:
        raise ResolutionError(errors[0].file_key, errors[0].entity_path, errors[0].reason)
    return linked[model.key]


def command_diff(args: argparse.Namespace) -> int:
    repo_root = resolve_repo_root(args)
    config = load_command_config(args, repo_root)
    schema_root = resolve_command_schema_root(args, config, repo_root)
    policy = resolve_policy(config)

    candidate_path = ensure_relative_path(repo_root, args.candidate).resolve()
    file_key = validate_file_key(args.file_key) if args.file_key else file_key_from_path(candidate_path, schema_root)
    candidate = parse_schema(file_key, read_text(candidate_path))

    with build_store(args, config, repo_root) as store:
        repository = SchemaRepository(store)
        candidate = _link_single(repository, candidate)
        if args.baseline:
            previous_model = parse_schema(file_key, read_text(ensure_relative_path(repo_root, args.baseline).resolve()))
            baseline = build_baseline(file_key, _link_single(repository, previous_model), None)
        else:
            baseline = repository.get_baseline(file_key)

    records = compare_models(baseline, candidate, policy)
    blocking_severities = policy.blocking_severities()
    blocking = [item for item in records if item.severity in blocking_severities]
    kept, waived, warnings = apply_waivers(blocking, policy.waivers)

    report = {
        "tool_version": TOOL_VERSION,
        "status": "FAILED" if kept else "PASSED",
        "file_key": file_key,
        "baseline_revision": baseline.revision if baseline is not None else None,
        "candidate_revision": revision_id(candidate),
        "summary": {
            "changes": summarize_records(records),
            "classification": classify_records(records),
            "blocking": len(kept),
            "waived": len(waived),
        },
        "changes": [item.as_dict() for item in records],
        "blocking": [item.as_dict() for item in kept],
        "waived": waived,
        "warnings": warnings,
        "errors": [],
    }
    write_requested_reports(args, repo_root, report)

    print(f"Compatibility of {file_key}: {report['summary']['classification']}")
    for item in records:
        print(f"  [{item.severity}] {item.kind.value} {item.entity_path}: {item.detail}")
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return 1 if kept else 0


def command_govern(args: argparse.Namespace) -> int:
    repo_root = resolve_repo_root(args)
    config = load_command_config(args, repo_root)
    schema_root = resolve_command_schema_root(args, config, repo_root)

    intended = read_definitions(args.files, schema_root, repo_root) if args.files else {}
    if args.all:
        files = read_all_definitions(schema_root)
        files.update(intended)
        intended_keys = set(intended) if intended else set(files)
    else:
        if not intended:
            raise ChangesetError("govern needs definition files or --all")
        files = dict(intended)
        files.update(
            {key: text for key, text in read_definitions(args.context or [], schema_root, repo_root).items() if key not in intended}
        )
        intended_keys = set(intended)

    generation = None if args.no_generate else build_generation_coordinator(config, repo_root)
    with build_store(args, config, repo_root) as store:
        controller = GovernanceController(SchemaRepository(store), config, generation)
        verdict = controller.run(Changeset(files=files, intended=frozenset(intended_keys)), dry_run=args.dry_run)

    report = verdict.as_dict()
    write_requested_reports(args, repo_root, report)
    print_verdict(report, verbose=bool(args.details))
    return 0 if verdict.passed else 1
