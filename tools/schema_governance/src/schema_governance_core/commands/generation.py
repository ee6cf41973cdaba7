from __future__ import annotations

import argparse
import sys

from ..core import *  # noqa: F401,F403
from .common import build_store, load_command_config, resolve_repo_root


def command_generate(args: argparse.Namespace) -> int:
    repo_root = resolve_repo_root(args)
    config = load_command_config(args, repo_root)
    coordinator = build_generation_coordinator(config, repo_root)
    if args.output_root:
        coordinator.output_root = ensure_relative_path(repo_root, args.output_root).resolve()

    with build_store(args, config, repo_root) as store:
        repository = SchemaRepository(store)
        keys = [validate_file_key(item) for item in args.file_key] if args.file_key else repository.file_keys()
        models: dict[str, SchemaFile] = {}
        revisions: dict[str, str] = {}
        for key in keys:
            baseline = repository.get_baseline(key)
            if baseline is None:
                raise SchemaGovernanceError(f"No accepted baseline for '{key}'")
            models[key] = baseline.model
            revisions[key] = baseline.revision

    report = coordinator.generate(models, revisions)
    payload = report.as_dict()
    payload["generated_at_utc"] = utc_timestamp_now()
    if args.report:
        write_json(ensure_relative_path(repo_root, args.report).resolve(), payload)

    for item in report.artifacts:
        print(f"[{item.status}] {item.generator} {item.file_key}@{item.revision[:12]}: {item.location or '-'}")
    for item in report.failures:
        print(f"generator '{item.generator}' failed for {item.file_key}: {item.detail}", file=sys.stderr)
    print(f"Generation: {len(report.artifacts)} artifact(s), {len(report.failures)} failed")
    return 1 if report.failures else 0
