from __future__ import annotations

import argparse
import json

from ..core import *  # noqa: F401,F403
from .common import build_store, load_command_config, resolve_repo_root


def _baseline_details(repository: SchemaRepository, file_key: str) -> dict[str, Any]:
    baseline = repository.get_baseline(file_key)
    if baseline is None:
        raise SchemaGovernanceError(f"No accepted baseline for '{file_key}'")
    return {
        "file_key": file_key,
        "domain": domain_of(file_key),
        "revision": baseline.revision,
        "sequence": baseline.sequence,
        "committed_at_utc": baseline.committed_at_utc,
        "dependencies": list(baseline.dependencies),
        "dependents": repository.dependents_of(file_key),
        "tag_history": {name: list(tags) for name, tags in sorted(baseline.tag_history.items())},
        "history": repository.store.history(file_key),
    }


def command_baselines(args: argparse.Namespace) -> int:
    repo_root = resolve_repo_root(args)
    config = load_command_config(args, repo_root)

    with build_store(args, config, repo_root) as store:
        repository = SchemaRepository(store)
        if args.file_key:
            file_key = validate_file_key(args.file_key)
            details = _baseline_details(repository, file_key)
            if args.render:
                print(render_schema_file(repository.get_baseline(file_key).model), end="")
                return 0
            if args.json:
                print(json.dumps(details, indent=2, sort_keys=True))
                return 0
            print(f"{file_key}@{details['revision'][:12]} (#{details['sequence']}, {details['committed_at_utc']})")
            print(f"Dependencies: {', '.join(details['dependencies']) or '-'}")
            print(f"Dependents: {', '.join(details['dependents']) or '-'}")
            print("History:")
            for entry in details["history"]:
                print(f"  - #{entry['sequence']} {entry['revision'][:12]} {entry['committed_at_utc']}")
            return 0

        keys = repository.files_in_domain(args.domain) if args.domain else repository.file_keys()
        manifest = store.manifest()

    if args.json:
        print(json.dumps({key: manifest[key] for key in keys}, indent=2, sort_keys=True))
        return 0
    if not keys:
        print("No accepted baselines.")
        return 0
    for key in keys:
        entry = manifest[key]
        print(f"{key}@{entry['revision'][:12]} (#{entry['sequence']})")
    return 0
