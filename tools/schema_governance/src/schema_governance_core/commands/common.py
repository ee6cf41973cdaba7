from __future__ import annotations

import argparse

from ..core import *  # noqa: F401,F403


def resolve_repo_root(args: argparse.Namespace) -> Path:
    return Path(getattr(args, "repo_root", None) or ".").resolve()


def load_command_config(args: argparse.Namespace, repo_root: Path) -> dict[str, Any]:
    config_path = getattr(args, "config", None)
    if not config_path:
        return {}
    return load_config(ensure_relative_path(repo_root, config_path).resolve())


def resolve_command_schema_root(args: argparse.Namespace, config: dict[str, Any], repo_root: Path) -> Path:
    override = getattr(args, "schema_root", None)
    if override:
        return ensure_relative_path(repo_root, override).resolve()
    return resolve_schema_root(config, repo_root).resolve()


def build_store(args: argparse.Namespace, config: dict[str, Any], repo_root: Path) -> BaselineStore:
    kind, path = resolve_store_settings(config, repo_root)
    override = getattr(args, "store", None)
    if override:
        kind, path = "file", ensure_relative_path(repo_root, override)
    return create_store(kind, path.resolve())


def read_definitions(paths: list[str], schema_root: Path, repo_root: Path) -> dict[str, str]:
    files: dict[str, str] = {}
    for raw in paths:
        path = ensure_relative_path(repo_root, raw).resolve()
        key = file_key_from_path(path, schema_root)
        if key in files:
            raise ChangesetError(f"Definition '{raw}' maps to duplicate file key '{key}'")
        files[key] = read_text(path)
    return files


def read_all_definitions(schema_root: Path) -> dict[str, str]:
    return {file_key_from_path(path, schema_root): read_text(path) for path in iter_definition_files(schema_root)}


def write_requested_reports(args: argparse.Namespace, repo_root: Path, report: dict[str, Any]) -> None:
    if getattr(args, "report", None):
        write_json(ensure_relative_path(repo_root, args.report).resolve(), report)
    if getattr(args, "markdown_report", None):
        write_markdown_report(ensure_relative_path(repo_root, args.markdown_report).resolve(), report)
    if getattr(args, "sarif_report", None):
        write_sarif_report(ensure_relative_path(repo_root, args.sarif_report).resolve(), build_sarif_results(report))
