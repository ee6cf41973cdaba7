from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field as dataclass_field

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403
from ._core_parser import *  # noqa: F401,F403
from ._core_config import *  # noqa: F401,F403
from ._core_repository import *  # noqa: F401,F403
from ._core_lint import *  # noqa: F401,F403
from ._core_policy import *  # noqa: F401,F403
from ._core_compare import *  # noqa: F401,F403
from ._core_generation import *  # noqa: F401,F403

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    RECEIVED = "RECEIVED"
    PARSED = "PARSED"
    CHECKED = "CHECKED"
    PASSED = "PASSED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = {RunState.PASSED, RunState.FAILED, RunState.CANCELLED}


@dataclass(frozen=True)
class Changeset:
    """Candidate definition texts keyed by file key.

    ``intended`` names the files the caller wants accepted; the remaining
    files only provide link context and are never linted, compared or
    committed.
    """

    files: dict[str, str]
    intended: frozenset[str] | None = None

    def __post_init__(self) -> None:
        if not self.files:
            raise ChangesetError("Changeset contains no files")
        for key in self.files:
            validate_file_key(key)
        intended = frozenset(self.files) if self.intended is None else frozenset(self.intended)
        unknown = sorted(intended - set(self.files))
        if unknown:
            raise ChangesetError(f"Intended files are not part of the changeset: {', '.join(unknown)}")
        if not intended:
            raise ChangesetError("Changeset names no intended files")
        object.__setattr__(self, "intended", intended)

    @property
    def intended_keys(self) -> list[str]:
        return sorted(self.intended or ())

    @property
    def context_keys(self) -> list[str]:
        return sorted(set(self.files) - set(self.intended or ()))


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class Verdict:
    state: RunState = RunState.RECEIVED
    state_history: list[str] = dataclass_field(default_factory=list)
    findings: list[LintFinding] = dataclass_field(default_factory=list)
    changes: list[ChangeRecord] = dataclass_field(default_factory=list)
    blocking: list[ChangeRecord] = dataclass_field(default_factory=list)
    waived: list[dict[str, Any]] = dataclass_field(default_factory=list)
    parse_errors: list[dict[str, Any]] = dataclass_field(default_factory=list)
    errors: list[str] = dataclass_field(default_factory=list)
    warnings: list[str] = dataclass_field(default_factory=list)
    revisions: dict[str, str] = dataclass_field(default_factory=dict)
    committed: dict[str, str] = dataclass_field(default_factory=dict)
    generation: GenerationReport | None = None

    @property
    def status(self) -> str:
        return self.state.value

    @property
    def passed(self) -> bool:
        return self.state is RunState.PASSED

    @property
    def lint_errors(self) -> list[LintFinding]:
        return lint_errors(self.findings)

    def as_dict(self) -> dict[str, Any]:
        return {
            "tool_version": TOOL_VERSION,
            "status": self.status,
            "state_history": list(self.state_history),
            "summary": {
                "changes": summarize_records(self.changes),
                "classification": classify_records(self.changes),
                "lint_errors": len(self.lint_errors),
                "lint_warnings": len(self.findings) - len(self.lint_errors),
                "blocking": len(self.blocking),
                "waived": len(self.waived),
            },
            "findings": [item.as_dict() for item in self.findings],
            "changes": [item.as_dict() for item in self.changes],
            "blocking": [item.as_dict() for item in self.blocking],
            "waived": list(self.waived),
            "parse_errors": list(self.parse_errors),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "revisions": dict(sorted(self.revisions.items())),
            "committed": dict(sorted(self.committed.items())),
            "generation": self.generation.as_dict() if self.generation is not None else None,
        }


class GovernanceController:
    """Drives one changeset through parse, link, check, decide and commit."""

    def __init__(
        self,
        repository: SchemaRepository,
        config: dict[str, Any] | None = None,
        generation: GenerationCoordinator | None = None,
        *,
        policy: GovernancePolicy | None = None,
        lint_config: LintConfig | None = None,
        max_workers: int | None = None,
    ) -> None:
        config = config or {}
        self.repository = repository
        self.generation = generation
        self.policy = policy if policy is not None else resolve_policy(config)
        self.lint_config = lint_config if lint_config is not None else resolve_lint_config(config)
        self.max_workers = max_workers or resolve_max_workers(config)

    def _transition(self, verdict: Verdict, state: RunState) -> None:
        if verdict.state in TERMINAL_STATES and verdict.state_history:
            raise SchemaGovernanceError(f"Run already finished in state {verdict.state.value}")
        verdict.state = state
        verdict.state_history.append(state.value)
        logger.debug(f"Governance run entered {state.value}")

    def _checkpoint(self, cancel_token: CancelToken | None) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            raise GovernanceCancelled("Governance run cancelled before commit")

    def _parse_all(self, changeset: Changeset) -> tuple[dict[str, SchemaFile], list[ParseError]]:
        models: dict[str, SchemaFile] = {}
        errors: list[ParseError] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(parse_schema, key, text): key for key, text in sorted(changeset.files.items())
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    models[key] = future.result()
                except ParseError as exc:
                    errors.append(exc)
        errors.sort(key=lambda item: (item.location.file_key, item.location.line, item.location.column))
        return models, errors

    def _check_all(
        self,
        linked: dict[str, SchemaFile],
        baselines: dict[str, Baseline | None],
        lint_keys: list[str],
        compare_keys: list[str],
    ) -> tuple[list[LintFinding], list[ChangeRecord]]:
        results: dict[tuple[str, str], Any] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {}
            for key in lint_keys:
                futures[executor.submit(lint_model, linked[key], self.lint_config)] = (key, "lint")
            for key in compare_keys:
                futures[executor.submit(compare_models, baselines[key], linked[key], self.policy)] = (key, "compare")
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        findings: list[LintFinding] = []
        changes: list[ChangeRecord] = []
        for key in lint_keys:
            findings.extend(results[(key, "lint")])
        for key in compare_keys:
            changes.extend(results[(key, "compare")])
        return findings, changes

    def _context_models(self, changeset: Changeset, models: dict[str, SchemaFile]) -> dict[str, SchemaFile]:
        """Link targets for non-intended files: the accepted baseline wins over candidate text."""
        context: dict[str, SchemaFile] = {}
        for key in changeset.context_keys:
            baseline = self.repository.get_baseline(key)
            if baseline is not None:
                context[key] = baseline.model
            elif key in models:
                context[key] = models[key]
        return context

    def _check_dependents(
        self,
        linked: dict[str, SchemaFile],
        changed_keys: list[str],
        graph: DependencyGraph,
        skip: set[str],
    ) -> list[ChangeRecord]:
        records: list[ChangeRecord] = []
        for dependent in self.repository.affected_closure(changed_keys, graph):
            if dependent in skip:
                continue
            baseline = self.repository.get_baseline(dependent)
            if baseline is None:
                continue
            _, errors = self.repository.link({dependent: baseline.model}, context=linked)
            for error in errors:
                records.append(dependent_break_record(dependent, error, self.policy))
        return records

    def _fail(self, verdict: Verdict) -> Verdict:
        self._transition(verdict, RunState.FAILED)
        logger.info(f"Governance run FAILED ({len(verdict.errors)} error(s), {len(verdict.blocking)} blocking change(s))")
        return verdict

    def run(
        self,
        changeset: Changeset,
        cancel_token: CancelToken | None = None,
        *,
        dry_run: bool = False,
    ) -> Verdict:
        verdict = Verdict()
        self._transition(verdict, RunState.RECEIVED)
        try:
            committed = self._run(changeset, verdict, cancel_token, dry_run)
        except GovernanceCancelled as exc:
            verdict.warnings.append(str(exc))
            self._transition(verdict, RunState.CANCELLED)
            logger.info("Governance run CANCELLED")
            return verdict

        if committed and self.generation is not None and verdict.passed:
            verdict.generation = self.generation.generate(committed, verdict.committed)
        return verdict

    def _run(
        self,
        changeset: Changeset,
        verdict: Verdict,
        cancel_token: CancelToken | None,
        dry_run: bool,
    ) -> dict[str, SchemaFile]:
        self._checkpoint(cancel_token)
        models, parse_errors = self._parse_all(changeset)
        if parse_errors:
            verdict.parse_errors = [item.as_dict() for item in parse_errors]
            verdict.errors.extend(f"parse error: {item}" for item in parse_errors)
        else:
            self._transition(verdict, RunState.PARSED)

        # Files that failed to parse drop out; the rest are still linked, linted and compared.
        self._checkpoint(cancel_token)
        intended = [key for key in changeset.intended_keys if key in models]
        candidates = {key: models[key] for key in intended}
        context = self._context_models(changeset, models)
        graph: DependencyGraph | None
        try:
            graph = self.repository.check_acyclic({**context, **candidates})
        except DependencyCycleError as exc:
            verdict.errors.append(f"integrity error: {exc}")
            graph = None

        if graph is None:
            linked = dict(candidates)
            resolved: list[str] = []
        else:
            linked, resolution_errors = self.repository.link(candidates, context=context)
            verdict.errors.extend(f"resolution error: {item}" for item in resolution_errors)
            unresolved = {item.file_key for item in resolution_errors}
            resolved = [key for key in intended if key not in unresolved]

        baselines = {key: self.repository.get_baseline(key) for key in intended}
        verdict.revisions = {key: revision_id(linked[key]) for key in resolved}
        changed_keys = [
            key
            for key in resolved
            if baselines[key] is None or baselines[key].revision != verdict.revisions[key]
        ]

        self._checkpoint(cancel_token)
        findings, changes = self._check_all(linked, baselines, intended, resolved)
        if graph is not None:
            resolved_models = {key: linked[key] for key in resolved}
            changes.extend(self._check_dependents(resolved_models, changed_keys, graph, set(changeset.intended_keys)))
        verdict.findings = findings
        verdict.changes = changes
        if not parse_errors:
            self._transition(verdict, RunState.CHECKED)

        blocking_severities = self.policy.blocking_severities()
        candidates_blocking = [item for item in changes if item.severity in blocking_severities]
        kept, waived, waiver_warnings = apply_waivers(candidates_blocking, self.policy.waivers)
        verdict.blocking = kept
        verdict.waived = waived
        verdict.warnings.extend(waiver_warnings)
        if verdict.errors or verdict.lint_errors or kept:
            self._fail(verdict)
            return {}

        self._checkpoint(cancel_token)
        to_commit = {key: linked[key] for key in changed_keys}
        if dry_run:
            verdict.warnings.append("dry run: no baselines committed")
            self._transition(verdict, RunState.PASSED)
            return {}
        try:
            created = self.repository.commit_changeset(
                to_commit,
                {key: (baselines[key].revision if baselines[key] is not None else None) for key in to_commit},
            )
        except ConcurrentModificationError as exc:
            verdict.errors.append(f"concurrency error: {exc}")
            self._fail(verdict)
            return {}
        verdict.committed = {item.file_key: item.revision for item in created}
        self._transition(verdict, RunState.PASSED)
        logger.info(f"Governance run PASSED; committed {len(created)} file(s)")
        return to_commit
