from .core import (
    Baseline,
    BaselineStore,
    CancelToken,
    ChangeKind,
    ChangeRecord,
    Changeset,
    ChangesetError,
    ConcurrentModificationError,
    ConfigError,
    DependencyCycleError,
    FileBaselineStore,
    GenerationCoordinator,
    GovernanceCancelled,
    GovernanceController,
    GovernancePolicy,
    LintConfig,
    LintFinding,
    MemoryBaselineStore,
    ParseError,
    ResolutionError,
    RunState,
    SchemaFile,
    SchemaGovernanceError,
    SchemaRepository,
    Verdict,
    compare_models,
    create_store,
    lint_model,
    load_config,
    parse_schema,
    render_schema_file,
    revision_id,
)

__all__ = [
    "Baseline",
    "BaselineStore",
    "CancelToken",
    "ChangeKind",
    "ChangeRecord",
    "Changeset",
    "ChangesetError",
    "ConcurrentModificationError",
    "ConfigError",
    "DependencyCycleError",
    "FileBaselineStore",
    "GenerationCoordinator",
    "GovernanceCancelled",
    "GovernanceController",
    "GovernancePolicy",
    "LintConfig",
    "LintFinding",
    "MemoryBaselineStore",
    "ParseError",
    "ResolutionError",
    "RunState",
    "SchemaFile",
    "SchemaGovernanceError",
    "SchemaRepository",
    "Verdict",
    "compare_models",
    "create_store",
    "lint_model",
    "load_config",
    "parse_schema",
    "render_schema_file",
    "revision_id",
]
