from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Protocol

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403
from ._core_config import *  # noqa: F401,F403

logger = logging.getLogger(__name__)

MODEL_DESCRIPTOR_NAME = "model.json"
DEFAULT_GENERATOR_TIMEOUT_SECONDS = 300.0


class SchemaGenerator(Protocol):
    name: str

    def generate(self, model: SchemaFile, output_dir: Path) -> Path:
        ...


@dataclass(frozen=True)
class GeneratorSpec:
    name: str
    command: tuple[str, ...]
    enabled: bool = True
    timeout_seconds: float = DEFAULT_GENERATOR_TIMEOUT_SECONDS


@dataclass(frozen=True)
class ArtifactRecord:
    generator: str
    file_key: str
    revision: str
    status: str
    location: str | None
    detail: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "generator": self.generator,
            "file_key": self.file_key,
            "revision": self.revision,
            "status": self.status,
            "location": self.location,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class GenerationReport:
    output_root: str
    artifacts: tuple[ArtifactRecord, ...]

    @property
    def failures(self) -> list[ArtifactRecord]:
        return [item for item in self.artifacts if item.status == "failed"]

    def as_dict(self) -> dict[str, Any]:
        return {
            "output_root": self.output_root,
            "artifacts": [item.as_dict() for item in self.artifacts],
            "failed": len(self.failures),
        }


def normalize_generator_entries(config: dict[str, Any]) -> list[GeneratorSpec]:
    section = config_section(config, "generation")
    raw = section.get("generators")
    if raw is None:
        return []
    validate_generation_object(section, "config.generation")
    out: list[GeneratorSpec] = []
    for entry in raw:
        command = entry["command"]
        tokens = shlex.split(command) if isinstance(command, str) else [str(item) for item in command]
        out.append(
            GeneratorSpec(
                name=str(entry["name"]),
                command=tuple(tokens),
                enabled=bool(entry.get("enabled", True)),
                timeout_seconds=float(entry.get("timeout_seconds") or DEFAULT_GENERATOR_TIMEOUT_SECONDS),
            )
        )
    return out


def render_command(template: tuple[str, ...], replacements: dict[str, str]) -> list[str]:
    rendered: list[str] = []
    for token in template:
        current = token
        for key, value in replacements.items():
            current = current.replace(key, value)
        if current:
            rendered.append(current)
    return rendered


def write_model_descriptor(output_root: Path, file_key: str, revision: str, model: SchemaFile) -> Path:
    path = output_root / file_key / revision / MODEL_DESCRIPTOR_NAME
    write_text_atomic(
        path,
        dump_json(
            {
                "tool_version": TOOL_VERSION,
                "file_key": file_key,
                "revision": revision,
                "model": model_to_dict(model),
            }
        ),
    )
    return path


class GenerationCoordinator:
    """Hands accepted, linked models to downstream generators.

    Failures are captured as ArtifactRecords; nothing raised here can undo a
    baseline that has already been committed.
    """

    def __init__(
        self,
        output_root: Path,
        repo_root: Path | None = None,
        generators: list[GeneratorSpec] | None = None,
    ) -> None:
        self.output_root = output_root
        self.repo_root = repo_root or Path.cwd()
        self.external = list(generators or [])
        self.registered: list[SchemaGenerator] = []

    def register(self, generator: SchemaGenerator) -> None:
        names = {item.name for item in self.external} | {item.name for item in self.registered}
        if generator.name in names:
            raise ConfigError(f"Generator '{generator.name}' is already registered")
        self.registered.append(generator)

    def generator_names(self) -> list[str]:
        return [item.name for item in self.external if item.enabled] + [item.name for item in self.registered]

    def _run_external(
        self, spec: GeneratorSpec, file_key: str, revision: str, descriptor: Path
    ) -> ArtifactRecord:
        output_dir = descriptor.parent / spec.name
        output_dir.mkdir(parents=True, exist_ok=True)
        command = render_command(
            spec.command,
            {
                "{model}": str(descriptor),
                "{output}": str(output_dir),
                "{file_key}": file_key,
                "{revision}": revision,
                "{repo_root}": str(self.repo_root),
            },
        )
        printable = " ".join(shlex.quote(item) for item in command)
        logger.debug(f"Running generator '{spec.name}' for {file_key}: {printable}")
        try:
            proc = subprocess.run(command, capture_output=True, text=True, timeout=spec.timeout_seconds)
        except subprocess.TimeoutExpired:
            return ArtifactRecord(
                spec.name, file_key, revision, "failed", str(output_dir),
                f"timed out after {spec.timeout_seconds:g}s: {printable}",
            )
        except OSError as exc:
            return ArtifactRecord(spec.name, file_key, revision, "failed", None, f"unable to start {printable}: {exc}")
        if proc.returncode != 0:
            detail = proc.stderr.strip() or proc.stdout.strip() or f"exit code {proc.returncode}"
            return ArtifactRecord(spec.name, file_key, revision, "failed", str(output_dir), detail)
        return ArtifactRecord(spec.name, file_key, revision, "ok", str(output_dir), proc.stdout.strip())

    def _run_registered(
        self, generator: SchemaGenerator, model: SchemaFile, revision: str, descriptor: Path
    ) -> ArtifactRecord:
        output_dir = descriptor.parent / generator.name
        output_dir.mkdir(parents=True, exist_ok=True)
        try:
            location = generator.generate(model, output_dir)
        except Exception as exc:
            logger.warning(f"Generator '{generator.name}' failed for {model.key}: {exc}")
            return ArtifactRecord(generator.name, model.key, revision, "failed", str(output_dir), str(exc))
        return ArtifactRecord(generator.name, model.key, revision, "ok", str(location), "")

    def generate(self, models: dict[str, SchemaFile], revisions: dict[str, str]) -> GenerationReport:
        artifacts: list[ArtifactRecord] = []
        for file_key in sorted(models):
            model = models[file_key]
            revision = revisions.get(file_key) or revision_id(model)
            try:
                descriptor = write_model_descriptor(self.output_root, file_key, revision, model)
            except OSError as exc:
                artifacts.append(
                    ArtifactRecord("model-descriptor", file_key, revision, "failed", None, str(exc))
                )
                continue
            artifacts.append(
                ArtifactRecord("model-descriptor", file_key, revision, "ok", str(descriptor), "")
            )
            for spec in self.external:
                if not spec.enabled:
                    artifacts.append(ArtifactRecord(spec.name, file_key, revision, "skipped", None, "disabled"))
                    continue
                artifacts.append(self._run_external(spec, file_key, revision, descriptor))
            for generator in self.registered:
                artifacts.append(self._run_registered(generator, model, revision, descriptor))

        report = GenerationReport(output_root=str(self.output_root), artifacts=tuple(artifacts))
        if report.failures:
            logger.warning(f"{len(report.failures)} generation step(s) failed")
        return report


def build_generation_coordinator(config: dict[str, Any], repo_root: Path) -> GenerationCoordinator:
    section = config_section(config, "generation")
    output_root = ensure_relative_path(repo_root, str(section.get("output_root") or DEFAULT_OUTPUT_ROOT))
    return GenerationCoordinator(output_root, repo_root, normalize_generator_entries(config))
