from __future__ import annotations

import abc
import contextlib
import logging
import os
import threading
import time
from typing import Iterator

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403

logger = logging.getLogger(__name__)

STORE_MANIFEST_VERSION = 1
STORE_LOCK_NAME = ".lock"
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class CommitEntry:
    file_key: str
    model: SchemaFile
    expected_revision: str | None


class BaselineStore(abc.ABC):
    """Holds the accepted baseline of every file key.

    Commits are optimistic check-and-set batches: every entry names the
    revision it expects to replace, all expectations are checked under one
    lock against the freshly loaded state, and either every entry is applied
    or none is.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._opened = False
        self._baselines: dict[str, Baseline] = {}
        self._history: dict[str, list[dict[str, Any]]] = {}

    def __enter__(self) -> "BaselineStore":
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> None:
        with self._lock:
            if self._opened:
                return
            self._load()
            self._opened = True
        logger.debug(f"{type(self).__name__} opened with {len(self._baselines)} baseline(s)")

    def close(self) -> None:
        with self._lock:
            if not self._opened:
                return
            self._opened = False
        logger.debug(f"{type(self).__name__} closed")

    def _require_open(self) -> None:
        if not self._opened:
            raise SchemaGovernanceError(f"{type(self).__name__} is not open")

    def get(self, file_key: str) -> Baseline | None:
        with self._lock:
            self._require_open()
            return self._baselines.get(file_key)

    def file_keys(self) -> list[str]:
        with self._lock:
            self._require_open()
            return sorted(self._baselines)

    def manifest(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            self._require_open()
            return {
                key: {
                    "revision": baseline.revision,
                    "sequence": baseline.sequence,
                    "dependencies": list(baseline.dependencies),
                    "committed_at_utc": baseline.committed_at_utc,
                }
                for key, baseline in sorted(self._baselines.items())
            }

    def history(self, file_key: str) -> list[dict[str, Any]]:
        with self._lock:
            self._require_open()
            return [dict(item) for item in self._history.get(file_key, [])]

    def commit(self, entries: list[CommitEntry]) -> list[Baseline]:
        if not entries:
            return []
        keys = [entry.file_key for entry in entries]
        if len(set(keys)) != len(keys):
            raise ChangesetError("Commit batch names the same file key more than once")

        with self._lock, self._exclusive():
            self._require_open()
            self._load()
            for entry in entries:
                current = self._baselines.get(entry.file_key)
                actual = current.revision if current is not None else None
                if actual != entry.expected_revision:
                    logger.info(
                        f"Rejected commit for '{entry.file_key}': expected {entry.expected_revision}, found {actual}"
                    )
                    raise ConcurrentModificationError(entry.file_key, entry.expected_revision, actual)

            created = [
                build_baseline(entry.file_key, entry.model, self._baselines.get(entry.file_key))
                for entry in entries
            ]
            self._persist(created)
            for baseline in created:
                self._baselines[baseline.file_key] = baseline
                self._history.setdefault(baseline.file_key, []).append(_history_entry(baseline))

        for baseline in created:
            logger.info(f"Committed baseline {baseline.file_key}@{baseline.revision[:12]} (#{baseline.sequence})")
        return created

    @abc.abstractmethod
    def _load(self) -> None:
        """Populate the in-memory view; called under the lock."""

    @abc.abstractmethod
    def _persist(self, baselines: list[Baseline]) -> None:
        """Durably record a validated batch; called under the lock."""

    def _exclusive(self) -> contextlib.AbstractContextManager[None]:
        return contextlib.nullcontext()


def _history_entry(baseline: Baseline) -> dict[str, Any]:
    return {
        "revision": baseline.revision,
        "sequence": baseline.sequence,
        "committed_at_utc": baseline.committed_at_utc,
    }


class MemoryBaselineStore(BaselineStore):
    """Process-local store; contents survive close() and reopen."""

    def _load(self) -> None:
        pass

    def _persist(self, baselines: list[Baseline]) -> None:
        pass


class FileBaselineStore(BaselineStore):
    """Directory-backed store.

    Layout: ``manifest.json`` naming the current snapshot of every file key,
    plus one JSON snapshot per committed revision under ``snapshots/``.
    Snapshots are written first and the manifest is replaced atomically last,
    so a crash mid-commit leaves the previous manifest in force. Commits from
    separate processes serialize on an exclusive ``.lock`` file in the root
    and re-read the manifest before checking expected revisions.
    """

    def __init__(self, root: Path, lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        super().__init__()
        self.root = root
        self.lock_timeout_seconds = lock_timeout_seconds
        self.manifest_path = root / "manifest.json"
        self.lock_path = root / STORE_LOCK_NAME
        self.snapshot_dir = root / "snapshots"

    def _snapshot_path(self, baseline: Baseline) -> Path:
        return self.snapshot_dir / f"{baseline.file_key}" / f"{baseline.sequence:06d}-{baseline.revision[:16]}.json"

    def _load(self) -> None:
        self._baselines = {}
        self._history = {}
        if not self.manifest_path.exists():
            logger.debug(f"No manifest at {self.manifest_path}; starting empty")
            return
        payload = load_json(self.manifest_path)
        if payload.get("manifest_version") != STORE_MANIFEST_VERSION:
            raise SchemaGovernanceError(
                f"Unsupported baseline manifest version in '{self.manifest_path}': {payload.get('manifest_version')}"
            )
        files = payload.get("files")
        if not isinstance(files, dict):
            raise SchemaGovernanceError(f"Baseline manifest '{self.manifest_path}' is missing 'files'")
        for file_key, entry in sorted(files.items()):
            if not isinstance(entry, dict) or not isinstance(entry.get("snapshot"), str):
                raise SchemaGovernanceError(f"Baseline manifest entry for '{file_key}' is malformed")
            baseline = baseline_from_dict(load_json(self.root / entry["snapshot"]))
            if baseline.file_key != file_key or baseline.revision != entry.get("revision"):
                raise SchemaGovernanceError(
                    f"Snapshot '{entry['snapshot']}' does not match manifest entry for '{file_key}'"
                )
            self._baselines[file_key] = baseline
            history = entry.get("history")
            self._history[file_key] = [dict(item) for item in history] if isinstance(history, list) else []
        logger.debug(f"Loaded {len(self._baselines)} baseline(s) from {self.manifest_path}")

    def _manifest_payload(self, pending: list[Baseline]) -> dict[str, Any]:
        current = dict(self._baselines)
        history = {key: list(items) for key, items in self._history.items()}
        for baseline in pending:
            current[baseline.file_key] = baseline
            history.setdefault(baseline.file_key, []).append(_history_entry(baseline))
        return {
            "manifest_version": STORE_MANIFEST_VERSION,
            "tool_version": TOOL_VERSION,
            "files": {
                key: {
                    "revision": baseline.revision,
                    "sequence": baseline.sequence,
                    "dependencies": list(baseline.dependencies),
                    "snapshot": self._snapshot_path(baseline).relative_to(self.root).as_posix(),
                    "history": history.get(key, []),
                }
                for key, baseline in sorted(current.items())
            },
        }

    def _persist(self, baselines: list[Baseline]) -> None:
        try:
            for baseline in baselines:
                write_text_atomic(self._snapshot_path(baseline), dump_json(baseline.as_dict()))
            write_text_atomic(self.manifest_path, dump_json(self._manifest_payload(baselines)))
        except OSError as exc:
            raise SchemaGovernanceError(f"Unable to persist baselines under '{self.root}': {exc}") from exc

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        self.root.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.lock_timeout_seconds
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    raise SchemaGovernanceError(
                        f"Timed out waiting for baseline store lock '{self.lock_path}'; "
                        "remove it if no other run is active"
                    ) from None
                time.sleep(0.05)
            except OSError as exc:
                raise SchemaGovernanceError(f"Unable to lock baseline store '{self.root}': {exc}") from exc
        try:
            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
            finally:
                os.close(fd)
            yield
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(self.lock_path)


def create_store(kind: str, path: Path | None = None) -> BaselineStore:
    if kind == "memory":
        return MemoryBaselineStore()
    if kind == "file":
        if path is None:
            raise ConfigError("File baseline store requires a path")
        return FileBaselineStore(path)
    raise ConfigError(f"Unknown baseline store kind '{kind}'")
