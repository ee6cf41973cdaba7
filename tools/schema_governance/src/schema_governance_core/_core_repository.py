from __future__ import annotations

from dataclasses import replace
from typing import Callable

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403
from ._core_store import *  # noqa: F401,F403

DependencyGraph = dict[str, tuple[str, ...]]


def _relink_model(model: SchemaFile, resolve: Callable[[str, TypeRef], TypeRef]) -> SchemaFile:
    messages = tuple(
        replace(
            message,
            fields=tuple(
                replace(item, type=resolve(field_path(model.key, message.name, item.name, item.tag), item.type))
                for item in message.fields
            ),
        )
        for message in model.messages
    )
    services = []
    for service in model.services:
        methods = []
        for method in service.methods:
            path = method_path(model.key, service.name, method.name)
            methods.append(
                replace(
                    method,
                    request=resolve(f"{path}(request)", method.request),
                    response=resolve(f"{path}(response)", method.response),
                )
            )
        services.append(replace(service, methods=tuple(methods)))
    return replace(model, messages=messages, services=tuple(services))


def find_cycle(graph: DependencyGraph) -> list[str] | None:
    """Return one dependency cycle as a closed path, or None."""
    visiting: set[str] = set()
    done: set[str] = set()
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        visiting.add(node)
        stack.append(node)
        for target in graph.get(node, ()):
            if target not in graph:
                continue
            if target in visiting:
                start = stack.index(target)
                return stack[start:] + [target]
            if target not in done:
                found = visit(target)
                if found is not None:
                    return found
        stack.pop()
        visiting.discard(node)
        done.add(node)
        return None

    for node in sorted(graph):
        if node not in done:
            found = visit(node)
            if found is not None:
                return found
    return None


def check_acyclic(graph: DependencyGraph) -> None:
    cycle = find_cycle(graph)
    if cycle is not None:
        raise DependencyCycleError(cycle)


def reverse_graph(graph: DependencyGraph) -> dict[str, set[str]]:
    reverse: dict[str, set[str]] = {key: set() for key in graph}
    for source, targets in graph.items():
        for target in targets:
            reverse.setdefault(target, set()).add(source)
    return reverse


def affected_closure(file_keys: list[str] | set[str], graph: DependencyGraph) -> list[str]:
    """Every file that transitively depends on one of ``file_keys``, excluding them."""
    reverse = reverse_graph(graph)
    seeds = set(file_keys)
    seen: set[str] = set()
    queue = sorted(seeds)
    while queue:
        current = queue.pop(0)
        for dependent in sorted(reverse.get(current, ())):
            if dependent in seen or dependent in seeds:
                continue
            seen.add(dependent)
            queue.append(dependent)
    return sorted(seen)


class SchemaRepository:
    """Authoritative view over accepted baselines and the file dependency graph."""

    def __init__(self, store: BaselineStore) -> None:
        self.store = store

    def get_baseline(self, file_key: str) -> Baseline | None:
        return self.store.get(file_key)

    def file_keys(self) -> list[str]:
        return self.store.file_keys()

    def commit_baseline(self, file_key: str, model: SchemaFile, expected_revision: str | None) -> Baseline:
        if model.key != file_key:
            raise ChangesetError(f"Model key '{model.key}' does not match file key '{file_key}'")
        return self.store.commit([CommitEntry(file_key, model, expected_revision)])[0]

    def commit_changeset(
        self,
        models: dict[str, SchemaFile],
        expected_revisions: dict[str, str | None],
    ) -> list[Baseline]:
        entries: list[CommitEntry] = []
        for file_key in sorted(models):
            model = models[file_key]
            if model.key != file_key:
                raise ChangesetError(f"Model key '{model.key}' does not match file key '{file_key}'")
            if file_key not in expected_revisions:
                raise ChangesetError(f"No expected revision given for '{file_key}'")
            entries.append(CommitEntry(file_key, model, expected_revisions[file_key]))
        return self.store.commit(entries)

    def domains(self) -> list[str]:
        return sorted({domain_of(key) for key in self.store.file_keys()})

    def files_in_domain(self, domain: str) -> list[str]:
        return [key for key in self.store.file_keys() if domain_of(key) == domain]

    def dependency_graph(self, overlay: dict[str, SchemaFile] | None = None) -> DependencyGraph:
        graph: DependencyGraph = {
            key: tuple(entry.get("dependencies", [])) for key, entry in self.store.manifest().items()
        }
        for key, model in (overlay or {}).items():
            graph[key] = model.dependencies()
        return graph

    def dependents_of(self, file_key: str, graph: DependencyGraph | None = None) -> list[str]:
        reverse = reverse_graph(graph if graph is not None else self.dependency_graph())
        return sorted(reverse.get(file_key, ()))

    def affected_closure(self, file_keys: list[str] | set[str], graph: DependencyGraph | None = None) -> list[str]:
        return affected_closure(file_keys, graph if graph is not None else self.dependency_graph())

    def check_acyclic(self, overlay: dict[str, SchemaFile] | None = None) -> DependencyGraph:
        graph = self.dependency_graph(overlay)
        check_acyclic(graph)
        return graph

    def lookup(self, file_key: str, candidates: dict[str, SchemaFile] | None = None) -> SchemaFile | None:
        if candidates and file_key in candidates:
            return candidates[file_key]
        baseline = self.store.get(file_key)
        return baseline.model if baseline is not None else None

    def link(
        self,
        models: dict[str, SchemaFile],
        context: dict[str, SchemaFile] | None = None,
    ) -> tuple[dict[str, SchemaFile], list[ResolutionError]]:
        """Resolve cross-file references of ``models``.

        Targets are looked up among ``context`` (defaults to ``models``) first,
        then among accepted baselines. References declared in the same file
        are left as parsed. Unresolvable references stay pending and are
        reported as ResolutionErrors.
        """
        candidates = dict(models)
        if context:
            candidates.update(context)
        linked: dict[str, SchemaFile] = {}
        errors: list[ResolutionError] = []

        for file_key in sorted(models):
            model = models[file_key]
            aliases = {file_key_alias(target): target for target in model.imports}
            imported: dict[str, SchemaFile] = {}
            for target in model.imports:
                found = self.lookup(target, candidates)
                if found is None:
                    errors.append(ResolutionError(file_key, file_key, f"imports unknown file '{target}'"))
                else:
                    imported[target] = found

            def resolve(entity_path: str, ref: TypeRef) -> TypeRef:
                if ref.kind == "primitive" or (ref.kind != "pending" and ref.file_key == file_key):
                    return ref
                if ref.qualifier is not None:
                    target = aliases.get(ref.qualifier)
                    if target is None:
                        errors.append(
                            ResolutionError(
                                file_key,
                                entity_path,
                                f"'{ref.source_text()}' refers to a file that is not imported",
                            )
                        )
                        return replace(ref, kind="pending", file_key=None)
                    target_model = imported.get(target)
                    if target_model is None:
                        return replace(ref, kind="pending", file_key=None)
                    kind = target_model.declared_types().get(ref.name)
                    if kind is None:
                        errors.append(
                            ResolutionError(file_key, entity_path, f"type '{ref.name}' is not declared in '{target}'")
                        )
                        return replace(ref, kind="pending", file_key=None)
                    return replace(ref, kind=kind, file_key=target)

                matches = [
                    (target, target_model.declared_types()[ref.name])
                    for target, target_model in sorted(imported.items())
                    if ref.name in target_model.declared_types()
                ]
                if not matches:
                    errors.append(
                        ResolutionError(file_key, entity_path, f"unknown type '{ref.name}'")
                    )
                    return replace(ref, kind="pending", file_key=None)
                if len(matches) > 1:
                    owners = ", ".join(target for target, _ in matches)
                    errors.append(
                        ResolutionError(
                            file_key,
                            entity_path,
                            f"ambiguous type '{ref.name}' is declared in {owners}; qualify the reference",
                        )
                    )
                    return replace(ref, kind="pending", file_key=None)
                target, kind = matches[0]
                return replace(ref, kind=kind, file_key=target)

            linked[file_key] = _relink_model(model, resolve)

        return linked, errors
