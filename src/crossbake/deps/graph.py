"""Static library dependency graph and deterministic link order.

Edge policy: ``A.requires`` containing ``B`` means A references symbols
defined in B. Static linkers resolve left to right, so B is placed after A.
Ties between independent libraries are broken lexicographically by name so
that any input iteration order yields the same sequence.
"""

from __future__ import annotations

import heapq
import warnings
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from crossbake.errors import ConfigurationError, CyclicDependency, UnresolvedReference
from crossbake.models import Dependency


class UnknownOverrideWarning(UserWarning):
    """Warning raised when an archive override names an architecture outside the matrix."""


@dataclass(frozen=True, slots=True)
class LinkEntry:
    dependency: Dependency
    archive: Path

    @property
    def name(self) -> str:
        return self.dependency.name


def index_dependencies(dependencies: Iterable[Dependency]) -> dict[str, Dependency]:
    indexed: dict[str, Dependency] = {}
    for dep in dependencies:
        if dep.name in indexed:
            raise ConfigurationError(
                "Dependency declared twice.",
                hint="Each static library must appear once; use overrides for per-arch archives.",
                context={"dependency": dep.name},
            )
        indexed[dep.name] = dep
    return indexed


def link_plan(
    dependencies: Iterable[Dependency],
    *,
    architecture: str | None = None,
) -> tuple[LinkEntry, ...]:
    """Return dependencies in link order, with per-architecture archives substituted."""
    graph = index_dependencies(dependencies)
    _check_references(graph)

    indegree = {name: 0 for name in graph}
    for dep in graph.values():
        for required in dep.requires:
            indegree[required] += 1

    ready = [name for name, count in indegree.items() if count == 0]
    heapq.heapify(ready)
    ordered: list[str] = []
    while ready:
        name = heapq.heappop(ready)
        ordered.append(name)
        for required in graph[name].requires:
            indegree[required] -= 1
            if indegree[required] == 0:
                heapq.heappush(ready, required)

    if len(ordered) != len(graph):
        remaining = {name for name, count in indegree.items() if count > 0}
        raise CyclicDependency(_find_cycle(graph, remaining))

    return tuple(
        LinkEntry(dependency=graph[name], archive=graph[name].archive_for(architecture))
        for name in ordered
    )


def resolve_link_order(
    dependencies: Iterable[Dependency],
    *,
    architecture: str | None = None,
) -> tuple[Path, ...]:
    return tuple(entry.archive for entry in link_plan(dependencies, architecture=architecture))


def warn_unknown_overrides(
    dependencies: Iterable[Dependency],
    architectures: Iterable[str],
) -> None:
    known = set(architectures)
    for dep in dependencies:
        for arch in sorted(set(dep.overrides) - known):
            warnings.warn(
                f"Dependency `{dep.name}` overrides its archive for `{arch}`, "
                "which is not in the architecture matrix.",
                UnknownOverrideWarning,
                stacklevel=2,
            )


def _check_references(graph: Mapping[str, Dependency]) -> None:
    for name in sorted(graph):
        missing = sorted(graph[name].requires - graph.keys())
        if missing:
            raise UnresolvedReference(
                "Dependency requires a library that is not declared.",
                hint="Declare the missing library or drop the edge.",
                context={"dependency": name, "missing": ", ".join(missing)},
            )


def _find_cycle(graph: Mapping[str, Dependency], candidates: set[str]) -> list[str]:
    """Walk edges inside *candidates* until a node repeats; that loop is a cycle."""
    # Leaves hanging off a cycle are unprocessed too; drop them so every walk step has an edge.
    pruned = set(candidates)
    changed = True
    while changed:
        changed = False
        for name in sorted(pruned):
            if not graph[name].requires & pruned:
                pruned.discard(name)
                changed = True
    candidates = pruned
    start = min(candidates)
    path: list[str] = []
    position: dict[str, int] = {}
    node = start
    while node not in position:
        position[node] = len(path)
        path.append(node)
        node = min(required for required in graph[node].requires if required in candidates)
    return [*path[position[node]:], node]
