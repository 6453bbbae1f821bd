"""Dependency graph construction and validation.

Turns a flat list of subtasks with declared dependencies into an immutable
DAG. Edges point from a dependency to its dependents:

    A ──▶ C
    B ──▶ C        (C depends on A and B)

Validation order:
1. Duplicate subtask ids
2. Every ``depends_on`` id exists in the set
3. No cycles (three-colour depth-first search; a back-edge to a grey node
   is a cycle, reported as the node sequence that closes it)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType

import structlog

from wavefront.errors import (
    CyclicDependencyError,
    DuplicateSubtaskError,
    UnknownDependencyError,
)
from wavefront.models import Subtask

log = structlog.get_logger(__name__)


class _Colour(IntEnum):
    WHITE = 0  # not visited
    GREY = 1  # on the current DFS path
    BLACK = 2  # fully explored


@dataclass(frozen=True)
class DependencyGraph:
    """Read-only snapshot of a task's subtask DAG.

    ``dependents`` holds forward edges (dependency → dependents) and
    ``dependencies`` the reverse edges, so dependency counts are O(1).
    Node iteration order is the order subtasks were declared.
    """

    subtasks: Mapping[str, Subtask]
    dependents: Mapping[str, frozenset[str]]
    dependencies: Mapping[str, frozenset[str]]

    def __len__(self) -> int:
        return len(self.subtasks)

    def __contains__(self, subtask_id: object) -> bool:
        return subtask_id in self.subtasks

    def __iter__(self) -> Iterator[str]:
        return iter(self.subtasks)

    def get(self, subtask_id: str) -> Subtask:
        return self.subtasks[subtask_id]

    def in_degree(self, subtask_id: str) -> int:
        return len(self.dependencies[subtask_id])

    def roots(self) -> list[str]:
        """Subtasks with no dependencies, in declaration order."""
        return [sid for sid in self.subtasks if not self.dependencies[sid]]

    def descendants(self, subtask_id: str) -> set[str]:
        """All subtasks that transitively depend on ``subtask_id``."""
        seen: set[str] = set()
        stack = list(self.dependents[subtask_id])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.dependents[current])
        return seen

    @property
    def edge_count(self) -> int:
        return sum(len(deps) for deps in self.dependencies.values())


def build_graph(subtasks: Iterable[Subtask]) -> DependencyGraph:
    """Validate subtasks and build their dependency graph.

    Args:
        subtasks: Subtask descriptors for a single task

    Returns:
        Immutable DependencyGraph

    Raises:
        DuplicateSubtaskError: Two subtasks share an id
        UnknownDependencyError: A dependency id is not in the set
        CyclicDependencyError: The dependencies contain a cycle
    """
    nodes: dict[str, Subtask] = {}
    for subtask in subtasks:
        if subtask.id in nodes:
            log.warning("graph.duplicate_subtask", subtask_id=subtask.id)
            raise DuplicateSubtaskError(subtask.id)
        nodes[subtask.id] = subtask

    forward: dict[str, set[str]] = {sid: set() for sid in nodes}
    for sid, subtask in nodes.items():
        # Sorted so the reported error is stable across runs
        for dep_id in sorted(subtask.depends_on):
            if dep_id not in nodes:
                log.warning(
                    "graph.unknown_dependency",
                    subtask_id=sid,
                    missing_dep=dep_id,
                )
                raise UnknownDependencyError(sid, dep_id)
            forward[dep_id].add(sid)

    cycle = _find_cycle(nodes, forward)
    if cycle is not None:
        log.warning("graph.cycle_detected", cycle=cycle)
        raise CyclicDependencyError(cycle)

    graph = DependencyGraph(
        subtasks=MappingProxyType(nodes),
        dependents=MappingProxyType(
            {sid: frozenset(children) for sid, children in forward.items()}
        ),
        dependencies=MappingProxyType(
            {sid: frozenset(subtask.depends_on) for sid, subtask in nodes.items()}
        ),
    )

    log.debug("graph.built", node_count=len(graph), edge_count=graph.edge_count)
    return graph


def _find_cycle(
    nodes: Mapping[str, Subtask],
    forward: Mapping[str, set[str]],
) -> list[str] | None:
    """Return the first cycle found as ``[n0, n1, ..., n0]``, or None.

    Iterative so deep chains do not hit the recursion limit.
    """
    colour = dict.fromkeys(nodes, _Colour.WHITE)

    for start in nodes:
        if colour[start] is not _Colour.WHITE:
            continue

        path: list[str] = [start]
        colour[start] = _Colour.GREY
        stack: list[Iterator[str]] = [iter(sorted(forward[start]))]

        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                colour[path.pop()] = _Colour.BLACK
                continue

            if colour[child] is _Colour.GREY:
                return path[path.index(child):] + [child]

            if colour[child] is _Colour.WHITE:
                colour[child] = _Colour.GREY
                path.append(child)
                stack.append(iter(sorted(forward[child])))

    return None
