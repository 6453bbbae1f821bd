"""Execution planning: group a DAG into sequential waves.

Kahn's algorithm, collected level by level. Wave *k* holds every subtask
whose dependencies all sit in waves ``< k``. Waves run one after another;
subtasks inside a wave run concurrently, so intra-wave order carries no
meaning (it follows declaration order only to keep logs readable).
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from wavefront.errors import PlanningInvariantViolation
from wavefront.graph.builder import DependencyGraph

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExecutionWave:
    """A set of subtasks eligible to run concurrently."""

    index: int
    subtask_ids: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.subtask_ids)

    def __contains__(self, subtask_id: object) -> bool:
        return subtask_id in self.subtask_ids


def plan_waves(graph: DependencyGraph) -> list[ExecutionWave]:
    """Compute execution waves for a dependency graph.

    Args:
        graph: Validated dependency graph

    Returns:
        Ordered list of ExecutionWaves (empty for an empty graph)

    Raises:
        PlanningInvariantViolation: Nodes remain with unresolved dependencies
            after no more nodes can become ready
    """
    in_degree = {sid: graph.in_degree(sid) for sid in graph}
    ready = [sid for sid, degree in in_degree.items() if degree == 0]
    waves: list[ExecutionWave] = []
    placed = 0

    while ready:
        wave = ExecutionWave(index=len(waves), subtask_ids=tuple(ready))
        waves.append(wave)
        placed += len(ready)

        newly_ready: set[str] = set()
        for sid in ready:
            for dependent in graph.dependents[sid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    newly_ready.add(dependent)

        # Keep declaration order within the next wave
        ready = [sid for sid in graph if sid in newly_ready]

    if placed != len(graph):
        stuck = [sid for sid, degree in in_degree.items() if degree > 0]
        log.error("planner.invariant_violation", stuck=stuck)
        raise PlanningInvariantViolation(stuck)

    log.debug(
        "planner.waves_planned",
        wave_count=len(waves),
        wave_sizes=[len(w) for w in waves],
    )
    return waves


def topological_order(waves: list[ExecutionWave]) -> list[str]:
    """Flatten waves into a single valid topological order."""
    return [sid for wave in waves for sid in wave.subtask_ids]


def render_plan(graph: DependencyGraph, waves: list[ExecutionWave]) -> str:
    """Generate a human-readable execution plan.

    Args:
        graph: Dependency graph the waves were planned from
        waves: Output of ``plan_waves``

    Returns:
        Formatted execution plan string
    """
    lines = ["Execution Plan", "=" * 60, ""]

    for wave in waves:
        lines.append(f"Wave {wave.index + 1} ({len(wave)} concurrent)")
        for sid in wave.subtask_ids:
            subtask = graph.get(sid)
            deps = ", ".join(sorted(subtask.depends_on)) or "None"
            marker = " [critical]" if subtask.critical else ""
            lines.append(f"  - {sid}{marker}")
            lines.append(f"      Worker: {subtask.worker_type}")
            lines.append(f"      Dependencies: {deps}")
        lines.append("")

    lines.append(f"Total subtasks: {len(graph)} in {len(waves)} wave(s)")
    return "\n".join(lines)
