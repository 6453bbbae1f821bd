"""Result synthesis.

Merges per-subtask outputs into one final artifact with a pluggable
strategy, and builds the manifest. The synthesizer checks that it was
handed a complete view (every subtask in a terminal state) in a valid
dependency order; it never re-orders or re-runs subtasks.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from wavefront.errors import SynthesisError
from wavefront.graph import DependencyGraph
from wavefront.memory import MemoryItem
from wavefront.models import SubtaskResult, Task
from wavefront.synthesis.manifest import Manifest
from wavefront.synthesis.strategies import (
    ConcatenationStrategy,
    SynthesisStrategy,
    SynthesisView,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SynthesisResult:
    output: Any
    manifest: Manifest


class ResultSynthesizer:
    """Validate a finished run's view and hand it to the strategy."""

    def __init__(self, strategy: SynthesisStrategy | None = None) -> None:
        self._strategy = strategy or ConcatenationStrategy()

    @property
    def strategy(self) -> SynthesisStrategy:
        return self._strategy

    def build_view(
        self,
        task: Task,
        graph: DependencyGraph,
        order: Sequence[str],
        results: Mapping[str, SubtaskResult],
        memory: Sequence[MemoryItem] = (),
    ) -> SynthesisView:
        """Assemble the dependency-ordered view.

        Raises:
            SynthesisError: A subtask is missing, not terminal, or placed
                before one of its dependencies
        """
        if set(order) != set(graph) or len(order) != len(graph):
            raise SynthesisError("Synthesis order does not cover every subtask exactly once")

        seen: set[str] = set()
        ordered: list[SubtaskResult] = []
        for subtask_id in order:
            result = results.get(subtask_id)
            if result is None or not result.status.is_terminal:
                raise SynthesisError(f"Subtask '{subtask_id}' has not reached a terminal state")
            missing = graph.dependencies[subtask_id] - seen
            if missing:
                raise SynthesisError(
                    f"Subtask '{subtask_id}' ordered before its dependencies: {sorted(missing)}"
                )
            seen.add(subtask_id)
            ordered.append(result)

        return SynthesisView(task=task, results=tuple(ordered), memory=tuple(memory))

    async def synthesize(
        self,
        task: Task,
        graph: DependencyGraph,
        order: Sequence[str],
        results: Mapping[str, SubtaskResult],
        memory: Sequence[MemoryItem] = (),
        critical: frozenset[str] = frozenset(),
    ) -> SynthesisResult:
        """Produce the final artifact and manifest.

        Args:
            task: The task being synthesised
            graph: Its dependency graph
            order: Dependency-respecting order (concatenated waves)
            results: Terminal result for every subtask
            memory: Items held by the task's memory cascade
            critical: Ids of caller-flagged critical subtasks

        Returns:
            SynthesisResult with the strategy's output and the manifest

        Raises:
            SynthesisError: Incomplete view, or the strategy raised
        """
        view = self.build_view(task, graph, order, results, memory)
        manifest = Manifest.build(view.results, critical)

        log.info(
            "synthesizer.start",
            strategy=type(self._strategy).__name__,
            succeeded=len(manifest.succeeded),
            failed=len(manifest.failed),
            skipped=len(manifest.skipped),
            memory_items=len(view.memory),
        )

        try:
            output = await self._strategy.synthesize(view)
        except Exception as exc:
            log.error("synthesizer.strategy_failed", error=str(exc))
            raise SynthesisError(
                f"Synthesis strategy {type(self._strategy).__name__} failed: {exc}", exc
            ) from exc

        return SynthesisResult(output=output, manifest=manifest)
