"""Pluggable synthesis strategies.

A strategy turns the dependency-ordered ``SynthesisView`` into one final
artifact. Built-ins:
1. CONCATENATION: join successful outputs in dependency order
2. MAJORITY_VOTE: most common successful output, earliest wins ties
3. WEIGHTED_MERGE: weighted mean of numeric outputs
4. REFLECTION: wrap another strategy with a critic and re-synthesise until
   the critic's score meets a caller-supplied threshold

Strategies only read the view. They never re-order or re-run subtasks.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from numbers import Real
from typing import Any, Protocol, runtime_checkable

import structlog

from wavefront.memory import MemoryItem
from wavefront.models import SubtaskResult, Task

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Critique:
    """One critic verdict on a synthesised output."""

    score: float
    notes: str = ""


@dataclass(frozen=True)
class SynthesisView:
    """Complete, dependency-ordered view of a finished run.

    ``results`` lists every subtask, each after all of its dependencies,
    including failed and skipped ones.
    """

    task: Task
    results: tuple[SubtaskResult, ...]
    memory: tuple[MemoryItem, ...] = ()
    feedback: tuple[Critique, ...] = field(default_factory=tuple)

    @property
    def successful(self) -> list[SubtaskResult]:
        return [r for r in self.results if r.succeeded]

    def outputs(self) -> list[tuple[str, Any]]:
        """``(subtask_id, output)`` for successful subtasks, in order."""
        return [(r.subtask_id, r.output) for r in self.successful]


@runtime_checkable
class SynthesisStrategy(Protocol):
    async def synthesize(self, view: SynthesisView) -> Any:
        ...


class ConcatenationStrategy:
    """Join successful outputs in dependency order."""

    def __init__(self, separator: str = "\n\n", *, headers: bool = False) -> None:
        self._separator = separator
        self._headers = headers

    async def synthesize(self, view: SynthesisView) -> str:
        parts = []
        for subtask_id, output in view.outputs():
            text = output if isinstance(output, str) else json.dumps(output, default=str)
            parts.append(f"[{subtask_id}]\n{text}" if self._headers else text)
        return self._separator.join(parts)


class MajorityVoteStrategy:
    """Return the most frequent successful output.

    Outputs are compared by canonical JSON, so equal dicts vote together.
    On a tie the output seen first in dependency order wins. Returns None
    when nothing succeeded.
    """

    async def synthesize(self, view: SynthesisView) -> Any:
        counts: dict[str, int] = {}
        first_seen: dict[str, Any] = {}
        for _, output in view.outputs():
            key = json.dumps(output, sort_keys=True, default=str)
            counts[key] = counts.get(key, 0) + 1
            first_seen.setdefault(key, output)

        if not counts:
            return None
        # max() keeps the first maximal key; dicts preserve first-seen order
        winner = max(counts, key=lambda k: counts[k])
        return first_seen[winner]


class WeightedMergeStrategy:
    """Weighted mean of numeric outputs.

    Weights are looked up by subtask id, then by worker type, defaulting to
    ``default_weight``.
    """

    def __init__(
        self,
        weights: Mapping[str, float] | None = None,
        *,
        default_weight: float = 1.0,
    ) -> None:
        self._weights = dict(weights or {})
        self._default = default_weight

    async def synthesize(self, view: SynthesisView) -> float | None:
        total = 0.0
        weight_sum = 0.0
        for result in view.successful:
            if not isinstance(result.output, Real) or isinstance(result.output, bool):
                raise TypeError(
                    f"WeightedMergeStrategy needs numeric outputs; "
                    f"subtask '{result.subtask_id}' produced {type(result.output).__name__}"
                )
            weight = self._weights.get(
                result.subtask_id, self._weights.get(result.worker_type, self._default)
            )
            total += float(result.output) * weight
            weight_sum += weight

        if weight_sum == 0:
            return None
        return total / weight_sum


class CallableStrategy:
    """Adapt a plain (sync or async) function ``fn(view) -> output``."""

    def __init__(self, fn: Callable[[SynthesisView], Any]) -> None:
        self._fn = fn

    async def synthesize(self, view: SynthesisView) -> Any:
        result = self._fn(view)
        if inspect.isawaitable(result):
            result = await result
        return result


# critic(output, view) -> score or Critique, sync or async
Critic = Callable[[Any, SynthesisView], Any]


class ReflectionLoop:
    """Re-synthesise until a critic is satisfied.

    Each round the wrapped strategy receives the view with all previous
    critiques in ``view.feedback``. Stops when the score reaches
    ``threshold`` or after ``max_iterations`` rounds, returning the best
    scoring output. Both limits are caller policy and have no defaults.
    """

    def __init__(
        self,
        strategy: SynthesisStrategy,
        critic: Critic,
        *,
        threshold: float,
        max_iterations: int,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._strategy = strategy
        self._critic = critic
        self._threshold = threshold
        self._max_iterations = max_iterations

    async def synthesize(self, view: SynthesisView) -> Any:
        best_output: Any = None
        best_score = float("-inf")
        feedback: list[Critique] = list(view.feedback)

        for iteration in range(1, self._max_iterations + 1):
            round_view = replace(view, feedback=tuple(feedback))
            output = await self._strategy.synthesize(round_view)
            critique = await self._critique(output, round_view)
            feedback.append(critique)

            log.debug(
                "reflection.iteration",
                iteration=iteration,
                score=critique.score,
                threshold=self._threshold,
            )

            if critique.score > best_score:
                best_output, best_score = output, critique.score
            if critique.score >= self._threshold:
                log.info("reflection.converged", iterations=iteration, score=critique.score)
                return output

        log.info(
            "reflection.max_iterations_reached",
            iterations=self._max_iterations,
            best_score=best_score,
        )
        return best_output

    async def _critique(self, output: Any, view: SynthesisView) -> Critique:
        verdict = self._critic(output, view)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        if isinstance(verdict, Critique):
            return verdict
        return Critique(score=float(verdict))
