"""Tests for synthesis strategies, manifest and the result synthesizer."""

from __future__ import annotations

import pytest

from wavefront.errors import ErrorKind, SubtaskExecutionError, SynthesisError
from wavefront.graph import build_graph, plan_waves, topological_order
from wavefront.models import Subtask, SubtaskResult, SubtaskStatus, Task
from wavefront.synthesis import (
    CallableStrategy,
    ConcatenationStrategy,
    Critique,
    MajorityVoteStrategy,
    Manifest,
    ReflectionLoop,
    ResultSynthesizer,
    SynthesisView,
    WeightedMergeStrategy,
)

TASK = Task("synthesise things", id="task_synth")


def _ok(sid: str, output, worker_type: str = "w") -> SubtaskResult:
    result = SubtaskResult(subtask_id=sid, worker_type=worker_type)
    result.mark_running()
    result.mark_succeeded(output)
    return result


def _failed(sid: str) -> SubtaskResult:
    result = SubtaskResult(subtask_id=sid, worker_type="w")
    result.mark_running()
    result.mark_failed(SubtaskStatus.FAILED, SubtaskExecutionError(sid, RuntimeError("x")))
    return result


def _skipped(sid: str, blocked_by: str) -> SubtaskResult:
    result = SubtaskResult(subtask_id=sid, worker_type="w")
    result.mark_skipped(blocked_by)
    return result


def _view(*results: SubtaskResult) -> SynthesisView:
    return SynthesisView(task=TASK, results=tuple(results))


class TestStrategies:
    @pytest.mark.asyncio
    async def test_concatenation_in_dependency_order(self):
        view = _view(_ok("a", "first"), _failed("b"), _ok("c", {"k": 1}))
        assert await ConcatenationStrategy().synthesize(view) == 'first\n\n{"k": 1}'

    @pytest.mark.asyncio
    async def test_concatenation_with_headers(self):
        view = _view(_ok("a", "x"), _ok("b", "y"))
        out = await ConcatenationStrategy(" | ", headers=True).synthesize(view)
        assert out == "[a]\nx | [b]\ny"

    @pytest.mark.asyncio
    async def test_majority_vote(self):
        view = _view(_ok("a", "yes"), _ok("b", "no"), _ok("c", "yes"))
        assert await MajorityVoteStrategy().synthesize(view) == "yes"

    @pytest.mark.asyncio
    async def test_majority_vote_tie_goes_to_earliest(self):
        view = _view(_ok("a", {"v": 2}), _ok("b", {"v": 1}))
        assert await MajorityVoteStrategy().synthesize(view) == {"v": 2}

    @pytest.mark.asyncio
    async def test_majority_vote_with_no_successes(self):
        assert await MajorityVoteStrategy().synthesize(_view(_failed("a"))) is None

    @pytest.mark.asyncio
    async def test_weighted_merge(self):
        view = _view(_ok("a", 10, "fast"), _ok("b", 20, "slow"), _ok("c", 40))
        strategy = WeightedMergeStrategy({"fast": 1.0, "slow": 3.0, "c": 0.0})
        assert await strategy.synthesize(view) == pytest.approx(17.5)

    @pytest.mark.asyncio
    async def test_weighted_merge_rejects_non_numeric(self):
        with pytest.raises(TypeError):
            await WeightedMergeStrategy().synthesize(_view(_ok("a", "text")))

    @pytest.mark.asyncio
    async def test_callable_strategy_sync_and_async(self):
        async def count(view):
            return len(view.successful)

        view = _view(_ok("a", 1), _failed("b"))
        assert await CallableStrategy(count).synthesize(view) == 1
        assert await CallableStrategy(lambda v: [sid for sid, _ in v.outputs()]).synthesize(
            view
        ) == ["a"]


class TestReflectionLoop:
    @pytest.mark.asyncio
    async def test_stops_when_threshold_met(self):
        rounds = []

        def draft(view):
            rounds.append(len(view.feedback))
            return f"draft {len(view.feedback)}"

        def critic(output, view):
            return Critique(score=0.4 + 0.3 * len(view.feedback), notes="tighten")

        loop = ReflectionLoop(CallableStrategy(draft), critic, threshold=0.9, max_iterations=5)
        assert await loop.synthesize(_view(_ok("a", "x"))) == "draft 2"
        assert rounds == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_returns_best_after_max_iterations(self):
        scores = iter([0.2, 0.6, 0.1])

        async def critic(output, view):
            return next(scores)

        outputs = iter(["one", "two", "three"])
        loop = ReflectionLoop(
            CallableStrategy(lambda v: next(outputs)), critic, threshold=0.99, max_iterations=3
        )
        assert await loop.synthesize(_view(_ok("a", "x"))) == "two"

    def test_requires_at_least_one_iteration(self):
        with pytest.raises(ValueError):
            ReflectionLoop(ConcatenationStrategy(), lambda o, v: 1.0, threshold=1.0, max_iterations=0)


class TestManifest:
    def test_groups_by_status(self):
        manifest = Manifest.build(
            [_ok("a", 1), _failed("b"), _skipped("c", "b")], critical=frozenset({"c"})
        )
        assert manifest.succeeded == ["a"]
        assert manifest.failed == ["b"]
        assert manifest.skipped == ["c"]
        assert manifest.is_partial
        assert manifest["c"].critical is True
        assert manifest["c"].blocked_by == "b"
        assert manifest["c"].error_kind == ErrorKind.DEPENDENCY_FAILED.value
        assert manifest.status_of("b") is SubtaskStatus.FAILED

    def test_to_dict(self):
        data = Manifest.build([_ok("a", 1)]).to_dict()
        assert data["succeeded"] == ["a"]
        assert data["subtasks"][0]["status"] == "succeeded"


class TestResultSynthesizer:
    @pytest.fixture
    def plan(self):
        graph = build_graph(
            [Subtask.of("a", "w"), Subtask.of("b", "w", depends_on=["a"]), Subtask.of("c", "w")]
        )
        return graph, topological_order(plan_waves(graph))

    @pytest.mark.asyncio
    async def test_synthesize(self, plan):
        graph, order = plan
        results = {"a": _ok("a", "A"), "b": _ok("b", "B"), "c": _failed("c")}
        out = await ResultSynthesizer().synthesize(TASK, graph, order, results)
        assert out.output.split("\n\n") == [results[sid].output for sid in order if sid != "c"]
        assert out.manifest.failed == ["c"]

    @pytest.mark.asyncio
    async def test_rejects_non_terminal_results(self, plan):
        graph, order = plan
        pending = SubtaskResult(subtask_id="b", worker_type="w")
        results = {"a": _ok("a", "A"), "b": pending, "c": _ok("c", "C")}
        with pytest.raises(SynthesisError, match="terminal"):
            await ResultSynthesizer().synthesize(TASK, graph, order, results)

    @pytest.mark.asyncio
    async def test_rejects_order_violating_dependencies(self, plan):
        graph, _ = plan
        results = {"a": _ok("a", "A"), "b": _ok("b", "B"), "c": _ok("c", "C")}
        with pytest.raises(SynthesisError, match="before its dependencies"):
            await ResultSynthesizer().synthesize(TASK, graph, ["b", "a", "c"], results)

    @pytest.mark.asyncio
    async def test_rejects_incomplete_order(self, plan):
        graph, _ = plan
        results = {"a": _ok("a", "A"), "b": _ok("b", "B"), "c": _ok("c", "C")}
        with pytest.raises(SynthesisError):
            await ResultSynthesizer().synthesize(TASK, graph, ["a", "b"], results)

    @pytest.mark.asyncio
    async def test_strategy_failure_wrapped(self, plan):
        graph, order = plan
        results = {sid: _ok(sid, sid) for sid in order}

        def explode(view):
            raise RuntimeError("strategy broke")

        with pytest.raises(SynthesisError) as exc_info:
            await ResultSynthesizer(CallableStrategy(explode)).synthesize(
                TASK, graph, order, results
            )
        assert isinstance(exc_info.value.cause, RuntimeError)
