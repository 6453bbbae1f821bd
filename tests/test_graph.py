"""Tests for dependency graph building and wave planning."""

from __future__ import annotations

import pytest

from wavefront.errors import (
    CyclicDependencyError,
    DuplicateSubtaskError,
    ErrorKind,
    UnknownDependencyError,
)
from wavefront.graph import build_graph, plan_waves, render_plan, topological_order
from wavefront.models import Subtask


def _st(sid: str, *deps: str, critical: bool = False) -> Subtask:
    return Subtask.of(sid, "echo", payload=sid, depends_on=deps, critical=critical)


def _assert_topological(order: list[str], subtasks: list[Subtask]) -> None:
    position = {sid: i for i, sid in enumerate(order)}
    for subtask in subtasks:
        for dep in subtask.depends_on:
            assert position[dep] < position[subtask.id]


class TestBuildGraph:
    def test_acyclic_graph_builds(self):
        subtasks = [_st("a"), _st("b", "a"), _st("c", "a", "b")]
        graph = build_graph(subtasks)

        assert len(graph) == 3
        assert list(graph) == ["a", "b", "c"]
        assert graph.dependents["a"] == frozenset({"b", "c"})
        assert graph.dependencies["c"] == frozenset({"a", "b"})
        assert graph.in_degree("c") == 2
        assert graph.roots() == ["a"]
        assert graph.edge_count == 3
        assert graph.descendants("a") == {"b", "c"}

    def test_empty_graph(self):
        graph = build_graph([])
        assert len(graph) == 0
        assert plan_waves(graph) == []

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc_info:
            build_graph([_st("a"), _st("b", "ghost")])
        assert exc_info.value.subtask_id == "b"
        assert exc_info.value.dependency_id == "ghost"
        assert exc_info.value.kind is ErrorKind.UNKNOWN_DEPENDENCY

    def test_duplicate_id(self):
        with pytest.raises(DuplicateSubtaskError):
            build_graph([_st("a"), _st("a")])

    def test_cycle_reported_with_path(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            build_graph([_st("a", "c"), _st("b", "a"), _st("c", "b")])
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            build_graph([_st("a", "a")])
        assert exc_info.value.cycle == ["a", "a"]

    def test_graph_is_read_only(self):
        graph = build_graph([_st("a")])
        with pytest.raises(TypeError):
            graph.subtasks["b"] = _st("b")  # type: ignore[index]


class TestPlanWaves:
    def test_fan_in(self):
        """{A, B, C(A, B)} plans as [{A, B}, {C}]."""
        graph = build_graph([_st("a"), _st("b"), _st("c", "a", "b")])
        waves = plan_waves(graph)
        assert [set(w.subtask_ids) for w in waves] == [{"a", "b"}, {"c"}]
        assert [w.index for w in waves] == [0, 1]

    def test_chain_is_one_per_wave(self):
        graph = build_graph([_st("a"), _st("b", "a"), _st("c", "b")])
        assert [w.subtask_ids for w in plan_waves(graph)] == [("a",), ("b",), ("c",)]

    def test_wave_is_longest_path_depth(self):
        """A node lands in the wave after its deepest dependency."""
        subtasks = [_st("a"), _st("b", "a"), _st("c", "b"), _st("d", "a", "c"), _st("e")]
        waves = plan_waves(build_graph(subtasks))
        index = {sid: w.index for w in waves for sid in w.subtask_ids}
        assert index == {"a": 0, "e": 0, "b": 1, "c": 2, "d": 3}

    def test_topological_order_respects_dependencies(self):
        subtasks = [_st("d", "b", "c"), _st("b", "a"), _st("c", "a"), _st("a")]
        waves = plan_waves(build_graph(subtasks))
        order = topological_order(waves)
        assert sorted(order) == ["a", "b", "c", "d"]
        _assert_topological(order, subtasks)

    def test_every_subtask_placed_once(self):
        subtasks = [_st(f"n{i}", *([f"n{i - 1}"] if i % 3 else [])) for i in range(12)]
        waves = plan_waves(build_graph(subtasks))
        order = topological_order(waves)
        assert len(order) == len(set(order)) == 12


class TestRenderPlan:
    def test_render_lists_waves_and_dependencies(self):
        graph = build_graph([_st("a"), _st("b"), _st("c", "a", "b", critical=True)])
        text = render_plan(graph, plan_waves(graph))

        assert text.startswith("Execution Plan")
        assert "Wave 1 (2 concurrent)" in text
        assert "Wave 2 (1 concurrent)" in text
        assert "- c [critical]" in text
        assert "Dependencies: a, b" in text
        assert "Total subtasks: 3 in 2 wave(s)" in text
