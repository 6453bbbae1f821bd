"""Dependency graph building and wave planning."""

from __future__ import annotations

from wavefront.graph.builder import DependencyGraph, build_graph
from wavefront.graph.planner import (
    ExecutionWave,
    plan_waves,
    render_plan,
    topological_order,
)

__all__ = [
    "DependencyGraph",
    "ExecutionWave",
    "build_graph",
    "plan_waves",
    "render_plan",
    "topological_order",
]
