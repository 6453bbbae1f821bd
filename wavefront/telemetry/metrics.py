"""Prometheus instrumentation for the orchestration engine.

Metrics exported:
- wavefront_subtasks_total: Counter of resolved subtasks by worker type, status
- wavefront_subtask_duration_seconds: Histogram of subtask execution latency
- wavefront_tasks_total: Counter of finished tasks by final state
- wavefront_active_subtasks: Gauge of subtasks currently executing
- wavefront_cache_requests_total: Counter of cache lookups by result (hit/miss)
- wavefront_cache_evictions_total: Counter of cache removals by reason
- wavefront_memory_cascades_total: Counter of bulk tier moves by source tier

Design:
- Custom registry so embedding applications can mount or merge it
- The embedding application exposes ``metrics_text()`` however it likes
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry(auto_describe=True)


# ------------------------------------------------------------------ #
# Execution
# ------------------------------------------------------------------ #

subtasks_total = Counter(
    "wavefront_subtasks_total",
    "Subtasks resolved",
    ["worker_type", "status"],
    registry=REGISTRY,
)

subtask_duration_seconds = Histogram(
    "wavefront_subtask_duration_seconds",
    "Subtask execution latency in seconds",
    ["worker_type"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

tasks_total = Counter(
    "wavefront_tasks_total",
    "Tasks finished",
    ["state"],
    registry=REGISTRY,
)

active_subtasks = Gauge(
    "wavefront_active_subtasks",
    "Subtasks currently executing",
    registry=REGISTRY,
)


# ------------------------------------------------------------------ #
# Cache & memory
# ------------------------------------------------------------------ #

cache_requests_total = Counter(
    "wavefront_cache_requests_total",
    "Response cache lookups",
    ["result"],
    registry=REGISTRY,
)

cache_evictions_total = Counter(
    "wavefront_cache_evictions_total",
    "Response cache removals",
    ["reason"],
    registry=REGISTRY,
)

memory_cascades_total = Counter(
    "wavefront_memory_cascades_total",
    "Bulk memory tier moves",
    ["source_tier"],
    registry=REGISTRY,
)


def metrics_text() -> bytes:
    """Return all engine metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)
