"""Telemetry package for observability.

This package contains:
- Structured logging with trace correlation (logging.py)
- OpenTelemetry spans (tracing.py)
- Prometheus metrics (metrics.py)
"""

from __future__ import annotations

from wavefront.telemetry.logging import (
    bind_subtask_context,
    bind_task_context,
    clear_context,
    configure_logging,
)
from wavefront.telemetry.metrics import REGISTRY, metrics_text
from wavefront.telemetry.tracing import create_span

__all__ = [
    "REGISTRY",
    "bind_subtask_context",
    "bind_task_context",
    "clear_context",
    "configure_logging",
    "create_span",
    "metrics_text",
]
