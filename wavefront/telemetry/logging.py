"""Structured logging configuration.

Configures structlog with JSON output, trace correlation, and task/subtask
context binding.

Features:
- JSON-formatted logs in production (human-readable in dev)
- Trace ID and span ID from the OpenTelemetry context
- Task ID, subtask ID and worker type in every entry emitted while a
  subtask runs (bound through contextvars, so concurrent subtasks never
  see each other's context)
- ISO8601 timestamps with timezone

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "event": "orchestrator.subtask_complete",
        "logger": "wavefront.orchestrator.pool",
        "trace_id": "abc123...",
        "span_id": "def456...",
        "task_id": "task_4f1c...",
        "subtask_id": "summarise",
        "worker_type": "summariser"
    }
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace
from structlog.types import EventDict, Processor


def add_trace_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add OpenTelemetry trace and span IDs to log entries."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            event_dict["trace_id"] = format(ctx.trace_id, "032x")
            event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the engine.

    Embedding applications that already configure structlog can skip this.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_task_context(task_id: str) -> None:
    """Bind task ID to log context for the current run."""
    structlog.contextvars.bind_contextvars(task_id=task_id)


def bind_subtask_context(subtask_id: str, worker_type: str) -> None:
    """Bind subtask context to logs for this execution.

    Call from inside the subtask's own asyncio task so the binding stays
    local to it.
    """
    structlog.contextvars.bind_contextvars(
        subtask_id=subtask_id,
        worker_type=worker_type,
    )


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
