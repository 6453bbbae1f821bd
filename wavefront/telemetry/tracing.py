"""
OpenTelemetry spans for orchestration.

Only the OpenTelemetry API is used: spans are no-ops until the embedding
application installs an SDK ``TracerProvider`` and exporter.

Span hierarchy per task:
    wavefront.task
      └─ wavefront.wave (one per execution wave)
           └─ wavefront.subtask (one per subtask in the wave)
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

_TRACER_NAME = "wavefront"


def get_tracer() -> trace.Tracer:
    """Return the tracer from the globally configured provider."""
    return trace.get_tracer(_TRACER_NAME)


@contextmanager
def create_span(
    name: str,
    *,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a tracing span with custom attributes.

    Exceptions escaping the block are recorded on the span and re-raised.

    Example:
        with create_span("wavefront.wave", attributes={"wave.index": 0}) as span:
            await pool.run_wave(...)
            span.set_attribute("wave.failed", failed)
    """
    clean = {k: v for k, v in (attributes or {}).items() if v is not None}
    with get_tracer().start_as_current_span(
        name,
        attributes=clean,
        record_exception=True,
        set_status_on_exception=True,
    ) as span:
        yield span


def mark_span_error(span: Span, description: str) -> None:
    """Flag a span as failed without raising."""
    span.set_status(Status(StatusCode.ERROR, description))
