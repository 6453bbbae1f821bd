"""
Shared test fixtures for pytest.

Provides common helpers for all test modules:
- _clear_settings_cache: reset the get_settings lru_cache
- _clear_log_context: drop structlog contextvars between tests
- fake_clock: manually advanced clock for TTL tests
- settings: small, fast engine settings
- recording_worker: async worker that records payloads and call order
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from wavefront.config import Settings, get_settings
from wavefront.telemetry import clear_context
from wavefront.workers import SubtaskContext


# ------------------------------------------------------------------ #
# Session / autouse fixtures
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    clear_context()
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Clock and settings
# ------------------------------------------------------------------ #


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ttl_seconds=60,
        max_cache_entries=100,
        working_max_size=4,
        short_term_max_size=8,
        max_concurrency=4,
        subtask_timeout=2.0,
    )


# ------------------------------------------------------------------ #
# Workers
# ------------------------------------------------------------------ #


class RecordingWorker:
    """Async worker that echoes its payload and records every call.

    ``delay`` seconds are slept before returning; ``fail_on`` payload values
    raise RuntimeError.
    """

    def __init__(self, delay: float = 0.0, fail_on: tuple[Any, ...] = ()) -> None:
        self.delay = delay
        self.fail_on = fail_on
        self.calls: list[tuple[str, Any]] = []
        self.started: list[str] = []
        self.finished: list[str] = []
        self.contexts: list[SubtaskContext] = []

    async def execute(self, payload: Any, ctx: SubtaskContext) -> Any:
        self.calls.append((ctx.subtask_id, payload))
        self.contexts.append(ctx)
        self.started.append(ctx.subtask_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished.append(ctx.subtask_id)
        if payload in self.fail_on:
            raise RuntimeError(f"boom: {payload}")
        return f"out:{payload}"


@pytest.fixture
def recording_worker() -> RecordingWorker:
    return RecordingWorker()
