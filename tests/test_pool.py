"""Tests for the bounded worker pool and worker adapters."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from wavefront.config import Settings
from wavefront.errors import (
    ErrorKind,
    SubtaskCancelledError,
    SubtaskExecutionError,
    SubtaskTimeoutError,
)
from wavefront.orchestrator import WorkerPool
from wavefront.workers import (
    CancellationToken,
    FunctionWorker,
    SubtaskContext,
    Worker,
    as_worker,
    normalize_workers,
)


def _ctx(subtask_id: str = "s1", token: CancellationToken | None = None) -> SubtaskContext:
    return SubtaskContext(
        task_id="task_test",
        subtask_id=subtask_id,
        worker_type="echo",
        token=token or CancellationToken(),
    )


async def _echo(payload, ctx):
    return payload


async def _sleepy(payload, ctx):
    await asyncio.sleep(5)
    return payload


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_returns_worker_output(self):
        pool = WorkerPool(max_concurrency=2, subtask_timeout=1.0)
        ctx = _ctx()
        assert await pool.execute(FunctionWorker(_echo), {"x": 1}, ctx) == {"x": 1}
        assert ctx.timeout == 1.0
        assert pool.active == 0

    @pytest.mark.asyncio
    async def test_timeout_trips_token(self):
        pool = WorkerPool(subtask_timeout=0.05)
        ctx = _ctx()
        with pytest.raises(SubtaskTimeoutError) as exc_info:
            await pool.execute(FunctionWorker(_sleepy), None, ctx)
        assert exc_info.value.kind is ErrorKind.SUBTASK_TIMEOUT
        assert ctx.cancelled
        assert ctx.token.reason == "timeout"

    @pytest.mark.asyncio
    async def test_per_call_timeout_override(self):
        pool = WorkerPool(subtask_timeout=10.0)
        with pytest.raises(SubtaskTimeoutError) as exc_info:
            await pool.execute(FunctionWorker(_sleepy), None, _ctx(), timeout=0.05)
        assert exc_info.value.timeout == 0.05

    @pytest.mark.asyncio
    async def test_cancellation_stops_wait(self):
        pool = WorkerPool(subtask_timeout=5.0)
        token = CancellationToken()
        ctx = _ctx(token=token.child())

        running = asyncio.create_task(pool.execute(FunctionWorker(_sleepy), None, ctx))
        await asyncio.sleep(0.01)
        token.cancel("task cancelled")

        with pytest.raises(SubtaskCancelledError) as exc_info:
            await running
        assert exc_info.value.reason == "task cancelled"

    @pytest.mark.asyncio
    async def test_already_cancelled_token_never_calls_worker(self):
        calls = []

        async def worker(payload, ctx):
            calls.append(payload)

        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(SubtaskCancelledError):
            await WorkerPool().execute(FunctionWorker(worker), 1, _ctx(token=token))
        assert calls == []

    @pytest.mark.asyncio
    async def test_worker_exception_wrapped(self):
        async def broken(payload, ctx):
            raise KeyError("missing")

        with pytest.raises(SubtaskExecutionError) as exc_info:
            await WorkerPool().execute(FunctionWorker(broken), None, _ctx())
        assert isinstance(exc_info.value.cause, KeyError)
        assert exc_info.value.subtask_id == "s1"

    @pytest.mark.asyncio
    async def test_cooperative_cancel_error_passes_through(self):
        async def polite(payload, ctx):
            ctx.token.cancel("self")
            ctx.raise_if_cancelled()

        with pytest.raises(SubtaskCancelledError):
            await WorkerPool().execute(FunctionWorker(polite), None, _ctx())

    @pytest.mark.asyncio
    async def test_worker_ignoring_cancel_is_reaped_later(self, monkeypatch):
        """A worker that outlives the grace period is tracked until it ends."""
        monkeypatch.setattr("wavefront.orchestrator.pool._CANCEL_GRACE_SECONDS", 0.01)
        release = asyncio.Event()

        async def stubborn(payload, ctx):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                await release.wait()
                raise RuntimeError("finished after being abandoned")

        pool = WorkerPool(subtask_timeout=0.05)
        with pytest.raises(SubtaskTimeoutError):
            await pool.execute(FunctionWorker(stubborn), None, _ctx())
        assert pool.abandoned == 1

        release.set()
        await asyncio.sleep(0.05)
        assert pool.abandoned == 0

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        pool = WorkerPool(max_concurrency=2, subtask_timeout=2.0)

        async def slow(payload, ctx):
            await asyncio.sleep(0.05)
            return payload

        worker = FunctionWorker(slow)
        results = await asyncio.gather(
            *(pool.execute(worker, i, _ctx(f"s{i}")) for i in range(6))
        )
        assert results == list(range(6))
        assert pool.peak == 2

    def test_from_settings(self):
        pool = WorkerPool.from_settings(Settings(max_concurrency=3, subtask_timeout=4.0))
        assert pool.max_concurrency == 3
        assert pool.subtask_timeout == 4.0

    def test_rejects_bad_limits(self):
        with pytest.raises(ValueError):
            WorkerPool(max_concurrency=0)
        with pytest.raises(ValueError):
            WorkerPool(subtask_timeout=0)


class TestWorkers:
    @pytest.mark.asyncio
    async def test_sync_function_runs_off_loop_thread(self):
        loop_thread = threading.get_ident()

        def blocking(payload):
            time.sleep(0.01)
            return threading.get_ident()

        worker_thread = await FunctionWorker(blocking).execute(None, _ctx())
        assert worker_thread != loop_thread

    @pytest.mark.asyncio
    async def test_single_argument_callable_gets_payload_only(self):
        async def upper(payload):
            return payload.upper()

        assert await FunctionWorker(upper).execute("abc", _ctx()) == "ABC"

    def test_as_worker(self):
        class Custom:
            async def execute(self, payload, ctx):
                return payload

        custom = Custom()
        assert as_worker(custom) is custom
        assert isinstance(as_worker(_echo), Worker)
        with pytest.raises(TypeError):
            as_worker(42)  # type: ignore[arg-type]

    def test_normalize_rejects_empty_type(self):
        with pytest.raises(ValueError):
            normalize_workers({"": _echo})


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_parent_cancels_children(self):
        parent = CancellationToken()
        child = parent.child()
        grandchild = child.child()
        parent.cancel("stop")
        assert child.cancelled and grandchild.cancelled
        assert grandchild.reason == "stop"
        assert await grandchild.wait() == "stop"

    def test_child_cancel_does_not_reach_parent(self):
        parent = CancellationToken()
        parent.child().cancel("timeout")
        assert not parent.cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self):
        parent = CancellationToken()
        parent.cancel("late")
        assert parent.child().cancelled
