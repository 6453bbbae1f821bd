"""
Bounded worker pool for subtask execution.

Runs worker calls under a semaphore so at most ``max_concurrency`` execute
at once. Submitting to a full pool waits for a free slot (backpressure);
nothing else blocks. One pool may be shared by several concurrently running
tasks, in which case the limit applies across all of them.

Each call is bounded by a per-subtask timeout. On timeout, or when the
subtask's cancellation token trips, the token is cancelled (the cooperative
signal to the worker) and the worker's coroutine is cancelled. Workers
running in a thread cannot be interrupted: they see the token and the pool
stops waiting for them.

Failures are reported as ``SubtaskError`` subclasses:
- SubtaskTimeoutError: timeout elapsed
- SubtaskCancelledError: token tripped by task cancellation
- SubtaskExecutionError: the worker raised
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from wavefront.config import Settings
from wavefront.errors import (
    SubtaskCancelledError,
    SubtaskError,
    SubtaskExecutionError,
    SubtaskTimeoutError,
)
from wavefront.telemetry import metrics
from wavefront.workers import SubtaskContext, Worker

log = structlog.get_logger(__name__)

# How long to wait for a cancelled worker coroutine to unwind
_CANCEL_GRACE_SECONDS = 1.0


class WorkerPool:
    """Semaphore-bounded executor for worker calls.

    Example usage:
        pool = WorkerPool(max_concurrency=4, subtask_timeout=10.0)
        output = await pool.execute(worker, payload, ctx)
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 5,
        subtask_timeout: float = 30.0,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if subtask_timeout <= 0:
            raise ValueError("subtask_timeout must be positive")

        self._max_concurrency = max_concurrency
        self._subtask_timeout = subtask_timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._active = 0
        self._peak = 0
        self._abandoned: set[asyncio.Future[Any]] = set()

        log.info(
            "worker_pool.initialized",
            max_concurrency=max_concurrency,
            subtask_timeout=subtask_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkerPool:
        return cls(
            max_concurrency=settings.max_concurrency,
            subtask_timeout=settings.subtask_timeout,
        )

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def subtask_timeout(self) -> float:
        return self._subtask_timeout

    @property
    def active(self) -> int:
        """Worker calls currently holding a slot."""
        return self._active

    @property
    def peak(self) -> int:
        """Highest number of simultaneous worker calls observed."""
        return self._peak

    @property
    def abandoned(self) -> int:
        """Worker calls that outlived their cancellation grace period."""
        return len(self._abandoned)

    async def execute(
        self,
        worker: Worker,
        payload: Any,
        ctx: SubtaskContext,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Run one worker call inside a pool slot.

        Args:
            worker: Worker to invoke
            payload: Subtask payload, owned exclusively by this call
            ctx: Subtask context with its cancellation token
            timeout: Override of the pool's per-subtask timeout

        Returns:
            The worker's result

        Raises:
            SubtaskError: Timeout, cancellation or worker failure
        """
        limit = timeout if timeout is not None else self._subtask_timeout
        ctx.timeout = limit

        async with self._semaphore:
            self._active += 1
            self._peak = max(self._peak, self._active)
            metrics.active_subtasks.inc()
            start = time.monotonic()
            try:
                return await self._run(worker, payload, ctx, limit)
            finally:
                self._active -= 1
                metrics.active_subtasks.dec()
                metrics.subtask_duration_seconds.labels(worker_type=ctx.worker_type).observe(
                    time.monotonic() - start
                )

    async def _run(
        self,
        worker: Worker,
        payload: Any,
        ctx: SubtaskContext,
        limit: float,
    ) -> Any:
        if ctx.cancelled:
            raise SubtaskCancelledError(ctx.subtask_id, ctx.token.reason)

        work = asyncio.ensure_future(worker.execute(payload, ctx))
        cancel_watch = asyncio.ensure_future(ctx.token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, cancel_watch},
                timeout=limit,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            # The orchestrator itself is being torn down
            ctx.token.cancel("pool shutdown")
            work.cancel()
            raise
        finally:
            cancel_watch.cancel()

        if work in done:
            return self._collect(work, ctx)

        timed_out = not ctx.cancelled
        ctx.token.cancel("timeout" if timed_out else ctx.token.reason)
        work.cancel()
        await asyncio.wait({work}, timeout=_CANCEL_GRACE_SECONDS)
        if not work.done():
            self._abandon(work, ctx)

        if timed_out:
            log.warning(
                "worker_pool.subtask_timeout",
                subtask_id=ctx.subtask_id,
                timeout=limit,
            )
            raise SubtaskTimeoutError(ctx.subtask_id, limit)

        log.info(
            "worker_pool.subtask_cancelled",
            subtask_id=ctx.subtask_id,
            reason=ctx.token.reason,
        )
        raise SubtaskCancelledError(ctx.subtask_id, ctx.token.reason)

    def _abandon(self, work: asyncio.Future[Any], ctx: SubtaskContext) -> None:
        """Stop waiting for a worker that ignores cancellation but still reap it."""
        log.warning("worker_pool.worker_abandoned", subtask_id=ctx.subtask_id)
        self._abandoned.add(work)

        def reap(future: asyncio.Future[Any]) -> None:
            self._abandoned.discard(future)
            if future.cancelled():
                return
            exc = future.exception()
            if exc is not None:
                log.debug(
                    "worker_pool.abandoned_worker_failed",
                    subtask_id=ctx.subtask_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

        work.add_done_callback(reap)

    @staticmethod
    def _collect(work: asyncio.Future[Any], ctx: SubtaskContext) -> Any:
        if work.cancelled():
            raise SubtaskCancelledError(ctx.subtask_id, ctx.token.reason or "worker cancelled")

        exc = work.exception()
        if exc is None:
            return work.result()
        if isinstance(exc, SubtaskError):
            raise exc

        log.warning(
            "worker_pool.subtask_error",
            subtask_id=ctx.subtask_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise SubtaskExecutionError(ctx.subtask_id, exc) from exc
