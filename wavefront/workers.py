"""Worker capability contract and cooperative cancellation.

Workers are supplied by the caller as an explicit ``worker_type -> Worker``
map; there is no global registry. Every worker implements one method:

    async def execute(payload, ctx) -> result

Errors are raised as exceptions. ``ctx`` carries a ``CancellationToken``
that is tripped when the subtask times out or the task is cancelled;
long-running workers should poll ``ctx.cancelled`` or call
``ctx.raise_if_cancelled()`` between steps.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from wavefront.errors import SubtaskCancelledError

log = structlog.get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation signal.

    Child tokens are cancelled when their parent is, so cancelling a task's
    token reaches every in-flight subtask. ``cancel`` must be called from
    the event loop thread; ``cancelled`` may be read from any thread.
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._cancelled = False
        self._reason: str | None = None
        self._children: list[CancellationToken] = []
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        self._event.set()
        for child in self._children:
            child.cancel(reason)

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    async def wait(self) -> str | None:
        """Block until cancelled; returns the reason."""
        await self._event.wait()
        return self._reason


@dataclass
class SubtaskContext:
    """Execution context handed to a worker for one subtask."""

    task_id: str
    subtask_id: str
    worker_type: str
    token: CancellationToken
    timeout: float | None = None
    dependency_outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def raise_if_cancelled(self) -> None:
        if self.token.cancelled:
            raise SubtaskCancelledError(self.subtask_id, self.token.reason)


@runtime_checkable
class Worker(Protocol):
    """Capability every worker variant implements."""

    async def execute(self, payload: Any, ctx: SubtaskContext) -> Any:
        ...


class FunctionWorker:
    """Adapt a plain callable to the ``Worker`` contract.

    Coroutine functions are awaited; regular functions run in a thread so a
    blocking worker never stalls the event loop. Callables taking a single
    parameter receive only the payload.
    """

    def __init__(self, fn: Callable[..., Any], *, name: str | None = None) -> None:
        self._fn = fn
        self._is_async = inspect.iscoroutinefunction(fn)
        self._wants_context = _accepts_two_args(fn)
        self.name = name or getattr(fn, "__name__", type(fn).__name__)

    async def execute(self, payload: Any, ctx: SubtaskContext) -> Any:
        args = (payload, ctx) if self._wants_context else (payload,)
        if self._is_async:
            return await self._fn(*args)
        return await asyncio.to_thread(self._fn, *args)

    def __repr__(self) -> str:
        return f"FunctionWorker({self.name})"


def _accepts_two_args(fn: Callable[..., Any]) -> bool:
    try:
        params = list(inspect.signature(fn).parameters.values())
    except (TypeError, ValueError):
        return True
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return True
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 2


def as_worker(candidate: Worker | Callable[..., Any]) -> Worker:
    """Return ``candidate`` if it already is a worker, otherwise wrap it."""
    if isinstance(candidate, Worker):
        return candidate
    if callable(candidate):
        return FunctionWorker(candidate)
    raise TypeError(f"{candidate!r} is neither a Worker nor callable")


def normalize_workers(workers: Mapping[str, Worker | Callable[..., Any]]) -> dict[str, Worker]:
    """Validate and wrap a caller-supplied worker map."""
    normalized: dict[str, Worker] = {}
    for worker_type, candidate in workers.items():
        if not worker_type:
            raise ValueError("worker_type cannot be empty")
        normalized[worker_type] = as_worker(candidate)
    log.debug("workers.registered", worker_types=sorted(normalized))
    return normalized
