"""Task orchestration: plan, execute in waves, synthesise.

State machine per task:

    PLANNING ──▶ EXECUTING ──▶ SYNTHESIZING ──▶ COMPLETED
        │            │               │
        └────────────┴───────────────┴────────▶ FAILED

Control flow:
1. Decompose the task (external collaborator) unless subtasks are given
2. Build and validate the dependency graph, plan execution waves.
   Planning errors are raised to the caller before any worker runs
3. Run waves strictly one after another. Inside a wave every runnable
   subtask is submitted to the bounded worker pool at once; the response
   cache is consulted first and short-circuits on a hit
4. Successful results go into the response cache and the task's memory
   cascade. Failed, timed out or cancelled subtasks block their dependents,
   which are marked SKIPPED (transitively, wave by wave)
5. If a critical subtask failed or was skipped the task FAILS with the
   originating error attached; otherwise the synthesizer merges the
   (possibly partial) results and the task COMPLETES

Example:
    orchestrator = Orchestrator({"search": search_worker, "write": writer})
    outcome = await orchestrator.run(task, subtasks)
    outcome.manifest.skipped   # ids that never ran
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from wavefront.cache import ResponseCache
from wavefront.config import Settings
from wavefront.decomposition import Decomposer
from wavefront.errors import (
    InvalidDecompositionError,
    InvalidStateTransition,
    NoWorkerForTypeError,
    OrchestrationError,
    PlanningError,
    SubtaskCancelledError,
    SubtaskError,
    SubtaskExecutionError,
    SubtaskTimeoutError,
    SynthesisError,
    TaskAlreadyActiveError,
    TaskCancelledError,
    TaskExecutionError,
    UnknownDependencyError,
)
from wavefront.graph import (
    DependencyGraph,
    ExecutionWave,
    build_graph,
    plan_waves,
    topological_order,
)
from wavefront.memory import LongTermStore, MemoryCascade
from wavefront.models import (
    TERMINAL_TASK_STATES,
    Subtask,
    SubtaskResult,
    SubtaskStatus,
    Task,
    TaskState,
)
from wavefront.orchestrator.pool import WorkerPool
from wavefront.synthesis import Manifest, ResultSynthesizer, SynthesisStrategy
from wavefront.telemetry import metrics
from wavefront.telemetry.logging import bind_subtask_context, bind_task_context
from wavefront.telemetry.tracing import create_span, mark_span_error
from wavefront.workers import CancellationToken, SubtaskContext, Worker, normalize_workers

log = structlog.get_logger(__name__)

_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PLANNING: frozenset({TaskState.EXECUTING, TaskState.FAILED}),
    TaskState.EXECUTING: frozenset({TaskState.SYNTHESIZING, TaskState.FAILED}),
    TaskState.SYNTHESIZING: frozenset({TaskState.COMPLETED, TaskState.FAILED}),
    TaskState.COMPLETED: frozenset(),
    TaskState.FAILED: frozenset(),
}


@dataclass
class TaskOutcome:
    """Structured result every caller receives, success or not."""

    task_id: str
    state: TaskState
    output: Any
    manifest: Manifest
    error: OrchestrationError | None = None
    results: dict[str, SubtaskResult] = field(default_factory=dict)
    waves: list[ExecutionWave] = field(default_factory=list)
    state_history: list[TaskState] = field(default_factory=list)
    cancelled: bool = False

    @property
    def completed(self) -> bool:
        return self.state is TaskState.COMPLETED

    @property
    def partial(self) -> bool:
        return self.completed and self.manifest.is_partial

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
            "error_kind": getattr(self.error, "kind", None),
            "cancelled": self.cancelled,
            "waves": [list(w.subtask_ids) for w in self.waves],
            "state_history": [s.value for s in self.state_history],
            "manifest": self.manifest.to_dict(),
        }


class TaskRun:
    """One task's execution: owns its graph, results, cache and cascade.

    Created by ``Orchestrator.submit``; callers use ``wait`` and ``cancel``.
    """

    def __init__(
        self,
        task: Task,
        *,
        workers: Mapping[str, Worker],
        cache: ResponseCache,
        cascade: MemoryCascade,
        pool: WorkerPool,
        synthesizer: ResultSynthesizer,
    ) -> None:
        self.task = task
        self.cache = cache
        self.cascade = cascade
        self._workers = workers
        self._pool = pool
        self._synthesizer = synthesizer

        self.state = TaskState.PLANNING
        self.state_history: list[TaskState] = [TaskState.PLANNING]
        self.graph: DependencyGraph | None = None
        self.waves: list[ExecutionWave] = []
        self.results: dict[str, SubtaskResult] = {}
        self.critical: frozenset[str] = frozenset()

        self._token = CancellationToken()
        self._discard = False
        self._runner: asyncio.Task[TaskOutcome] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, target: TaskState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state.value, target.value)
        log.info(
            "orchestrator.state_transition",
            task_id=self.task.id,
            from_state=self.state.value,
            to_state=target.value,
        )
        self.state = target
        self.state_history.append(target)

    def plan(self, subtasks: Iterable[Subtask], critical: Iterable[str] = ()) -> None:
        """Build the graph and waves. Raises PlanningError, leaving the run FAILED."""
        try:
            graph = build_graph(subtasks)
            critical_ids = frozenset(critical) | {
                sid for sid, subtask in graph.subtasks.items() if subtask.critical
            }
            for sid in sorted(critical_ids):
                if sid not in graph:
                    raise UnknownDependencyError("<critical>", sid)
            waves = plan_waves(graph)
        except PlanningError as exc:
            self.fail_planning(exc)
            raise

        self.graph = graph
        self.waves = waves
        self.critical = critical_ids
        self.results = {
            sid: SubtaskResult(subtask_id=sid, worker_type=subtask.worker_type)
            for sid, subtask in graph.subtasks.items()
        }
        log.info(
            "orchestrator.planned",
            task_id=self.task.id,
            subtask_count=len(graph),
            wave_count=len(waves),
            critical=sorted(critical_ids),
        )

    def fail_planning(self, exc: PlanningError) -> None:
        log.error(
            "orchestrator.planning_failed",
            task_id=self.task.id,
            error_kind=exc.kind.value,
            error=str(exc),
        )
        self._transition(TaskState.FAILED)
        metrics.tasks_total.labels(state=TaskState.FAILED.value).inc()

    def start(self) -> None:
        if self.graph is None:
            raise InvalidStateTransition(self.state.value, TaskState.EXECUTING.value)
        if self._runner is None:
            self._runner = asyncio.create_task(self._execute(), name=f"wavefront:{self.task.id}")

    def cancel(self, *, discard: bool = False) -> None:
        """Cancel the run.

        In-flight subtasks of the current wave receive the cancellation
        signal and later waves never start. Unless ``discard`` is set, the
        completed results are still synthesised as a partial outcome.
        """
        if self.state in TERMINAL_TASK_STATES:
            return
        self._discard = self._discard or discard
        log.info("orchestrator.cancel_requested", task_id=self.task.id, discard=discard)
        self._token.cancel("task cancelled")

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def done(self) -> bool:
        return self._runner is not None and self._runner.done()

    def add_done_callback(self, callback: Callable[[TaskRun], None]) -> None:
        if self._runner is None:
            raise InvalidStateTransition(self.state.value, TaskState.EXECUTING.value)
        self._runner.add_done_callback(lambda _: callback(self))

    async def wait(self) -> TaskOutcome:
        if self._runner is None:
            raise InvalidStateTransition(self.state.value, TaskState.EXECUTING.value)
        return await asyncio.shield(self._runner)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self) -> TaskOutcome:
        assert self.graph is not None
        bind_task_context(self.task.id)

        with create_span(
            "wavefront.task",
            attributes={"task.id": self.task.id, "task.subtasks": len(self.graph)},
        ) as span:
            try:
                self._transition(TaskState.EXECUTING)

                for wave in self.waves:
                    if self._token.cancelled:
                        log.info(
                            "orchestrator.waves_abandoned",
                            task_id=self.task.id,
                            at_wave=wave.index,
                        )
                        break
                    await self._run_wave(wave)

                self._skip_unresolved()
                outcome = await self._finish()
            except Exception as exc:
                outcome = self._abort(exc)
            span.set_attribute("task.state", outcome.state.value)
            if outcome.error is not None:
                mark_span_error(span, str(outcome.error))
            return outcome

    def _abort(self, exc: Exception) -> TaskOutcome:
        """Turn an engine failure into a FAILED outcome with a full manifest."""
        log.exception("orchestrator.task_aborted", task_id=self.task.id)
        self._token.cancel("task aborted")
        for sid in topological_order(self.waves):
            result = self.results[sid]
            if result.status is SubtaskStatus.RUNNING:
                result.mark_failed(SubtaskStatus.CANCELLED, SubtaskCancelledError(sid, "task aborted"))
            elif result.status is SubtaskStatus.PENDING:
                result.mark_skipped(self._blocking_dependency(sid))
        manifest = Manifest.build(
            (self.results[sid] for sid in topological_order(self.waves)), self.critical
        )
        error = exc if isinstance(exc, OrchestrationError) else TaskExecutionError(self.task.id, exc)
        if self.state in TERMINAL_TASK_STATES:
            return self._outcome(None, manifest, error)
        return self._fail(error, manifest)

    async def _run_wave(self, wave: ExecutionWave) -> None:
        runnable: list[str] = []
        for sid in wave.subtask_ids:
            result = self.results[sid]
            result.wave = wave.index
            blocker = self._blocking_dependency(sid)
            if blocker is not None:
                self._skip(sid, blocker)
            else:
                runnable.append(sid)

        with create_span(
            "wavefront.wave",
            attributes={"wave.index": wave.index, "wave.size": len(wave)},
        ) as span:
            log.info(
                "orchestrator.wave_start",
                wave=wave.index,
                runnable=runnable,
                skipped=len(wave) - len(runnable),
            )
            settled = await asyncio.gather(
                *(self._run_subtask(sid) for sid in runnable), return_exceptions=True
            )
            for sid, exc in zip(runnable, settled):
                if isinstance(exc, BaseException):
                    self._fail_unexpectedly(sid, exc)

            failed = [sid for sid in runnable if self.results[sid].status.is_failure]
            span.set_attribute("wave.failed", len(failed))
            log.info(
                "orchestrator.wave_complete",
                wave=wave.index,
                succeeded=len(runnable) - len(failed),
                failed=failed,
            )

    async def _run_subtask(self, sid: str) -> None:
        assert self.graph is not None
        subtask = self.graph.get(sid)
        result = self.results[sid]
        bind_subtask_context(sid, subtask.worker_type)

        with create_span(
            "wavefront.subtask",
            attributes={"subtask.id": sid, "subtask.worker_type": subtask.worker_type},
        ) as span:
            result.mark_running()

            cached_value, hit = await self._cache_lookup(subtask)
            if hit:
                result.mark_succeeded(cached_value, cached=True)
                await self._record_output(subtask, cached_value, store_in_cache=False)
                span.set_attribute("subtask.cached", True)
                log.info("orchestrator.subtask_cache_hit", subtask_id=sid)
                self._count(result)
                return

            try:
                worker = self._workers.get(subtask.worker_type)
                if worker is None:
                    raise NoWorkerForTypeError(sid, subtask.worker_type)

                ctx = SubtaskContext(
                    task_id=self.task.id,
                    subtask_id=sid,
                    worker_type=subtask.worker_type,
                    token=self._token.child(),
                    dependency_outputs={
                        dep: self.results[dep].output for dep in sorted(subtask.depends_on)
                    },
                )
                output = await self._pool.execute(worker, subtask.payload, ctx)
            except SubtaskError as exc:
                result.mark_failed(_status_for(exc), exc)
                mark_span_error(span, str(exc))
                log.warning(
                    "orchestrator.subtask_failed",
                    subtask_id=sid,
                    status=result.status.value,
                    error_kind=exc.kind.value,
                    error=str(exc),
                )
            else:
                result.mark_succeeded(output)
                await self._record_output(subtask, output, store_in_cache=True)
                log.info("orchestrator.subtask_complete", subtask_id=sid, duration_ms=result.duration_ms)

            self._count(result)

    async def _cache_lookup(self, subtask: Subtask) -> tuple[Any, bool]:
        """Cache read; a failing cache is treated as a miss."""
        try:
            return await self.cache.get(subtask.worker_type, subtask.payload)
        except Exception as exc:
            log.warning(
                "orchestrator.cache_lookup_failed",
                subtask_id=subtask.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None, False

    async def _record_output(self, subtask: Subtask, output: Any, *, store_in_cache: bool) -> None:
        """Write a successful output to the cache and memory cascade.

        The subtask stays SUCCEEDED when either write fails.
        """
        try:
            if store_in_cache:
                await self.cache.put(subtask.worker_type, subtask.payload, output)
            await self.cascade.remember(output, source=subtask.id)
        except Exception as exc:
            log.error(
                "orchestrator.result_recording_failed",
                subtask_id=subtask.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _fail_unexpectedly(self, sid: str, exc: BaseException) -> None:
        log.error(
            "orchestrator.subtask_crashed",
            subtask_id=sid,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        result = self.results[sid]
        if not result.status.is_terminal:
            if isinstance(exc, Exception):
                result.mark_failed(SubtaskStatus.FAILED, SubtaskExecutionError(sid, exc))
            else:
                result.mark_failed(SubtaskStatus.CANCELLED, SubtaskCancelledError(sid, "aborted"))
            self._count(result)

    def _blocking_dependency(self, sid: str) -> str | None:
        """Root failed subtask that prevents ``sid`` from running, if any."""
        assert self.graph is not None
        for dep in sorted(self.graph.dependencies[sid]):
            dep_result = self.results[dep]
            if dep_result.status.is_failure:
                return dep_result.blocked_by or dep
        return None

    def _skip(self, sid: str, blocked_by: str | None) -> None:
        result = self.results[sid]
        result.mark_skipped(blocked_by)
        log.info("orchestrator.subtask_skipped", subtask_id=sid, blocked_by=blocked_by)
        self._count(result)

    def _skip_unresolved(self) -> None:
        """Mark subtasks from abandoned waves as skipped."""
        for sid in topological_order(self.waves):
            if self.results[sid].status is SubtaskStatus.PENDING:
                self._skip(sid, self._blocking_dependency(sid))

    @staticmethod
    def _count(result: SubtaskResult) -> None:
        metrics.subtasks_total.labels(
            worker_type=result.worker_type, status=result.status.value
        ).inc()

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _finish(self) -> TaskOutcome:
        assert self.graph is not None
        order = topological_order(self.waves)
        manifest = Manifest.build((self.results[sid] for sid in order), self.critical)

        if self._token.cancelled and self._discard:
            return self._fail(TaskCancelledError(self.task.id), manifest)

        critical_error = self._critical_failure(order)
        if critical_error is not None:
            return self._fail(critical_error, manifest)

        self._transition(TaskState.SYNTHESIZING)
        memory = await self.cascade.items()
        try:
            synthesis = await self._synthesizer.synthesize(
                self.task,
                self.graph,
                order,
                self.results,
                memory,
                self.critical,
            )
        except SynthesisError as exc:
            return self._fail(exc, manifest)

        self._transition(TaskState.COMPLETED)
        metrics.tasks_total.labels(state=TaskState.COMPLETED.value).inc()
        log.info(
            "orchestrator.task_completed",
            task_id=self.task.id,
            partial=synthesis.manifest.is_partial,
            cancelled=self._token.cancelled,
        )
        return self._outcome(synthesis.output, synthesis.manifest, None)

    def _critical_failure(self, order: list[str]) -> OrchestrationError | None:
        """Error of the first critical subtask that failed or was skipped."""
        for sid in order:
            if sid not in self.critical:
                continue
            result = self.results[sid]
            if not result.status.is_failure:
                continue
            if result.error is not None:
                return result.error
            if result.blocked_by is not None:
                origin = self.results[result.blocked_by].error
                if origin is not None:
                    return origin
            return TaskCancelledError(self.task.id)
        return None

    def _fail(self, error: OrchestrationError, manifest: Manifest) -> TaskOutcome:
        self._transition(TaskState.FAILED)
        metrics.tasks_total.labels(state=TaskState.FAILED.value).inc()
        log.error(
            "orchestrator.task_failed",
            task_id=self.task.id,
            error_kind=getattr(error, "kind", None),
            error=str(error),
        )
        return self._outcome(None, manifest, error)

    def _outcome(self, output: Any, manifest: Manifest, error: OrchestrationError | None) -> TaskOutcome:
        return TaskOutcome(
            task_id=self.task.id,
            state=self.state,
            output=output,
            manifest=manifest,
            error=error,
            results=dict(self.results),
            waves=list(self.waves),
            state_history=list(self.state_history),
            cancelled=self._token.cancelled,
        )


def _status_for(exc: SubtaskError) -> SubtaskStatus:
    if isinstance(exc, SubtaskTimeoutError):
        return SubtaskStatus.TIMED_OUT
    if isinstance(exc, SubtaskCancelledError):
        return SubtaskStatus.CANCELLED
    return SubtaskStatus.FAILED


class Orchestrator:
    """Entry point: run tasks against an explicit set of workers.

    Everything is injected; there is no global state. By default each task
    gets its own response cache and memory cascade. Pass ``cache`` to share
    one cache across tasks, and ``pool`` to share a concurrency limit.
    """

    def __init__(
        self,
        workers: Mapping[str, Worker | Callable[..., Any]],
        *,
        settings: Settings | None = None,
        decomposer: Decomposer | None = None,
        synthesizer: ResultSynthesizer | None = None,
        strategy: SynthesisStrategy | None = None,
        cache: ResponseCache | None = None,
        pool: WorkerPool | None = None,
        long_term_store: LongTermStore | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            workers: ``worker_type -> Worker`` (plain callables are wrapped)
            settings: Engine settings; defaults to ``Settings()``
            decomposer: Used when ``run``/``submit`` get no subtasks
            synthesizer: Result synthesizer; built from ``strategy`` if absent
            strategy: Synthesis strategy (defaults to concatenation)
            cache: Shared response cache; a fresh one per task when None
            pool: Shared worker pool; one pool per orchestrator when None
            long_term_store: Backing store for every cascade's long-term tier
        """
        if synthesizer is not None and strategy is not None:
            raise ValueError("Pass either synthesizer or strategy, not both")

        self._settings = settings or Settings()
        self._workers = normalize_workers(workers)
        self._decomposer = decomposer
        self._synthesizer = synthesizer or ResultSynthesizer(strategy)
        self._shared_cache = cache
        self._pool = pool or WorkerPool.from_settings(self._settings)
        self._long_term_store = long_term_store
        self._runs: dict[str, TaskRun] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def worker_types(self) -> list[str]:
        return sorted(self._workers)

    def active_runs(self) -> list[TaskRun]:
        return [run for run in self._runs.values() if not run.done]

    def get_run(self, task_id: str) -> TaskRun | None:
        return self._runs.get(task_id)

    def plan(self, subtasks: Iterable[Subtask]) -> tuple[DependencyGraph, list[ExecutionWave]]:
        """Validate subtasks and compute waves without executing anything."""
        graph = build_graph(subtasks)
        return graph, plan_waves(graph)

    async def submit(
        self,
        task: Task,
        subtasks: Iterable[Subtask] | None = None,
        *,
        critical: Iterable[str] = (),
    ) -> TaskRun:
        """Plan a task and start executing it in the background.

        Args:
            task: Task to run
            subtasks: Pre-decomposed subtasks; the decomposer is used if None
            critical: Extra subtask ids whose failure fails the task

        Returns:
            The started TaskRun

        Raises:
            TaskAlreadyActiveError: A run with this task id is still active
            PlanningError: Decomposition, validation or planning failed
        """
        self._ensure_not_active(task.id)
        run = TaskRun(
            task,
            workers=self._workers,
            cache=self._shared_cache or ResponseCache.from_settings(self._settings),
            cascade=MemoryCascade.from_settings(self._settings, self._long_term_store),
            pool=self._pool,
            synthesizer=self._synthesizer,
        )
        log.info("orchestrator.task_submitted", task_id=task.id)

        if subtasks is None:
            subtasks = await self._decompose(run)

        self._ensure_not_active(task.id)
        run.plan(subtasks, critical)
        self._runs[task.id] = run
        run.start()
        run.add_done_callback(self._forget)
        return run

    async def run(
        self,
        task: Task,
        subtasks: Iterable[Subtask] | None = None,
        *,
        critical: Iterable[str] = (),
    ) -> TaskOutcome:
        """Plan, execute and synthesise a task, returning its outcome.

        Raises:
            PlanningError: Before any worker runs, on invalid decomposition
        """
        run = await self.submit(task, subtasks, critical=critical)
        return await run.wait()

    def cancel(self, task_id: str, *, discard: bool = False) -> bool:
        run = self._runs.get(task_id)
        if run is None or run.done:
            return False
        run.cancel(discard=discard)
        return True

    def _ensure_not_active(self, task_id: str) -> None:
        existing = self._runs.get(task_id)
        if existing is not None and not existing.done:
            raise TaskAlreadyActiveError(task_id)

    def _forget(self, run: TaskRun) -> None:
        """Drop a finished run; callers keep their own TaskRun reference."""
        if self._runs.get(run.task.id) is run:
            del self._runs[run.task.id]

    async def _decompose(self, run: TaskRun) -> list[Subtask]:
        if self._decomposer is None:
            error = InvalidDecompositionError("No subtasks given and no decomposer configured")
            run.fail_planning(error)
            raise error
        try:
            return await self._decomposer.decompose(run.task)
        except PlanningError as exc:
            run.fail_planning(exc)
            raise
        except Exception as exc:
            error = InvalidDecompositionError(f"Decomposition failed: {exc}")
            run.fail_planning(error)
            raise error from exc
