"""Error taxonomy for planning and execution.

Planning errors are raised synchronously from ``Orchestrator.run`` before
any worker is invoked. Subtask errors are never raised out of a run: they
are recorded on the ``SubtaskResult`` and surface in the manifest.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum


class ErrorKind(StrEnum):
    """Stable error codes used in manifests and logs."""

    UNKNOWN_DEPENDENCY = "unknown_dependency"
    CYCLIC_DEPENDENCY = "cyclic_dependency"
    DUPLICATE_SUBTASK = "duplicate_subtask"
    PLANNING_INVARIANT_VIOLATION = "planning_invariant_violation"
    NO_WORKER_FOR_TYPE = "no_worker_for_type"
    SUBTASK_TIMEOUT = "subtask_timeout"
    SUBTASK_EXECUTION_ERROR = "subtask_execution_error"
    SUBTASK_CANCELLED = "subtask_cancelled"
    DEPENDENCY_FAILED = "dependency_failed"
    TASK_CANCELLED = "task_cancelled"
    TASK_ALREADY_ACTIVE = "task_already_active"
    TASK_EXECUTION_FAILED = "task_execution_failed"
    INVALID_DECOMPOSITION = "invalid_decomposition"
    SYNTHESIS_FAILED = "synthesis_failed"


class OrchestrationError(Exception):
    """Base class for every error raised by the engine."""

    kind: ErrorKind


# ------------------------------------------------------------------ #
# Planning errors (fatal, raised before execution)
# ------------------------------------------------------------------ #


class PlanningError(OrchestrationError):
    """Raised while building or planning the dependency graph."""


class UnknownDependencyError(PlanningError):
    kind = ErrorKind.UNKNOWN_DEPENDENCY

    def __init__(self, subtask_id: str, dependency_id: str) -> None:
        self.subtask_id = subtask_id
        self.dependency_id = dependency_id
        super().__init__(
            f"Subtask '{subtask_id}' depends on unknown subtask '{dependency_id}'"
        )


class CyclicDependencyError(PlanningError):
    kind = ErrorKind.CYCLIC_DEPENDENCY

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class DuplicateSubtaskError(PlanningError):
    kind = ErrorKind.DUPLICATE_SUBTASK

    def __init__(self, subtask_id: str) -> None:
        self.subtask_id = subtask_id
        super().__init__(f"Subtask id '{subtask_id}' is declared more than once")


class InvalidDecompositionError(PlanningError):
    """The decomposition collaborator returned something unusable."""

    kind = ErrorKind.INVALID_DECOMPOSITION


class PlanningInvariantViolation(PlanningError):
    """The planner found nodes that can never become ready.

    Unreachable for graphs produced by ``build_graph``.
    """

    kind = ErrorKind.PLANNING_INVARIANT_VIOLATION

    def __init__(self, stuck: Sequence[str]) -> None:
        self.stuck = sorted(stuck)
        super().__init__(
            f"Planning stalled with unresolved subtasks: {', '.join(self.stuck)}"
        )


# ------------------------------------------------------------------ #
# Subtask errors (recorded per subtask, non-fatal by default)
# ------------------------------------------------------------------ #


class SubtaskError(OrchestrationError):
    def __init__(self, subtask_id: str, message: str) -> None:
        self.subtask_id = subtask_id
        super().__init__(message)


class NoWorkerForTypeError(SubtaskError):
    kind = ErrorKind.NO_WORKER_FOR_TYPE

    def __init__(self, subtask_id: str, worker_type: str) -> None:
        self.worker_type = worker_type
        super().__init__(subtask_id, f"No worker registered for type '{worker_type}'")


class SubtaskTimeoutError(SubtaskError):
    kind = ErrorKind.SUBTASK_TIMEOUT

    def __init__(self, subtask_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(subtask_id, f"Subtask '{subtask_id}' exceeded {timeout:g}s timeout")


class SubtaskExecutionError(SubtaskError):
    kind = ErrorKind.SUBTASK_EXECUTION_ERROR

    def __init__(self, subtask_id: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(
            subtask_id, f"Subtask '{subtask_id}' failed: {type(cause).__name__}: {cause}"
        )


class SubtaskCancelledError(SubtaskError):
    kind = ErrorKind.SUBTASK_CANCELLED

    def __init__(self, subtask_id: str, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(subtask_id, f"Subtask '{subtask_id}' cancelled: {reason or 'no reason'}")


class TaskCancelledError(OrchestrationError):
    kind = ErrorKind.TASK_CANCELLED

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' was cancelled and its results discarded")


class TaskAlreadyActiveError(OrchestrationError):
    kind = ErrorKind.TASK_ALREADY_ACTIVE

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' is already running on this orchestrator")


class TaskExecutionError(OrchestrationError):
    """The engine itself failed while running a task (not a worker failure)."""

    kind = ErrorKind.TASK_EXECUTION_FAILED

    def __init__(self, task_id: str, cause: BaseException) -> None:
        self.task_id = task_id
        self.cause = cause
        super().__init__(
            f"Task '{task_id}' aborted: {type(cause).__name__}: {cause}"
        )


class InvalidStateTransition(OrchestrationError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid task state transition {current} -> {target}")


class SynthesisError(OrchestrationError):
    kind = ErrorKind.SYNTHESIS_FAILED

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)
