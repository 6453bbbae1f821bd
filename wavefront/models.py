"""Core data model: tasks, subtasks and per-subtask results."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from wavefront.errors import ErrorKind, OrchestrationError


class TaskState(StrEnum):
    """Lifecycle of a submitted task."""

    PLANNING = "planning"
    EXECUTING = "executing"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_TASK_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED})


class SubtaskStatus(StrEnum):
    """Status of a single subtask within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (SubtaskStatus.PENDING, SubtaskStatus.RUNNING)

    @property
    def is_failure(self) -> bool:
        """Any terminal status other than success blocks dependents."""
        return self.is_terminal and self is not SubtaskStatus.SUCCEEDED


@dataclass(frozen=True)
class Task:
    """Root unit of work submitted by a caller. Immutable once submitted."""

    description: str
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"task_{uuid.uuid4().hex[:12]}")


@dataclass(frozen=True)
class Subtask:
    """One unit of decomposed work.

    ``depends_on`` references other subtask ids in the same task. ``critical``
    subtasks force the task to fail when they fail or are skipped.
    """

    id: str
    worker_type: str
    payload: Any = None
    depends_on: frozenset[str] = field(default_factory=frozenset)
    critical: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("subtask id cannot be empty")
        if not self.worker_type:
            raise ValueError(f"subtask '{self.id}' must declare a worker_type")
        if not isinstance(self.depends_on, frozenset):
            object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    @classmethod
    def of(
        cls,
        id: str,
        worker_type: str,
        payload: Any = None,
        depends_on: Iterable[str] = (),
        critical: bool = False,
    ) -> Subtask:
        return cls(
            id=id,
            worker_type=worker_type,
            payload=payload,
            depends_on=frozenset(depends_on),
            critical=critical,
        )


@dataclass
class SubtaskResult:
    """Outcome of one subtask in a run.

    Owned by the orchestrator while the run is in flight; handed to the
    synthesizer read-only once the run resolves.
    """

    subtask_id: str
    worker_type: str
    status: SubtaskStatus = SubtaskStatus.PENDING
    output: Any = None
    error: OrchestrationError | None = None
    error_kind: ErrorKind | None = None
    cached: bool = False
    # Root failed subtask that caused this one to be skipped.
    blocked_by: str | None = None
    wave: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    @property
    def succeeded(self) -> bool:
        return self.status is SubtaskStatus.SUCCEEDED

    def mark_running(self) -> None:
        self.status = SubtaskStatus.RUNNING
        self.started_at = datetime.now(UTC)

    def mark_succeeded(self, output: Any, *, cached: bool = False) -> None:
        self.status = SubtaskStatus.SUCCEEDED
        self.output = output
        self.cached = cached
        self.finished_at = datetime.now(UTC)

    def mark_failed(self, status: SubtaskStatus, error: OrchestrationError) -> None:
        self.status = status
        self.error = error
        self.error_kind = getattr(error, "kind", None)
        self.finished_at = datetime.now(UTC)

    def mark_skipped(self, blocked_by: str | None) -> None:
        self.status = SubtaskStatus.SKIPPED
        self.blocked_by = blocked_by
        self.error_kind = ErrorKind.DEPENDENCY_FAILED if blocked_by else ErrorKind.TASK_CANCELLED
        self.finished_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtask_id": self.subtask_id,
            "worker_type": self.worker_type,
            "status": self.status.value,
            "error": str(self.error) if self.error else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "cached": self.cached,
            "blocked_by": self.blocked_by,
            "wave": self.wave,
            "duration_ms": self.duration_ms,
        }
