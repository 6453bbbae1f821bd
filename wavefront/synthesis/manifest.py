"""Structured per-subtask manifest returned with every task outcome."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from wavefront.models import SubtaskResult, SubtaskStatus


@dataclass(frozen=True)
class ManifestEntry:
    subtask_id: str
    worker_type: str
    status: SubtaskStatus
    wave: int | None = None
    cached: bool = False
    critical: bool = False
    error: str | None = None
    error_kind: str | None = None
    blocked_by: str | None = None
    duration_ms: int | None = None

    @classmethod
    def from_result(cls, result: SubtaskResult, *, critical: bool = False) -> ManifestEntry:
        return cls(
            subtask_id=result.subtask_id,
            worker_type=result.worker_type,
            status=result.status,
            wave=result.wave,
            cached=result.cached,
            critical=critical,
            error=str(result.error) if result.error else None,
            error_kind=result.error_kind.value if result.error_kind else None,
            blocked_by=result.blocked_by,
            duration_ms=result.duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtask_id": self.subtask_id,
            "worker_type": self.worker_type,
            "status": self.status.value,
            "wave": self.wave,
            "cached": self.cached,
            "critical": self.critical,
            "error": self.error,
            "error_kind": self.error_kind,
            "blocked_by": self.blocked_by,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class Manifest:
    """Which subtasks succeeded, failed or were skipped, in dependency order."""

    entries: tuple[ManifestEntry, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        results: Iterable[SubtaskResult],
        critical: frozenset[str] = frozenset(),
    ) -> Manifest:
        return cls(
            entries=tuple(
                ManifestEntry.from_result(r, critical=r.subtask_id in critical) for r in results
            )
        )

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, subtask_id: str) -> ManifestEntry:
        for entry in self.entries:
            if entry.subtask_id == subtask_id:
                return entry
        raise KeyError(subtask_id)

    def status_of(self, subtask_id: str) -> SubtaskStatus:
        return self[subtask_id].status

    def _with(self, *statuses: SubtaskStatus) -> list[str]:
        return [e.subtask_id for e in self.entries if e.status in statuses]

    @property
    def succeeded(self) -> list[str]:
        return self._with(SubtaskStatus.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        """Failed, timed out or cancelled subtasks."""
        return self._with(SubtaskStatus.FAILED, SubtaskStatus.TIMED_OUT, SubtaskStatus.CANCELLED)

    @property
    def skipped(self) -> list[str]:
        return self._with(SubtaskStatus.SKIPPED)

    @property
    def is_partial(self) -> bool:
        return len(self.succeeded) != len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtasks": [entry.to_dict() for entry in self.entries],
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }
