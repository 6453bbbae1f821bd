"""Goal decomposition adapters.

Decomposition itself is an external, usually LLM-backed collaborator. This
module only defines the contract and turns its output into ``Subtask``
objects; every result is still validated by ``build_graph`` before use.

Descriptor format (either key spelling is accepted):

    {
      "subtasks": [
        {"id": "research", "worker_type": "search", "payload": {...}, "depends_on": []},
        {"id": "draft", "workerType": "writer", "dependsOn": ["research"], "critical": true}
      ]
    }
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

import structlog

from wavefront.errors import InvalidDecompositionError
from wavefront.models import Subtask, Task

log = structlog.get_logger(__name__)


@runtime_checkable
class Decomposer(Protocol):
    async def decompose(self, task: Task) -> list[Subtask]:
        ...


class CallableDecomposer:
    """Adapt ``fn(task)`` returning subtasks or descriptor dicts, sync or async."""

    def __init__(self, fn: Callable[[Task], Any]) -> None:
        self._fn = fn

    async def decompose(self, task: Task) -> list[Subtask]:
        result = self._fn(task)
        if inspect.isawaitable(result):
            result = await result
        return subtasks_from_descriptors(result)


def _pick(descriptor: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in descriptor:
            return descriptor[name]
    return default


def subtasks_from_descriptors(descriptors: Iterable[Subtask | Mapping[str, Any]]) -> list[Subtask]:
    """Convert descriptor dicts (or ready ``Subtask``s) into ``Subtask`` objects.

    Raises:
        InvalidDecompositionError: A descriptor is malformed
    """
    subtasks: list[Subtask] = []
    for index, descriptor in enumerate(descriptors):
        if isinstance(descriptor, Subtask):
            subtasks.append(descriptor)
            continue
        if not isinstance(descriptor, Mapping):
            raise InvalidDecompositionError(
                f"Descriptor {index} must be a mapping, got {type(descriptor).__name__}"
            )

        subtask_id = _pick(descriptor, "id")
        worker_type = _pick(descriptor, "worker_type", "workerType")
        depends_on = _pick(descriptor, "depends_on", "dependsOn", "dependencies", default=[])

        if not subtask_id or not isinstance(subtask_id, str):
            raise InvalidDecompositionError(f"Descriptor {index} has no string 'id'")
        if not worker_type or not isinstance(worker_type, str):
            raise InvalidDecompositionError(f"Descriptor '{subtask_id}' has no 'worker_type'")
        if isinstance(depends_on, str) or not isinstance(depends_on, Iterable):
            raise InvalidDecompositionError(
                f"Descriptor '{subtask_id}' dependencies must be a list of ids"
            )

        subtasks.append(
            Subtask.of(
                id=subtask_id,
                worker_type=worker_type,
                payload=_pick(descriptor, "payload"),
                depends_on=[str(dep) for dep in depends_on],
                critical=bool(_pick(descriptor, "critical", default=False)),
            )
        )
    return subtasks


def parse_decomposition(
    text: str,
    *,
    task: Task | None = None,
    fallback_worker_type: str | None = None,
) -> list[Subtask]:
    """Parse a JSON decomposition document.

    Accepts ``{"subtasks": [...]}``, ``{"tasks": [...]}`` or a bare list.

    When the text is not valid JSON and both ``task`` and
    ``fallback_worker_type`` are given, returns a single subtask that hands
    the whole task description to the fallback worker.

    Raises:
        InvalidDecompositionError: Unparseable or malformed document with no
            fallback configured
    """
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        log.error("decomposition.json_failed", error=str(exc))
        if task is not None and fallback_worker_type:
            log.warning(
                "decomposition.fallback_single_subtask",
                task_id=task.id,
                worker_type=fallback_worker_type,
            )
            return [
                Subtask.of(
                    id="subtask_1",
                    worker_type=fallback_worker_type,
                    payload={"description": task.description, "context": task.context},
                )
            ]
        raise InvalidDecompositionError(f"Decomposition is not valid JSON: {exc}") from exc

    if isinstance(parsed, Mapping):
        parsed = _pick(parsed, "subtasks", "tasks")
    if not isinstance(parsed, list):
        raise InvalidDecompositionError("Decomposition must contain a list of subtasks")

    subtasks = subtasks_from_descriptors(parsed)
    log.info("decomposition.parsed", subtask_count=len(subtasks))
    return subtasks
