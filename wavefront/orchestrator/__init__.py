"""Task orchestration.

Public API:
    Orchestrator - Plans, executes and synthesises tasks
    TaskRun      - Handle for one running task (wait / cancel)
    TaskOutcome  - Final state, output and manifest of a task
    WorkerPool   - Bounded, timeout-enforcing executor for worker calls
"""

from wavefront.orchestrator.core import Orchestrator, TaskOutcome, TaskRun
from wavefront.orchestrator.pool import WorkerPool

__all__ = [
    "Orchestrator",
    "TaskOutcome",
    "TaskRun",
    "WorkerPool",
]
