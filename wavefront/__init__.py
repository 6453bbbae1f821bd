"""Wavefront - dependency-aware task orchestration.

A task is decomposed into subtasks with declared dependencies, planned into
waves of independent subtasks, executed wave by wave on a bounded worker
pool, and merged by a pluggable synthesis strategy. Subtask results are
cached by (worker type, payload) and recorded into a tiered memory cascade.

Example:
    from wavefront import Orchestrator, Subtask, Task

    orchestrator = Orchestrator({"fetch": fetch, "summarise": summarise})
    outcome = await orchestrator.run(
        Task("Summarise the release notes"),
        [
            Subtask.of("notes", "fetch", {"url": url}),
            Subtask.of("summary", "summarise", depends_on=["notes"]),
        ],
    )
"""

from wavefront.cache import ResponseCache
from wavefront.config import Settings, get_settings
from wavefront.decomposition import (
    CallableDecomposer,
    Decomposer,
    parse_decomposition,
    subtasks_from_descriptors,
)
from wavefront.errors import (
    CyclicDependencyError,
    DuplicateSubtaskError,
    ErrorKind,
    InvalidDecompositionError,
    InvalidStateTransition,
    NoWorkerForTypeError,
    OrchestrationError,
    PlanningError,
    PlanningInvariantViolation,
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
    render_plan,
    topological_order,
)
from wavefront.memory import (
    InMemoryLongTermStore,
    LongTermStore,
    MemoryCascade,
    MemoryItem,
    MemoryTier,
    RankedMemory,
)
from wavefront.models import Subtask, SubtaskResult, SubtaskStatus, Task, TaskState
from wavefront.orchestrator import Orchestrator, TaskOutcome, TaskRun, WorkerPool
from wavefront.synthesis import (
    CallableStrategy,
    ConcatenationStrategy,
    Critique,
    MajorityVoteStrategy,
    Manifest,
    ReflectionLoop,
    ResultSynthesizer,
    SynthesisStrategy,
    SynthesisView,
    WeightedMergeStrategy,
)
from wavefront.workers import CancellationToken, FunctionWorker, SubtaskContext, Worker

__version__ = "0.1.0"

__all__ = [
    "CallableDecomposer",
    "CallableStrategy",
    "CancellationToken",
    "ConcatenationStrategy",
    "Critique",
    "CyclicDependencyError",
    "Decomposer",
    "DependencyGraph",
    "DuplicateSubtaskError",
    "ErrorKind",
    "ExecutionWave",
    "FunctionWorker",
    "InMemoryLongTermStore",
    "InvalidDecompositionError",
    "InvalidStateTransition",
    "LongTermStore",
    "MajorityVoteStrategy",
    "Manifest",
    "MemoryCascade",
    "MemoryItem",
    "MemoryTier",
    "NoWorkerForTypeError",
    "OrchestrationError",
    "Orchestrator",
    "PlanningError",
    "PlanningInvariantViolation",
    "RankedMemory",
    "ReflectionLoop",
    "ResponseCache",
    "ResultSynthesizer",
    "Settings",
    "Subtask",
    "SubtaskCancelledError",
    "SubtaskContext",
    "SubtaskError",
    "SubtaskExecutionError",
    "SubtaskResult",
    "SubtaskStatus",
    "SubtaskTimeoutError",
    "SynthesisError",
    "SynthesisStrategy",
    "SynthesisView",
    "Task",
    "TaskAlreadyActiveError",
    "TaskCancelledError",
    "TaskExecutionError",
    "TaskOutcome",
    "TaskRun",
    "TaskState",
    "UnknownDependencyError",
    "WeightedMergeStrategy",
    "Worker",
    "WorkerPool",
    "build_graph",
    "get_settings",
    "parse_decomposition",
    "plan_waves",
    "render_plan",
    "subtasks_from_descriptors",
    "topological_order",
]
