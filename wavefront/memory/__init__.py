"""Tiered memory for intermediate findings.

Public API:
    MemoryCascade         - Working → Short-term → Long-term store
    MemoryItem            - Recorded finding
    MemoryTier            - Tier enum
    RankedMemory          - Retrieval hit
    LongTermStore         - Protocol for the long-term backing store
    InMemoryLongTermStore - Default long-term store
"""

from wavefront.memory.cascade import MemoryCascade, RankedMemory
from wavefront.memory.store import (
    InMemoryLongTermStore,
    LongTermStore,
    MemoryItem,
    MemoryTier,
)

__all__ = [
    "InMemoryLongTermStore",
    "LongTermStore",
    "MemoryCascade",
    "MemoryItem",
    "MemoryTier",
    "RankedMemory",
]
