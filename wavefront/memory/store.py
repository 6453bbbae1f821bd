"""Memory items, tier storage and the long-term store contract.

Working and short-term tiers are in-process. The long-term tier delegates
to a ``LongTermStore``, normally backed by an external content or vector
store. ``InMemoryLongTermStore`` is the default for tests and single
process use.

Matching in the in-process tiers (and the default long-term store) is
lexical: the share of query terms that appear in the item's payload text.
"""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog

log = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class MemoryTier(StrEnum):
    """Tiers ordered hottest to coldest."""

    WORKING = "working"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


@dataclass(frozen=True)
class MemoryItem:
    """A recorded subtask result or derived fact.

    Items are never mutated in place; a cascade produces a copy with the new
    tier via ``with_tier``.
    """

    payload: Any
    tier: MemoryTier = MemoryTier.WORKING
    inserted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    source: str | None = None

    def with_tier(self, tier: MemoryTier) -> MemoryItem:
        return replace(self, tier=tier)

    def text(self) -> str:
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, sort_keys=True, default=str)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "payload": self.payload,
            "tier": self.tier.value,
            "inserted_at": self.inserted_at.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        return cls(
            id=data["id"],
            payload=data["payload"],
            tier=MemoryTier(data["tier"]),
            inserted_at=datetime.fromisoformat(data["inserted_at"]),
            source=data.get("source"),
        )


ScoredItem = tuple[MemoryItem, float]


def tokenize(text: str) -> set[str]:
    return {token.lower() for token in _TOKEN_RE.findall(text)}


def lexical_score(query: str, item: MemoryItem) -> float:
    """Fraction of query terms present in the item. An empty query matches all."""
    terms = tokenize(query)
    if not terms:
        return 1.0
    return len(terms & tokenize(item.text())) / len(terms)


@runtime_checkable
class LongTermStore(Protocol):
    """Contract for the long-term tier's backing store."""

    async def search(self, query: str) -> list[ScoredItem]:
        """Return matching items with a match score in [0, 1]."""
        ...

    async def store(self, item: MemoryItem) -> None:
        ...

    async def purge(self, ids: Collection[str] | None = None) -> int:
        """Delete the given items (all items when ``ids`` is None)."""
        ...

    async def items(self) -> list[MemoryItem]:
        ...


class InMemoryLongTermStore:
    """Dict-backed long-term store with lexical matching.

    Does NOT persist across process restarts; use ``MemoryCascade.snapshot``.
    """

    def __init__(self) -> None:
        self._items: dict[str, MemoryItem] = {}

    async def search(self, query: str) -> list[ScoredItem]:
        scored = ((item, lexical_score(query, item)) for item in list(self._items.values()))
        return [(item, score) for item, score in scored if score > 0]

    async def store(self, item: MemoryItem) -> None:
        self._items[item.id] = item

    async def purge(self, ids: Collection[str] | None = None) -> int:
        if ids is None:
            removed = len(self._items)
            self._items.clear()
            return removed
        removed = 0
        for item_id in ids:
            if self._items.pop(item_id, None) is not None:
                removed += 1
        return removed

    async def items(self) -> list[MemoryItem]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


class TierBuffer:
    """Insertion-ordered, in-process tier.

    Mutations happen under ``lock``; ``search`` reads a copy of the current
    items and never takes the lock.
    """

    def __init__(self, tier: MemoryTier, max_size: int) -> None:
        if max_size < 1:
            raise ValueError(f"{tier.value} max size must be at least 1")
        self.tier = tier
        self.max_size = max_size
        self.lock = asyncio.Lock()
        self._items: list[MemoryItem] = []

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> list[MemoryItem]:
        return list(self._items)

    def append(self, item: MemoryItem) -> None:
        self._items.append(item.with_tier(self.tier))

    def extend(self, items: Iterable[MemoryItem]) -> None:
        self._items.extend(item.with_tier(self.tier) for item in items)

    def take_oldest(self, count: int) -> list[MemoryItem]:
        taken, self._items = self._items[:count], self._items[count:]
        return taken

    def clear(self) -> None:
        self._items.clear()

    async def search(self, query: str) -> list[ScoredItem]:
        scored = ((item, lexical_score(query, item)) for item in self.items())
        return [(item, score) for item, score in scored if score > 0]
