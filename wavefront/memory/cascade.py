"""Three-tier memory cascade.

Findings are recorded into a small, hot Working tier and age downward as
tiers fill:

    record() ─▶ Working ──(oldest half)──▶ Short-term ──(oldest half)──▶ Long-term

- Working: when an insertion would exceed ``working_max_size`` the oldest
  half of Working (rounded up) moves to Short-term in one bulk move, halving Working so
  cascades stay infrequent.
- Short-term: when it exceeds ``short_term_max_size`` its oldest half (rounded
  up) moves to Long-term, repeating until it fits. If the long-term store
  rejects an item, the rest stay in Short-term and move on a later cascade.
- Long-term: never evicted automatically; only ``purge_long_term`` removes
  items.

Retrieval searches every tier, weights each match by the tier's recency
weight and sorts by the weighted score. The sort is stable, so equal scores
keep tier order (Working first) then insertion order.

Locking: each in-process tier has its own lock, always taken in
Working → Short-term order. A cascade holds the source tier's lock and
briefly the destination's; ``retrieve`` takes no locks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from wavefront.config import Settings
from wavefront.memory.store import (
    InMemoryLongTermStore,
    LongTermStore,
    MemoryItem,
    MemoryTier,
    TierBuffer,
)
from wavefront.telemetry import metrics

log = structlog.get_logger(__name__)


def _half_rounded_up(size: int) -> int:
    return (size + 1) // 2


@dataclass(frozen=True)
class RankedMemory:
    """A retrieval hit with its raw match score and weighted rank score."""

    item: MemoryItem
    match_score: float
    score: float

    @property
    def tier(self) -> MemoryTier:
        return self.item.tier


class MemoryCascade:
    """Working → Short-term → Long-term memory with bulk downward cascades."""

    def __init__(
        self,
        *,
        working_max_size: int = 64,
        short_term_max_size: int = 512,
        long_term_store: LongTermStore | None = None,
        tier_weights: dict[MemoryTier, float] | None = None,
    ) -> None:
        self._working = TierBuffer(MemoryTier.WORKING, working_max_size)
        self._short_term = TierBuffer(MemoryTier.SHORT_TERM, short_term_max_size)
        self._long_term: LongTermStore = (
            long_term_store if long_term_store is not None else InMemoryLongTermStore()
        )
        self._weights = {
            MemoryTier.WORKING: 1.0,
            MemoryTier.SHORT_TERM: 0.75,
            MemoryTier.LONG_TERM: 0.5,
        }
        if tier_weights:
            self._weights.update(tier_weights)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        long_term_store: LongTermStore | None = None,
    ) -> MemoryCascade:
        return cls(
            working_max_size=settings.working_max_size,
            short_term_max_size=settings.short_term_max_size,
            long_term_store=long_term_store,
            tier_weights={
                MemoryTier.WORKING: settings.working_weight,
                MemoryTier.SHORT_TERM: settings.short_term_weight,
                MemoryTier.LONG_TERM: settings.long_term_weight,
            },
        )

    @property
    def long_term_store(self) -> LongTermStore:
        return self._long_term

    # ------------------------------------------------------------------
    # Recording & cascading
    # ------------------------------------------------------------------

    async def record(self, item: MemoryItem) -> MemoryItem:
        """Insert an item into Working, cascading first if Working is full.

        Returns:
            The stored item (tier forced to Working).
        """
        stored = item.with_tier(MemoryTier.WORKING)
        async with self._working.lock:
            if len(self._working) + 1 > self._working.max_size:
                batch = self._working.take_oldest(_half_rounded_up(len(self._working)))
                await self._cascade_to_short_term(batch)
            self._working.append(stored)

        log.debug("memory.recorded", item_id=stored.id, source=stored.source)
        return stored

    async def remember(self, payload: Any, *, source: str | None = None) -> MemoryItem:
        """Shorthand for ``record(MemoryItem(payload, source=source))``."""
        return await self.record(MemoryItem(payload=payload, source=source))

    async def _cascade_to_short_term(self, batch: list[MemoryItem]) -> None:
        async with self._short_term.lock:
            self._short_term.extend(batch)
            metrics.memory_cascades_total.labels(source_tier=MemoryTier.WORKING.value).inc()
            log.info(
                "memory.cascade",
                source_tier=MemoryTier.WORKING.value,
                moved=len(batch),
                working_size=len(self._working),
                short_term_size=len(self._short_term),
            )

            while len(self._short_term) > self._short_term.max_size:
                overflow = self._short_term.items()[: _half_rounded_up(len(self._short_term))]
                moved = await self._cascade_to_long_term(overflow)
                self._short_term.take_oldest(moved)
                if moved < len(overflow):
                    break

    async def _cascade_to_long_term(self, batch: list[MemoryItem]) -> int:
        """Store ``batch`` in long-term, oldest first. Returns how many were accepted.

        Items leave Short-term only after the store accepted them, so they
        stay visible to retrieve() for the whole move. A store failure ends
        the move; recording never fails because the external store is down.
        """
        moved = 0
        for item in batch:
            try:
                await self._long_term.store(item.with_tier(MemoryTier.LONG_TERM))
            except Exception as exc:
                log.warning(
                    "memory.long_term_store_failed",
                    item_id=item.id,
                    moved=moved,
                    pending=len(batch) - moved,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                break
            moved += 1
        if not moved:
            return 0
        metrics.memory_cascades_total.labels(source_tier=MemoryTier.SHORT_TERM.value).inc()
        log.info(
            "memory.cascade",
            source_tier=MemoryTier.SHORT_TERM.value,
            moved=moved,
        )
        return moved

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve(self, query: str, *, limit: int | None = None) -> list[RankedMemory]:
        """Search all tiers and rank by tier recency weight times match score.

        Args:
            query: Free-text query; an empty query matches every item
            limit: Optional cap on the number of results

        Returns:
            RankedMemory list, best first
        """
        working, short_term, long_term = await asyncio.gather(
            self._working.search(query),
            self._short_term.search(query),
            self._long_term.search(query),
        )

        ranked = [
            self._rank(item, score, tier)
            for tier, hits in (
                (MemoryTier.WORKING, working),
                (MemoryTier.SHORT_TERM, short_term),
                (MemoryTier.LONG_TERM, long_term),
            )
            for item, score in hits
        ]
        ranked.sort(key=lambda r: r.score, reverse=True)

        log.debug(
            "memory.retrieved",
            query_length=len(query),
            hits=len(ranked),
        )
        return ranked[:limit] if limit is not None else ranked

    def _rank(self, item: MemoryItem, match_score: float, tier: MemoryTier) -> RankedMemory:
        if item.tier is not tier:
            item = item.with_tier(tier)
        return RankedMemory(
            item=item,
            match_score=match_score,
            score=match_score * self._weights[tier],
        )

    # ------------------------------------------------------------------
    # Inspection & management
    # ------------------------------------------------------------------

    def working_items(self) -> list[MemoryItem]:
        return self._working.items()

    def short_term_items(self) -> list[MemoryItem]:
        return self._short_term.items()

    async def items(self) -> list[MemoryItem]:
        """Every item held, Working first, each tier in insertion order."""
        long_term = await self._long_term.items()
        return self._working.items() + self._short_term.items() + long_term

    async def tier_sizes(self) -> dict[str, int]:
        return {
            MemoryTier.WORKING.value: len(self._working),
            MemoryTier.SHORT_TERM.value: len(self._short_term),
            MemoryTier.LONG_TERM.value: len(await self._long_term.items()),
        }

    async def purge_long_term(self, ids: Collection[str] | None = None) -> int:
        """Explicitly delete long-term items (all of them when ``ids`` is None)."""
        removed = await self._long_term.purge(ids)
        log.info("memory.long_term_purged", removed=removed, selective=ids is not None)
        return removed

    async def clear_transient(self) -> None:
        """Drop Working and Short-term items; Long-term is untouched."""
        async with self._working.lock, self._short_term.lock:
            self._working.clear()
            self._short_term.clear()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def snapshot(self) -> list[dict[str, Any]]:
        """Serialise every item in every tier."""
        return [item.to_dict() for item in await self.items()]

    async def restore(self, data: Iterable[dict[str, Any]]) -> None:
        """Load items written by ``snapshot`` back into their recorded tiers.

        Transient tiers are replaced; long-term items are added to the store.
        Tier limits are not re-applied, so a restore reproduces the snapshot.
        """
        items = [MemoryItem.from_dict(entry) for entry in data]
        async with self._working.lock, self._short_term.lock:
            self._working.clear()
            self._short_term.clear()
            for item in items:
                if item.tier is MemoryTier.WORKING:
                    self._working.append(item)
                elif item.tier is MemoryTier.SHORT_TERM:
                    self._short_term.append(item)
                else:
                    await self._long_term.store(item)
        log.info("memory.restored", item_count=len(items))

