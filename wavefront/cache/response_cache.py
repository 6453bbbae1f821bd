"""Response cache - TTL and size bounded store for computed subtask results.

Caches subtask outputs keyed on (worker_type, payload) so an identical
subtask, in this task or any task sharing the cache, never hits a worker
twice while the entry is fresh. Cache keys use SHA-256 of the canonical
JSON encoding of the inputs to guarantee determinism.

Expiry and eviction:
- An entry expires when ``now - stored_at > ttl_seconds``. Expired entries
  are removed lazily on lookup (and in bulk by ``purge_expired``).
- When a put pushes the size past ``max_entries``, the oldest entries by
  ``stored_at`` are evicted first; ties go to the least recently accessed.

Concurrency:
- Access to a single key is serialised by one of ``stripes`` locks chosen
  from the key hash, so lookups of unrelated keys never wait on each other.
- Critical sections contain no awaits, so eviction of other keys runs
  atomically with respect to the event loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from wavefront.config import Settings
from wavefront.telemetry import metrics

log = structlog.get_logger(__name__)

# Namespace prefix to avoid collisions with other cache users
_RESPONSE_NS = "resp"


def make_cache_key(worker_type: str, payload: Any) -> str:
    """Build a deterministic, collision-resistant cache key.

    Dict ordering never changes the key: payloads are encoded as canonical
    JSON (sorted keys, no insignificant whitespace). Values JSON cannot
    encode natively fall back to ``str()``.

    Returns:
        String of the form "resp:<hex_digest>"
    """
    canonical = json.dumps(
        {"worker_type": worker_type, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode()).hexdigest()
    return f"{_RESPONSE_NS}:{digest}"


@dataclass
class CacheEntry:
    """A cached subtask result. Owned exclusively by ``ResponseCache``."""

    key: str
    value: Any
    stored_at: float
    last_accessed: float
    worker_type: str | None = None

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.stored_at > ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "stored_at": self.stored_at,
            "last_accessed": self.last_accessed,
            "worker_type": self.worker_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            key=data["key"],
            value=data["value"],
            stored_at=float(data["stored_at"]),
            last_accessed=float(data["last_accessed"]),
            worker_type=data.get("worker_type"),
        )


class ResponseCache:
    """Key-addressed result cache with TTL expiry and oldest-first eviction.

    All public lookup/mutation methods are async so the cache can be shared
    by concurrently running subtasks and tasks on one event loop.

    Example:
        cache = ResponseCache(ttl_seconds=600, max_entries=1000)
        await cache.put("search", {"q": "wave"}, ["result"])
        value, hit = await cache.get("search", {"q": "wave"})
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600,
        max_entries: int = 10_000,
        stripes: int = 16,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if stripes < 1:
            raise ValueError("stripes must be at least 1")

        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        # Kept in stored_at order: a put always re-inserts at the end.
        self._entries: dict[str, CacheEntry] = {}
        self._stripes = [asyncio.Lock() for _ in range(stripes)]

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> ResponseCache:
        return cls(
            ttl_seconds=settings.ttl_seconds,
            max_entries=settings.max_cache_entries,
            stripes=settings.cache_lock_stripes,
            **kwargs,
        )

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def _lock_for(self, key: str) -> asyncio.Lock:
        # Key is "resp:<hex>"; the digest is uniformly distributed
        return self._stripes[int(key[-8:], 16) % len(self._stripes)]

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def get(self, worker_type: str, payload: Any) -> tuple[Any, bool]:
        """Return ``(value, True)`` on a fresh hit, ``(None, False)`` otherwise.

        An expired entry counts as a miss and is removed.
        """
        key = make_cache_key(worker_type, payload)
        async with self._lock_for(key):
            entry = self._entries.get(key)
            now = self._clock()

            if entry is not None and entry.is_expired(now, self._ttl):
                del self._entries[key]
                self._expirations += 1
                metrics.cache_evictions_total.labels(reason="expired").inc()
                log.debug("cache.expired", key=key, worker_type=worker_type)
                entry = None

            if entry is None:
                self._misses += 1
                metrics.cache_requests_total.labels(result="miss").inc()
                log.debug("cache.miss", key=key, worker_type=worker_type)
                return None, False

            entry.last_accessed = now
            self._hits += 1
            metrics.cache_requests_total.labels(result="hit").inc()
            log.debug("cache.hit", key=key, worker_type=worker_type)
            return entry.value, True

    async def put(self, worker_type: str, payload: Any, value: Any) -> str:
        """Insert or overwrite a result, evicting oldest entries if over size.

        Returns:
            The cache key under which the value was stored.
        """
        key = make_cache_key(worker_type, payload)
        async with self._lock_for(key):
            now = self._clock()
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                stored_at=now,
                last_accessed=now,
                worker_type=worker_type,
            )
            evicted = self._evict_over_limit()

        log.debug("cache.stored", key=key, worker_type=worker_type, evicted=evicted)
        return key

    async def invalidate(self, worker_type: str, payload: Any) -> bool:
        """Remove a single entry. Returns True if something was removed."""
        key = make_cache_key(worker_type, payload)
        async with self._lock_for(key):
            removed = self._entries.pop(key, None) is not None
        if removed:
            metrics.cache_evictions_total.labels(reason="invalidated").inc()
            log.debug("cache.invalidated", key=key, worker_type=worker_type)
        return removed

    async def clear(self) -> None:
        """Remove ALL entries and reset statistics."""
        for lock in self._stripes:
            await lock.acquire()
        try:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0
        finally:
            for lock in self._stripes:
                lock.release()
        log.info("cache.cleared")

    async def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        removed = 0
        for key in [k for k, e in self._entries.items() if e.is_expired(now, self._ttl)]:
            async with self._lock_for(key):
                entry = self._entries.get(key)
                if entry is not None and entry.is_expired(now, self._ttl):
                    del self._entries[key]
                    removed += 1
        if removed:
            self._expirations += removed
            metrics.cache_evictions_total.labels(reason="expired").inc(removed)
            log.info("cache.purged_expired", removed=removed)
        return removed

    def _evict_over_limit(self) -> int:
        """Evict oldest entries until size is within ``max_entries``."""
        evicted = 0
        while len(self._entries) > self._max_entries:
            victim = self._oldest_key()
            del self._entries[victim]
            evicted += 1
            log.debug("cache.evicted", key=victim)
        if evicted:
            self._evictions += evicted
            metrics.cache_evictions_total.labels(reason="size").inc(evicted)
        return evicted

    def _oldest_key(self) -> str:
        """Oldest by stored_at; among equal stored_at, least recently accessed.

        Scans every entry: insertion order only follows stored_at while the
        clock never steps backwards.
        """
        oldest = min(self._entries.values(), key=lambda e: (e.stored_at, e.last_accessed))
        return oldest.key

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        total_requests = self._hits + self._misses
        hit_rate = self._hits / total_requests if total_requests > 0 else 0.0
        return {
            "backend": "memory",
            "total_keys": len(self._entries),
            "max_entries": self._max_entries,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "expirations": self._expirations,
            "hit_rate": round(hit_rate, 4),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> list[dict[str, Any]]:
        """Serialise every entry, oldest first."""
        return [entry.to_dict() for entry in self._entries.values()]

    def restore(self, entries: Iterable[dict[str, Any]]) -> int:
        """Load serialised entries, replacing current contents.

        Entries are re-sorted by ``stored_at`` and the size limit applied,
        so a snapshot taken with a larger ``max_entries`` still loads.

        Returns:
            Number of entries held after restore.
        """
        loaded = sorted(
            (CacheEntry.from_dict(data) for data in entries),
            key=lambda e: (e.stored_at, e.last_accessed),
        )
        self._entries = {entry.key: entry for entry in loaded}
        self._evict_over_limit()
        log.info("cache.restored", total_keys=len(self._entries))
        return len(self._entries)

    def save(self, path: str | Path) -> None:
        """Write a JSON snapshot to ``path``. Values must be JSON-representable."""
        Path(path).write_text(json.dumps({"entries": self.snapshot()}), encoding="utf-8")
        log.info("cache.saved", path=str(path), total_keys=len(self._entries))

    def load(self, path: str | Path) -> int:
        """Replace contents with a snapshot written by ``save``."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return self.restore(data.get("entries", []))
