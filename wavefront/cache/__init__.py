"""Response Caching Layer.

Public API:
    ResponseCache   - TTL + size bounded cache of subtask results
    CacheEntry      - Serialisable entry owned by the cache
    make_cache_key  - Deterministic key for (worker_type, payload)
"""

from wavefront.cache.response_cache import CacheEntry, ResponseCache, make_cache_key

__all__ = [
    "CacheEntry",
    "ResponseCache",
    "make_cache_key",
]
