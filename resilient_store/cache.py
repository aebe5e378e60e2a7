"""
In-memory TTL cache with stale-read fallback.
"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, Tuple

from resilient_store.logging import get_logger
from resilient_store.metrics import ResilienceMetrics


class CacheTTL:
    """Common TTLs in seconds, by data volatility."""
    LONG = 5 * 60.0     # pricing configuration
    MEDIUM = 2 * 60.0   # blocked dates
    SHORT = 30.0        # frequently changing data


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    """Process-local key/value cache where every entry carries its own TTL.

    Expired entries stay readable with ``allow_stale=True`` until they are
    pruned, overwritten or cleared.
    """

    def __init__(self, clock: Callable[[], float] = time.time,
                 metrics: Optional[ResilienceMetrics] = None):
        self._clock = clock
        self._metrics = metrics
        self._entries: Dict[str, CacheEntry] = {}

    def _is_fresh(self, entry: CacheEntry) -> bool:
        # ttl == 0 never counts as fresh, even on a clock that has not ticked
        return entry.ttl > 0 and self._clock() - entry.stored_at <= entry.ttl

    def get(self, key: str, allow_stale: bool = False) -> Optional[Any]:
        """Return the cached value, or None when absent or expired (unless allow_stale).

        A stored None reads the same as a miss; callers do not cache None.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._record("miss")
            return None
        if self._is_fresh(entry):
            self._record("hit")
            return entry.value
        if allow_stale:
            self._record("stale")
            return entry.value
        self._record("miss")
        return None

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

    def has(self, key: str) -> bool:
        """True only if the key is present and fresh."""
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry)

    def has_stale(self, key: str) -> bool:
        """True if the key is present, expired or not."""
        return key in self._entries

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def prune(self) -> int:
        """Drop expired entries; returns how many were removed."""
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def _record(self, result: str):
        if self._metrics is not None:
            self._metrics.record_cache_lookup(result)


async def fetch_with_cache(cache: TTLCache, key: str, fetch: Callable[[], Awaitable[Any]],
                           ttl: float = CacheTTL.MEDIUM) -> Tuple[Any, bool]:
    """Cache-first fetch returning ``(value, from_cache)``.

    Serves stale data when ``fetch`` raises and an expired entry exists;
    otherwise re-raises.
    """
    cached = cache.get(key)
    if cached is not None:
        return cached, True

    try:
        value = await fetch()
    except Exception:
        stale = cache.get(key, allow_stale=True)
        if stale is not None:
            get_logger("resilient_store.cache").warning("Serving stale cache due to fetch error", key=key)
            return stale, True
        raise

    cache.set(key, value, ttl)
    return value, False
