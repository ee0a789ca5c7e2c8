"""
LRUCache - size-bounded in-memory cache with per-entry TTL.

Features:
- LRU eviction by last access time when the cache is full
- Per-entry TTL, checked lazily on read (no background sweep)
- Substring and predicate based invalidation

All operations are synchronous; the cache is only touched from the event
loop thread, so it needs no lock.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger


class _Miss:
    """Sentinel type for cache misses (``None`` is a cacheable value)."""

    def __repr__(self) -> str:
        return "CACHE_MISS"


CACHE_MISS: Any = _Miss()


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    value: Any
    expires_at: float
    last_access: float
    access_seq: int = 0  # Orders accesses that share a clock reading

    def is_expired(self, now: float) -> bool:
        """Check if entry is past its TTL."""
        return now > self.expires_at


@dataclass
class CacheStats:
    """Cache counters."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0


class LRUCache:
    """
    In-memory LRU cache with TTL.

    Usage:
        cache = LRUCache(max_size=100)

        value = cache.get("ghost/post/1")
        if value is CACHE_MISS:
            value = await fetch_post("1")
            cache.set("ghost/post/1", value, ttl=timedelta(minutes=5))
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._memory: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._sequence = 0
        self.counters = CacheStats()

    def _touch(self, entry: CacheEntry) -> None:
        self._sequence += 1
        entry.last_access = self._clock()
        entry.access_seq = self._sequence

    def get(self, key: str) -> Any:
        """
        Get value from cache.

        Returns CACHE_MISS if the key is absent or expired; expired entries
        are dropped on the way out.
        """
        entry = self._memory.get(key)
        if entry is None:
            self.counters.misses += 1
            self._log(f"MISS: {key[:50]}")
            return CACHE_MISS

        if entry.is_expired(self._clock()):
            del self._memory[key]
            self.counters.misses += 1
            self.counters.expirations += 1
            self._log(f"EXPIRED: {key[:50]}")
            return CACHE_MISS

        self._touch(entry)
        self.counters.hits += 1
        self._log(f"HIT: {key[:50]}")
        return entry.value

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live (uses default if not specified)
        """
        if ttl is None:
            ttl = self._default_ttl

        # LRU eviction if at capacity
        if key not in self._memory and len(self._memory) >= self._max_size:
            self._evict_oldest()

        now = self._clock()
        entry = CacheEntry(value=value, expires_at=now + ttl.total_seconds(), last_access=now)
        self._touch(entry)
        self._memory[key] = entry
        self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._memory:
            del self._memory[key]
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def invalidate(self, pattern: str | None = None) -> int:
        """
        Invalidate entries.

        Args:
            pattern: Substring to match in keys; None clears everything

        Returns:
            Number of entries invalidated
        """
        if pattern is None:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")
            return count

        return self.invalidate_where(lambda key: pattern in key)

    def invalidate_where(self, predicate: Callable[[str], bool]) -> int:
        """Remove every entry whose key satisfies ``predicate``."""
        keys_to_delete = [k for k in self._memory if predicate(k)]
        for key in keys_to_delete:
            del self._memory[key]

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries")
        return len(keys_to_delete)

    def _evict_oldest(self) -> None:
        """Evict the least recently accessed entry (LRU)."""
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: (self._memory[k].last_access, self._memory[k].access_seq),
        )
        del self._memory[oldest_key]
        self.counters.evictions += 1
        logger.debug(f"[LRUCache] EVICT: {oldest_key[:50]}")

    def __contains__(self, key: str) -> bool:
        return key in self._memory

    def __len__(self) -> int:
        return len(self._memory)

    def stats(self) -> dict[str, Any]:
        """Size, capacity, default TTL (ms) and current keys."""
        return {
            "size": len(self._memory),
            "max_size": self._max_size,
            "ttl": int(self._default_ttl.total_seconds() * 1000),
            "keys": list(self._memory.keys()),
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[LRUCache] {message}")
