# -*- coding: utf-8 -*-
"""Location: ./toolchest/cache/ttl_cache.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Thread-safe in-process TTL cache.

Entries are stored with their insertion time and are valid while
``now - inserted_at < ttl``. Expired entries are evicted lazily on read and
physically removed by ``sweep()``. When ``max_entries`` is reached the oldest
entry is dropped first.

All public methods take a ``threading.Lock`` so the cache can be shared by
coroutines on the event loop and by handlers running in the threadpool.

Examples:
    >>> cache = TTLCache(default_ttl=60)
    >>> cache.set("relationships:all", [1, 2])
    >>> cache.get("relationships:all")
    [1, 2]
    >>> cache.invalidate_pattern("relationships")
    1
    >>> cache.get("relationships:all") is None
    True
"""

# Standard
from collections import OrderedDict
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class _CacheEntry:
    """Pairs a cached value with the time it was stored and its TTL."""

    __slots__ = ("value", "inserted_at", "ttl")

    def __init__(self, value: Any, inserted_at: float, ttl: float):
        self.value = value
        self.inserted_at = inserted_at
        self.ttl = ttl

    def expired(self, now: float) -> bool:
        """Whether the entry is past its TTL at ``now``.

        Args:
            now: Current clock reading.

        Returns:
            bool: True once ``now - inserted_at >= ttl``.
        """
        return now - self.inserted_at >= self.ttl


class TTLCache:
    """Keyed in-memory cache with per-entry time-to-live."""

    def __init__(self, default_ttl: float = 300, max_entries: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        """Create an empty cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` is called without one.
            max_entries: Optional cap; the oldest entry is evicted when reached.
            clock: Monotonic time source, injectable for tests.
        """
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._store: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Look up ``key`` distinguishing a miss from a cached ``None``.

        Args:
            key: Cache key.

        Returns:
            Tuple[bool, Any]: ``(True, value)`` on a hit, ``(False, None)`` otherwise.

        Examples:
            >>> cache = TTLCache()
            >>> cache.set("k", None)
            >>> cache.lookup("k")
            (True, None)
            >>> cache.lookup("other")
            (False, None)
        """
        with self._lock:
            entry = self._store.get(key)
            if entry is not None:
                if entry.expired(self._clock()):
                    del self._store[key]
                else:
                    self._hits += 1
                    return True, entry.value
            self._misses += 1
            return False, None

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key`` or ``default``.

        Args:
            key: Cache key.
            default: Value returned on a miss.

        Returns:
            Any: Cached value or ``default``.
        """
        found, value = self.lookup(key)
        return value if found else default

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` with the current time.

        Args:
            key: Cache key.
            value: Value to store.
            ttl: TTL in seconds; falls back to ``default_ttl``.
        """
        effective_ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            if key in self._store:
                del self._store[key]
            elif self.max_entries is not None:
                while len(self._store) >= self.max_entries:
                    evicted, _ = self._store.popitem(last=False)
                    logger.debug("Cache full, evicted %s", evicted)
            self._store[key] = _CacheEntry(value, self._clock(), effective_ttl)

    def invalidate(self, key: str) -> bool:
        """Remove a single key.

        Args:
            key: Cache key.

        Returns:
            bool: True if the key was present.
        """
        with self._lock:
            return self._store.pop(key, _MISSING) is not _MISSING

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key containing ``pattern`` as a substring.

        Args:
            pattern: Substring to match.

        Returns:
            int: Number of entries removed.

        Examples:
            >>> cache = TTLCache()
            >>> for k in ("tag_usage:a", "tag_usage:b", "orphans"):
            ...     cache.set(k, 1)
            >>> cache.invalidate_pattern("tag_usage")
            2
            >>> cache.keys()
            ['orphans']
        """
        with self._lock:
            doomed = [key for key in self._store if pattern in key]
            for key in doomed:
                del self._store[key]
        return len(doomed)

    def clear(self) -> int:
        """Drop every entry.

        Returns:
            int: Number of entries removed.
        """
        with self._lock:
            removed = len(self._store)
            self._store.clear()
        return removed

    def sweep(self) -> int:
        """Physically remove expired entries.

        Returns:
            int: Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            doomed = [key for key, entry in self._store.items() if entry.expired(now)]
            for key in doomed:
                del self._store[key]
        if doomed:
            logger.debug("Cache sweep removed %d expired entries", len(doomed))
        return len(doomed)

    def keys(self) -> List[str]:
        """Return the keys currently held (live or not yet swept).

        Returns:
            List[str]: Keys in insertion order.
        """
        with self._lock:
            return list(self._store.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, Any]:
        """Return hit/miss counters and current size.

        Returns:
            Dict[str, Any]: Cache statistics.

        Examples:
            >>> cache = TTLCache(default_ttl=10, max_entries=5)
            >>> cache.set("a", 1)
            >>> _ = cache.get("a"); _ = cache.get("b")
            >>> cache.stats()["hit_rate"]
            0.5
        """
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
                "size": len(self._store),
                "max_entries": self.max_entries,
                "default_ttl": self.default_ttl,
            }
