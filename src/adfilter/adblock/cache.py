"""
Bounded decision cache.

Memoizes block decisions per request and has-cosmetics answers per domain.
On overflow the whole map is dropped instead of evicting selectively, which
keeps worst-case latency flat at the cost of an occasional cold cache.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

DEFAULT_MAX_ENTRIES = 1000


class BoundedCache(Generic[K]):
    """Thread-safe key -> bool map that clears itself when full."""

    def __init__(self, name: str, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._name = name
        self._max_entries = max_entries
        self._entries: dict[K, bool] = {}
        self._generation = 0
        self._lock = threading.Lock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._overflows = 0

    def check(self, key: K) -> bool | None:
        """Return the cached value for ``key``, or None on a miss."""
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    @property
    def generation(self) -> int:
        """Counter bumped by every explicit clear()."""
        return self._generation

    def insert(self, key: K, value: bool, generation: int | None = None) -> None:
        """Store a value, clearing the whole cache first if it is full.

        When ``generation`` is given and the cache was cleared since it was
        read, the value was computed from outdated rules and is dropped.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            if key not in self._entries and len(self._entries) >= self._max_entries:
                logger.debug(
                    "%s cache full (%d entries), clearing", self._name, len(self._entries)
                )
                self._entries.clear()
                self._overflows += 1
            self._entries[key] = value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generation += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get_stats(self) -> dict[str, int]:
        """Get cache statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "overflows": self._overflows,
            }


RequestKey = tuple[str, str, str]


class DecisionCache:
    """Request -> blocked and domain -> has-cosmetics caches.

    Request keys include the resource type and origin because both change
    the decision for the same URL.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self.requests: BoundedCache[RequestKey] = BoundedCache("request", max_entries)
        self.domains: BoundedCache[str] = BoundedCache("domain", max_entries)

    @staticmethod
    def request_key(url: str, request_type: str, origin: str) -> RequestKey:
        return (url, request_type, origin)

    def clear(self) -> None:
        """Drop both maps."""
        self.requests.clear()
        self.domains.clear()

    def get_stats(self) -> dict[str, dict[str, int]]:
        return {
            "requests": self.requests.get_stats(),
            "domains": self.domains.get_stats(),
        }
