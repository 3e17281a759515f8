"""Bounded time-to-live cache owned by the composition root.

One instance is created at startup and passed to whatever needs it; the
server uses it to reuse numbered document content across requests.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, TypeVar

__all__ = [
    "CacheStats",
    "TTLCache",
    "content_hash_key",
]

LOGGER = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class CacheStats:
    """Counters for cache operations.

    Attributes:
        hits: Number of cache hits.
        misses: Number of cache misses, expired entries included.
        evictions: Entries removed to make room for new ones.
        expirations: Entries removed because their TTL elapsed.
    """

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": self.hit_rate,
        }


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    created_at: float


class TTLCache(Generic[V]):
    """Thread-safe cache with a size bound and per-entry expiry.

    When full, the oldest entry is evicted. Expired entries are removed when
    read. A ``ttl_seconds`` of 0 disables expiry.

    Example:
        >>> cache = TTLCache(max_entries=32, ttl_seconds=60)
        >>> cache.set(key, numbered)
        >>> cache.get(key)
    """

    def __init__(
        self,
        *,
        max_entries: int = 32,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max(1, max_entries)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[V]] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if self._is_expired(entry):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                LOGGER.debug("Cache entry expired for %s", key)
                return None
            self._stats.hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                LOGGER.debug("Evicted cache entry for %s", evicted)
            self._entries[key] = _Entry(value=value, created_at=self._clock())

    def stats(self) -> dict[str, Any]:
        with self._lock:
            payload = self._stats.to_dict()
            payload["size"] = len(self._entries)
            payload["max_entries"] = self.max_entries
            return payload

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _is_expired(self, entry: _Entry[V]) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return self._clock() - entry.created_at > self.ttl_seconds


def content_hash_key(files: Iterable[tuple[str, str]]) -> str:
    """Return a stable key for a set of ``(path, content)`` pairs, independent of order."""

    digest = hashlib.sha256()
    for path, content in sorted(files):
        digest.update(path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(content.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()
