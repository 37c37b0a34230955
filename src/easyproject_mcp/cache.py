"""In-process TTL response cache with LRU eviction.

Stores raw decoded upstream bodies keyed by :func:`make_cache_key`. Values are
deep-copied on the way in and out, so callers never share a cached object.
The only invalidation primitive is :meth:`ResponseCache.invalidate_all`; every write
operation clears the whole store.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# JSON never encodes a value as a bare "~", so an unset parameter cannot
# collide with any set one.
UNSET_MARKER = "~"


def make_cache_key(operation: str, *params: Any) -> str:
    """Derive a deterministic key from an operation name and its parameters.

    Parameters are positional so every call site fixes the order. ``None``
    means "not supplied" and encodes as :data:`UNSET_MARKER`.
    """
    parts = [UNSET_MARKER if value is None else json.dumps(value, sort_keys=True) for value in params]
    return f"{operation}:" + "|".join(parts)


@dataclass
class _Entry:
    value: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int
    max_entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResponseCache:
    """Thread-safe TTL cache; capacity is bounded by ``max_entries``."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            msg = f"ttl_seconds must be positive, got {ttl_seconds}"
            raise ValueError(msg)
        if max_entries < 1:
            msg = f"max_entries must be >= 1, got {max_entries}"
            raise ValueError(msg)
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return copy.deepcopy(entry.value)

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries[key] = _Entry(
                value=copy.deepcopy(value), stored_at=now, ttl=self.ttl_seconds if ttl is None else ttl
            )

    def _evict(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expired(now)]
        for k in expired:
            del self._entries[k]
        self._evictions += len(expired)
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1

    def invalidate_all(self) -> int:
        """Drop every entry. Returns how many were removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[call-overload]
            return entry is not None and not entry.expired(self._clock())

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                max_entries=self.max_entries,
            )
