"""Bounded, time-expiring memo of segment descriptors keyed by capture time."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .archive_index import SegmentDescriptor

__all__ = ["DEFAULT_CAPACITY", "DEFAULT_TTL", "SegmentCache"]

DEFAULT_CAPACITY = 100
DEFAULT_TTL = timedelta(hours=12)


class SegmentCache:
    """LRU cache whose entries also expire a fixed time after insertion.

    Reads refresh recency only; the expiry is set by ``put`` alone.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ttl: timedelta | float = DEFAULT_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = int(capacity)
        self._ttl = self._seconds(ttl)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[datetime, tuple[float, "SegmentDescriptor"]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @staticmethod
    def _seconds(ttl: timedelta | float) -> float:
        if isinstance(ttl, timedelta):
            return ttl.total_seconds()
        return float(ttl)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, timestamp: datetime) -> "SegmentDescriptor | None":
        with self._lock:
            entry = self._entries.get(timestamp)
            if entry is None:
                self._misses += 1
                return None
            expires_at, descriptor = entry
            if self._clock() >= expires_at:
                del self._entries[timestamp]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(timestamp)
            self._hits += 1
            return descriptor

    def put(
        self,
        timestamp: datetime,
        descriptor: "SegmentDescriptor",
        ttl: timedelta | float | None = None,
    ) -> None:
        seconds = self._ttl if ttl is None else self._seconds(ttl)
        with self._lock:
            self._entries[timestamp] = (self._clock() + seconds, descriptor)
            self._entries.move_to_end(timestamp)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self._capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }
