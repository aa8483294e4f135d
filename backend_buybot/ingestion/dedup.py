"""
Bounded recency cache of processed transaction signatures.

Guards against webhook retries and overlapping poll windows. Entries age out
only by capacity pressure: when full, the oldest-inserted signature is evicted
(insertion order, not access order). Single-process, best-effort.
"""

from __future__ import annotations

import time

DEFAULT_CAPACITY = 1000


class DedupCache:
    """signature -> processing timestamp, FIFO-evicted at capacity."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        # dict preserves insertion order; first key is the oldest
        self._entries: dict[str, float] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def has(self, signature: str) -> bool:
        return signature in self._entries

    __contains__ = has

    def get(self, signature: str) -> float | None:
        return self._entries.get(signature)

    def insert(self, signature: str, ts: float | None = None) -> None:
        """Record signature; evict the single oldest entry first when at capacity."""
        if signature in self._entries:
            return
        if len(self._entries) >= self._capacity:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[signature] = ts if ts is not None else time.time()

    def size(self) -> int:
        return len(self._entries)

    __len__ = size

    def clear(self) -> None:
        self._entries.clear()
