"""TTL cache for ranked search results."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

from gym_presence.timeutils import Clock, system_clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """An immutable snapshot of one query's ranked results."""

    query_key: str
    results: tuple[T, ...]
    inserted_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.inserted_at < ttl_seconds


class SearchCache(Generic[T]):
    """In-memory query-key -> ranked results cache.

    Expired entries are evicted lazily on lookup. Size is bounded by LRU eviction.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 128,
        clock: Clock = system_clock,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._data: OrderedDict[str, CacheEntry[T]] = OrderedDict()

    def get(self, key: str) -> tuple[T, ...] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock(), self._ttl):
            del self._data[key]
            logger.debug("Cache expired for query %r", key)
            return None
        self._data.move_to_end(key)
        return entry.results

    def put(self, key: str, results: Sequence[T]) -> None:
        self._data[key] = CacheEntry(query_key=key, results=tuple(results), inserted_at=self._clock())
        self._data.move_to_end(key)
        while len(self._data) > self._max:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("Cache full, evicted %r", evicted)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data
