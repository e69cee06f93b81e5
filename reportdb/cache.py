"""In-memory cache of deserialized data points."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Iterable

from cachetools import LRUCache

from reportdb.model import DataPoint

if TYPE_CHECKING:
    from reportdb.storagepool import StoragePoolKey


def cache_key(storage_key: StoragePoolKey, object_id: int) -> str:
    """Return the cache key of one object's points for one day and counter."""
    return f"{storage_key.date.format()}{storage_key.counter_id}{object_id}"


class DataPointsCache:
    """A bounded, thread-safe cache of data point lists."""

    def __init__(self, max_keys: int = 10_000) -> None:
        if max_keys <= 0:
            raise ValueError("cache size must be positive")
        self._cache: LRUCache[str, list[DataPoint]] = LRUCache(maxsize=max_keys)
        self._lock = threading.Lock()

    def get(self, key: str) -> list[DataPoint] | None:
        """Return the cached points for a key, or None on a miss."""
        with self._lock:
            points = self._cache.get(key)
        return None if points is None else list(points)

    def set(self, key: str, points: Iterable[DataPoint]) -> bool:
        """Store points under a key; return whether they were stored."""
        with self._lock:
            self._cache[key] = list(points)
        return True

    def delete(self, key: str) -> None:
        """Drop a key if it is cached."""
        with self._lock:
            self._cache.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache