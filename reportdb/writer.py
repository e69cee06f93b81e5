"""Buffering of incoming points and writing them to storage."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Iterable

from reportdb.cache import DataPointsCache, cache_key
from reportdb.config import Settings
from reportdb.datapoint import serialize_batch
from reportdb.model import DataPoint, PolledDataPoint, unix_to_date
from reportdb.storagepool import StoragePool, StoragePoolKey

logger = logging.getLogger("reportdb.writer")

FLUSH_INTERVAL = 5.0


@dataclass
class WritableObjectBatch:
    """Points of one object to append to one storage."""

    storage_key: StoragePoolKey
    object_id: int
    values: list[DataPoint] = field(default_factory=list)


class BatchBuffer:
    """Collects points per storage and object until they are flushed."""

    def __init__(self) -> None:
        self._buffer: dict[StoragePoolKey, dict[int, list[DataPoint]]] = {}
        self._lock = threading.Lock()

    def add(self, key: StoragePoolKey, object_id: int, point: DataPoint) -> None:
        """Buffer one point."""
        with self._lock:
            self._buffer.setdefault(key, {}).setdefault(object_id, []).append(point)

    def points(self, key: StoragePoolKey, object_id: int) -> list[DataPoint]:
        """Return the buffered points of one object."""
        with self._lock:
            return list(self._buffer.get(key, {}).get(object_id, []))

    def flush(self) -> list[WritableObjectBatch]:
        """Empty the buffer and return its contents as batches."""
        with self._lock:
            batches = [
                WritableObjectBatch(key, object_id, points)
                for key, objects in self._buffer.items()
                for object_id, points in objects.items()
            ]
            self._buffer.clear()
        return batches

    def is_empty(self) -> bool:
        with self._lock:
            return not self._buffer


def write_batch(
    batch: WritableObjectBatch,
    pool: StoragePool,
    cache: DataPointsCache,
    settings: Settings,
) -> None:
    """Serialize a batch, append it to its storage and invalidate the cache."""
    payload = serialize_batch(batch.values, settings.data_type(batch.storage_key.counter_id))
    storage = pool.get_storage(batch.storage_key, True)
    storage.put(batch.object_id, payload)
    cache.delete(cache_key(batch.storage_key, batch.object_id))


class WriteHandler:
    """Buffers submitted points and writes them periodically with worker threads."""

    def __init__(
        self,
        pool: StoragePool,
        cache: DataPointsCache,
        settings: Settings,
        flush_interval: float = FLUSH_INTERVAL,
    ) -> None:
        if flush_interval <= 0:
            raise ValueError("flush interval must be positive")
        self._pool = pool
        self._cache = cache
        self._settings = settings
        self._flush_interval = flush_interval
        self._buffer = BatchBuffer()
        worker_count = max(1, settings.writers)
        self._queue: queue.Queue[WritableObjectBatch | None] = queue.Queue(maxsize=worker_count)
        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._closed = False
        self._workers = [
            threading.Thread(target=self._work, name=f"writer-{number}", daemon=True)
            for number in range(worker_count)
        ]
        for worker in self._workers:
            worker.start()
        self._flusher = threading.Thread(target=self._flush_loop, name="batch-flush", daemon=True)
        self._flusher.start()

    def _work(self) -> None:
        while True:
            batch = self._queue.get()
            if batch is None:
                break
            try:
                write_batch(batch, self._pool, self._cache, self._settings)
            except Exception:
                logger.exception(
                    "error writing batch of object %d to %s", batch.object_id, batch.storage_key
                )
        logger.info("writer exiting")

    def _flush(self) -> None:
        for batch in self._buffer.flush():
            self._queue.put(batch)

    def _flush_loop(self) -> None:
        while not self._stop.wait(self._flush_interval):
            if not self._buffer.is_empty():
                self._flush()

    def submit(self, points: Iterable[PolledDataPoint]) -> None:
        """Buffer polled points; points of unconfigured counters are dropped."""
        with self._state_lock:
            if self._closed:
                raise RuntimeError("write handler is closed")
            for point in points:
                if point.counter_id not in self._settings.counters:
                    logger.info("bad counter id, dropping data point: %s", point)
                    continue
                key = StoragePoolKey(unix_to_date(point.timestamp), point.counter_id)
                self._buffer.add(key, point.object_id, DataPoint(point.timestamp, point.value))

    def close(self) -> None:
        """Flush what is buffered, wait for the writers and stop them."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        self._flusher.join()
        self._flush()
        for _ in self._workers:
            self._queue.put(None)
        for worker in self._workers:
            worker.join()
        logger.info("write handler exiting")

    def __enter__(self) -> WriteHandler:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()