"""The datastore: storage pool, cache, writer and query engine together."""

from __future__ import annotations

import logging
import queue
from pathlib import Path
from typing import Iterable

from reportdb.cache import DataPointsCache
from reportdb.config import Settings
from reportdb.model import PolledDataPoint
from reportdb.query import Query, QueryEngine, Result
from reportdb.storagepool import StoragePool
from reportdb.writer import FLUSH_INTERVAL, WriteHandler

logger = logging.getLogger("reportdb.database")


class ReportDB:
    """Accepts polled points for writing and answers queries over them."""

    def __init__(
        self,
        settings: Settings,
        results: queue.Queue | None = None,
        flush_interval: float = FLUSH_INTERVAL,
    ) -> None:
        Path(settings.storage_directory).mkdir(parents=True, exist_ok=True)
        self._pool = StoragePool(settings)
        self._pool.start_cleanup()
        self._cache = DataPointsCache(settings.max_cache_keys)
        self._writer = WriteHandler(self._pool, self._cache, settings, flush_interval)
        self._engine = QueryEngine(self._pool, self._cache, settings, results)
        self._closed = False

    @property
    def results(self) -> queue.Queue:
        """Results of queries given to :meth:`submit_query`."""
        return self._engine.results

    def write(self, points: Iterable[PolledDataPoint]) -> None:
        """Buffer polled points for writing."""
        self._writer.submit(points)

    def query(self, query: Query) -> Result:
        """Answer a query in the calling thread."""
        return self._engine.execute(query)

    def submit_query(self, query: Query) -> None:
        """Queue a query; its result will appear on :attr:`results`."""
        self._engine.submit(query)

    def close(self) -> None:
        """Flush pending writes, finish queued queries and close every storage."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        self._engine.close()
        self._pool.close()
        logger.info("database closed")

    def __enter__(self) -> ReportDB:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()