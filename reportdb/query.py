"""Queries, their results and the engine that answers them."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Mapping

from reportdb.aggregator import object_wise_aggregate, timestamp_aggregate
from reportdb.cache import DataPointsCache
from reportdb.config import Settings
from reportdb.model import DataPoint, unix_to_date
from reportdb.reader import ReaderRequest, handle_request
from reportdb.storagepool import StoragePool, StoragePoolKey

logger = logging.getLogger("reportdb.query")

SECONDS_PER_DAY = 86400
QUERY_TIMED_OUT = "query timed out"


def _unsigned(data: Mapping[str, Any], key: str, bits: int) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if not 0 <= value < 1 << bits:
        raise ValueError(f"{key} out of range: {value}")
    return value


def _text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


@dataclass
class Query:
    """A request for one counter's data over a time range."""

    query_id: int = 0
    start: int = 0
    end: int = 0
    object_ids: list[int] = field(default_factory=list)
    counter_id: int = 0
    object_wise_aggregation: str = "none"
    timestamp_aggregation: str = "none"
    interval: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Query:
        """Build from a decoded message using its wire keys (``from``, ``to`` ...)."""
        if not isinstance(data, Mapping):
            raise ValueError("query must be a map")
        raw_ids = data.get("object_ids") or []
        if not isinstance(raw_ids, (list, tuple)):
            raise ValueError("object_ids must be a list")
        object_ids = [_unsigned({"object_id": item}, "object_id", 32) for item in raw_ids]
        return cls(
            query_id=_unsigned(data, "query_id", 64),
            start=_unsigned(data, "from", 32),
            end=_unsigned(data, "to", 32),
            object_ids=object_ids,
            counter_id=_unsigned(data, "counter_id", 16),
            object_wise_aggregation=_text(data, "object_wise_aggregation"),
            timestamp_aggregation=_text(data, "timestamp_aggregation"),
            interval=_unsigned(data, "interval", 32),
        )


@dataclass
class Result:
    """The answer to a query: data per object id, or an error message."""

    query_id: int
    data: dict[int, list[DataPoint]] | None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the result with its wire keys."""
        data = None
        if self.data is not None:
            data = {
                object_id: [{"timestamp": point.timestamp, "value": point.value} for point in points]
                for object_id, points in self.data.items()
            }
        return {"query_id": self.query_id, "data": data, "error": self.error}


class QueryEngine:
    """Answers queries by reading each day in parallel and aggregating.

    Queries given to :meth:`submit` are answered by parser threads, whose
    results are put on :attr:`results`; after :meth:`close`, ``None`` is put
    there to mark the end.
    """

    def __init__(
        self,
        pool: StoragePool,
        cache: DataPointsCache,
        settings: Settings,
        results: queue.Queue | None = None,
    ) -> None:
        self._pool = pool
        self._cache = cache
        self._settings = settings
        self.results: queue.Queue = results if results is not None else queue.Queue()
        self._readers = ThreadPoolExecutor(
            max_workers=max(1, settings.readers), thread_name_prefix="reader"
        )
        self._queries: queue.Queue[Query | None] = queue.Queue(
            maxsize=max(0, settings.query_channel_size)
        )
        self._lock = threading.Lock()
        self._closed = False
        self._parsers = [
            threading.Thread(target=self._parse_loop, name=f"query-parser-{number}", daemon=True)
            for number in range(max(1, settings.query_parsers))
        ]
        for parser in self._parsers:
            parser.start()

    def _read_days(self, query: Query, deadline: float) -> list[dict[int, list[DataPoint]] | None]:
        first = query.start - query.start % SECONDS_PER_DAY
        last = query.end - query.end % SECONDS_PER_DAY
        futures = [
            self._readers.submit(
                handle_request,
                ReaderRequest(
                    index,
                    StoragePoolKey(unix_to_date(date), query.counter_id),
                    query.start,
                    query.end,
                    list(query.object_ids),
                    deadline,
                ),
                self._pool,
                self._cache,
                self._settings,
            )
            for index, date in enumerate(range(first, last + 1, SECONDS_PER_DAY))
        ]
        days: list[dict[int, list[DataPoint]] | None] = [None] * len(futures)
        done, pending = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
        for future in pending:
            future.cancel()
        for future in done:
            try:
                response = future.result()
            except Exception:
                logger.exception("reader failed")
                continue
            if response.error is None:
                days[response.request_index] = response.data
        return days

    def execute(self, query: Query) -> Result:
        """Answer a query in the calling thread."""
        started = time.monotonic()
        deadline = started + self._settings.query_timeout
        logger.info("query received: %s", query)

        if query.start > query.end:
            return Result(query.query_id, None, "invalid time range: from is after to")
        try:
            data_type = self._settings.data_type(query.counter_id)
        except (KeyError, ValueError) as error:
            return Result(query.query_id, None, str(error.args[0]) if error.args else str(error))

        days = self._read_days(query, deadline)
        aggregatable = data_type != "string"

        if query.object_wise_aggregation != "none" and aggregatable:
            object_wise_aggregate(days, query.object_wise_aggregation, deadline)

        if query.timestamp_aggregation != "none" and aggregatable:
            data = timestamp_aggregate(
                days, query.timestamp_aggregation, query.interval, query.start, deadline
            )
        else:
            data = {}
            for day in days:
                if day is None:
                    continue
                for object_id, points in day.items():
                    data.setdefault(object_id, []).extend(points)

        if time.monotonic() >= deadline:
            logger.info("query %d timed out", query.query_id)
            return Result(query.query_id, None, QUERY_TIMED_OUT)
        logger.info(
            "query %d answered in %.3fs", query.query_id, time.monotonic() - started
        )
        return Result(query.query_id, data, "")

    def _parse_loop(self) -> None:
        while True:
            query = self._queries.get()
            if query is None:
                break
            try:
                result = self.execute(query)
            except Exception as error:
                logger.exception("query %d failed", query.query_id)
                result = Result(query.query_id, None, str(error))
            self.results.put(result)

    def submit(self, query: Query) -> None:
        """Queue a query; its result will appear on :attr:`results`."""
        with self._lock:
            if self._closed:
                raise RuntimeError("query engine is closed")
            self._queries.put(query)

    def close(self) -> None:
        """Answer the queued queries, stop the threads and mark the end of results."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for _ in self._parsers:
            self._queries.put(None)
        for parser in self._parsers:
            parser.join()
        self._readers.shutdown(wait=True)
        self.results.put(None)

    def __enter__(self) -> QueryEngine:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()