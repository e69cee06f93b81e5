"""Reading one day of a counter's data for a query."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable

from reportdb.cache import DataPointsCache, cache_key
from reportdb.config import Settings
from reportdb.datapoint import SerializationError, deserialize_batch
from reportdb.model import DataPoint
from reportdb.storage import ObjectDoesNotExistError, Storage, StorageDoesNotExistError
from reportdb.storagepool import StoragePool, StoragePoolKey

logger = logging.getLogger("reportdb.reader")


@dataclass
class ReaderRequest:
    """A request to read one day's storage for a query."""

    request_index: int
    storage_key: StoragePoolKey
    start: int
    end: int
    object_ids: list[int] = field(default_factory=list)
    deadline: float | None = None


@dataclass
class ReaderResponse:
    """The data read for a request, or the error that stopped it."""

    request_index: int
    data: dict[int, list[DataPoint]] | None = None
    error: Exception | None = None


def read_single_day(
    storage: Storage,
    key: StoragePoolKey,
    object_ids: Iterable[int],
    start: int,
    end: int,
    cache: DataPointsCache,
    data_type: str,
) -> dict[int, list[DataPoint]]:
    """Return each object's points with ``start <= timestamp <= end``.

    An empty ``object_ids`` reads every object of the storage. Objects that
    are missing or cannot be decoded are skipped; objects without points in
    range are left out.
    """
    ids = list(object_ids)
    if not ids:
        ids = storage.all_keys()

    result: dict[int, list[DataPoint]] = {}
    for object_id in ids:
        key_text = cache_key(key, object_id)
        points = cache.get(key_text)
        if points is None:
            try:
                raw = storage.get(object_id)
            except (ObjectDoesNotExistError, OSError, ValueError) as error:
                logger.info(
                    "error getting data of object %d on %s: %s", object_id, key.date.format(), error
                )
                continue
            try:
                points = deserialize_batch(raw, data_type)
            except SerializationError as error:
                logger.info(
                    "error deserializing object %d on %s: %s", object_id, key.date.format(), error
                )
                continue
            if not cache.set(key_text, points):
                logger.info("failed to cache object %d on %s", object_id, key.date.format())
        else:
            logger.debug("cache hit for object %d on %s", object_id, key.date.format())

        selected = [point for point in points if start <= point.timestamp <= end]
        if selected:
            result.setdefault(object_id, []).extend(selected)
    return result


def handle_request(
    request: ReaderRequest,
    pool: StoragePool,
    cache: DataPointsCache,
    settings: Settings,
) -> ReaderResponse:
    """Serve one reader request; failures come back in the response's error."""
    index = request.request_index
    if request.deadline is not None and time.monotonic() >= request.deadline:
        return ReaderResponse(index, None, TimeoutError("query timed out"))

    try:
        storage = pool.get_storage(request.storage_key, False)
    except StorageDoesNotExistError as error:
        logger.info("storage not present for %s", request.storage_key)
        return ReaderResponse(index, None, error)
    except (OSError, ValueError) as error:
        logger.error("error opening storage %s: %s", request.storage_key, error)
        return ReaderResponse(index, None, error)

    try:
        data = read_single_day(
            storage,
            request.storage_key,
            request.object_ids,
            request.start,
            request.end,
            cache,
            settings.data_type(request.storage_key.counter_id),
        )
    except (OSError, ValueError, KeyError) as error:
        logger.error("error reading storage %s: %s", request.storage_key, error)
        return ReaderResponse(index, None, error)
    return ReaderResponse(index, data, None)