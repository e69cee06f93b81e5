"""Aggregation of query results across objects and over time."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Sequence

from reportdb.model import DataPoint

logger = logging.getLogger("reportdb.aggregator")

_U32 = 0xFFFFFFFF

DATA_TYPE_NOT_SUPPORTED = "datatype not supported for aggregation"

Day = dict[int, list[DataPoint]]


def _numbers(values: Iterable[Any]) -> list[Any] | None:
    batch = list(values)
    if not batch:
        raise ValueError("cannot aggregate an empty batch")
    if any(isinstance(value, bool) or not isinstance(value, (int, float)) for value in batch):
        logger.error("%s: %s", DATA_TYPE_NOT_SUPPORTED, type(batch[0]).__name__)
        return None
    return batch


def max_value(values: Iterable[Any]) -> Any:
    """Return the largest value, or None for non-numeric values."""
    batch = _numbers(values)
    return None if batch is None else max(batch)


def min_value(values: Iterable[Any]) -> Any:
    """Return the smallest value, or None for non-numeric values."""
    batch = _numbers(values)
    return None if batch is None else min(batch)


def sum_value(values: Iterable[Any]) -> Any:
    """Return the sum of the values, or None for non-numeric values."""
    batch = _numbers(values)
    return None if batch is None else sum(batch)


def avg_value(values: Iterable[Any]) -> float | None:
    """Return the mean of the values as a float, or None for non-numeric values."""
    batch = _numbers(values)
    return None if batch is None else float(sum(batch)) / len(batch)


def _count(values: Iterable[Any]) -> int:
    return len(list(values))


_AGGREGATORS: dict[str, Callable[[Iterable[Any]], Any]] = {
    "avg": avg_value,
    "sum": sum_value,
    "min": min_value,
    "max": max_value,
    "count": _count,
}


def aggregate(values: Sequence[Any], aggregation: str) -> Any:
    """Apply a named aggregation; unknown names yield None."""
    function = _AGGREGATORS.get(aggregation)
    if function is None:
        logger.warning("aggregation not supported: %s", aggregation)
        return None
    return function(values)


def _expired(deadline: float | None) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def object_wise_aggregate(
    days: list[Day | None], aggregation: str, deadline: float | None = None
) -> None:
    """Collapse every object of each day into object id 0, per timestamp.

    Days are modified in place; missing days (None) are skipped. Stops early
    once ``deadline`` (a ``time.monotonic()`` value) has passed.
    """
    for day in days:
        if _expired(deadline):
            return
        if day is None:
            continue
        batches: dict[int, list[Any]] = {}
        for points in day.values():
            for point in points:
                batches.setdefault(point.timestamp, []).append(point.value)
        day.clear()
        day[0] = [
            DataPoint(timestamp, aggregate(batch, aggregation))
            for timestamp, batch in batches.items()
        ]


def _bucket(timestamp: int, interval: int, start: int) -> int:
    if not interval:
        return 0
    offset = (timestamp - start) & _U32
    return (offset - offset % interval + start) & _U32


def timestamp_aggregate(
    days: list[Day | None],
    aggregation: str,
    interval: int,
    start: int,
    deadline: float | None = None,
) -> dict[int, list[DataPoint]]:
    """Aggregate each object's points into time buckets.

    Buckets are ``interval`` seconds wide and aligned to ``start``; with an
    interval of 0 all points fall into the single bucket 0. Each object's
    points come back sorted by timestamp.
    """
    batched: dict[int, dict[int, list[Any]]] = {}
    for day in days:
        if day is None:
            continue
        for object_id, points in day.items():
            if _expired(deadline):
                return {}
            buckets = batched.setdefault(object_id, {})
            for point in points:
                buckets.setdefault(_bucket(point.timestamp, interval, start), []).append(
                    point.value
                )

    result: dict[int, list[DataPoint]] = {}
    for object_id, buckets in batched.items():
        points = []
        for timestamp, batch in buckets.items():
            if _expired(deadline):
                return result
            points.append(DataPoint(timestamp, aggregate(batch, aggregation)))
        points.sort(key=lambda point: point.timestamp)
        result[object_id] = points
    return result