"""Core value types: calendar dates and data points."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class Date:
    """A calendar day in local time."""

    day: int
    month: int
    year: int

    def format(self) -> str:
        """Return the path fragment ``year/month/day`` without zero padding."""
        return posixpath.join(str(self.year), str(self.month), str(self.day))


def unix_to_date(unix: int) -> Date:
    """Return the local calendar day of a Unix timestamp."""
    moment = datetime.fromtimestamp(int(unix))
    return Date(day=moment.day, month=moment.month, year=moment.year)


@dataclass
class DataPoint:
    """A timestamped value of one object for one counter."""

    timestamp: int
    value: Any


def _unsigned(data: Mapping[str, Any], key: str, bits: int) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if not 0 <= value < 1 << bits:
        raise ValueError(f"{key} out of range: {value}")
    return value


@dataclass
class PolledDataPoint:
    """A data point as delivered by the polling engine."""

    timestamp: int
    counter_id: int
    object_id: int
    value: Any

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PolledDataPoint:
        """Build from a decoded JSON object; numbers in ``value`` become floats."""
        if not isinstance(data, Mapping):
            raise ValueError("polled data point must be an object")
        value = data.get("value")
        if isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        return cls(
            timestamp=_unsigned(data, "timestamp", 32),
            counter_id=_unsigned(data, "counter_id", 16),
            object_id=_unsigned(data, "object_id", 32),
            value=value,
        )