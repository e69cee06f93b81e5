"""Binary encoding of data point batches.

Every record starts with a little-endian uint32 timestamp. Fixed-width
types follow it with the value; strings follow it with a uint32 byte
length and the UTF-8 bytes.
"""

from __future__ import annotations

import struct
from typing import Any, Iterable

from reportdb.model import DataPoint

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF

_STRING_HEADER = struct.Struct("<II")

# data type -> (record struct, value conversion) for serialization
_ENCODERS: dict[str, tuple[struct.Struct, Any]] = {}
# data type -> (record struct, canonical name) for deserialization
_DECODERS: dict[str, tuple[struct.Struct, str]] = {}


class SerializationError(ValueError):
    """Raised when a batch cannot be encoded or decoded."""


def _number(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SerializationError(f"value {value!r} is not numeric")
    return value


def _as_float(value: Any) -> float:
    return float(_number(value))


def _as_u64(value: Any) -> int:
    return int(_number(value)) & _U64


def _as_u32(value: Any) -> int:
    return int(_number(value)) & _U32


_F64 = struct.Struct("<Id")
_F32 = struct.Struct("<If")
_Q = struct.Struct("<IQ")
_I = struct.Struct("<II")

_ENCODERS.update(
    {
        "float64": (_F64, _as_float),
        "float32": (_F32, _as_float),
        "uint64": (_Q, _as_u64),
        "uint": (_Q, _as_u64),
        "int64": (_Q, _as_u64),
        "int": (_Q, _as_u64),
        "uint32": (_I, _as_u32),
        "int32": (_I, _as_u32),
    }
)

_DECODERS.update(
    {
        "float64": (_F64, "float64"),
        "float32": (_F32, "float32"),
        "int64": (struct.Struct("<Iq"), "int64"),
        "int": (struct.Struct("<Iq"), "int64"),
        "int32": (struct.Struct("<Ii"), "int32"),
        "uint64": (_Q, "uint64"),
        "uint": (_Q, "uint64"),
        "uint32": (_I, "uint32"),
    }
)


def _serialize_strings(points: list[DataPoint]) -> bytes:
    parts = []
    for point in points:
        if not isinstance(point.value, str):
            raise SerializationError(f"value {point.value!r} is not a string")
        encoded = point.value.encode("utf-8")
        parts.append(_STRING_HEADER.pack(point.timestamp, len(encoded)))
        parts.append(encoded)
    return b"".join(parts)


def serialize_batch(points: Iterable[DataPoint], data_type: str) -> bytes:
    """Encode data points of the given counter data type."""
    batch = list(points)
    if not batch:
        return b""
    try:
        if data_type == "string":
            return _serialize_strings(batch)
        if data_type not in _ENCODERS:
            raise SerializationError(f"unsupported data type: {data_type}")
        record, convert = _ENCODERS[data_type]
        return b"".join(record.pack(point.timestamp, convert(point.value)) for point in batch)
    except (struct.error, OverflowError, ValueError) as error:
        if isinstance(error, SerializationError):
            raise
        raise SerializationError(f"cannot serialize {data_type} batch: {error}") from error


def _deserialize_strings(data: bytes) -> list[DataPoint]:
    points = []
    offset = 0
    while offset < len(data):
        if offset + _STRING_HEADER.size > len(data):
            raise SerializationError("unexpected end of data")
        timestamp, length = _STRING_HEADER.unpack_from(data, offset)
        start = offset + _STRING_HEADER.size
        if start + length > len(data):
            raise SerializationError("string length goes out of bounds")
        value = data[start : start + length].decode("utf-8", errors="replace")
        points.append(DataPoint(timestamp, value))
        offset = start + length
    return points


def deserialize_batch(data: bytes, data_type: str) -> list[DataPoint]:
    """Decode bytes produced by :func:`serialize_batch`."""
    if not data:
        return []
    if data_type == "string":
        return _deserialize_strings(data)
    if data_type not in _DECODERS:
        raise SerializationError(f"unsupported data type: {data_type}")
    record, name = _DECODERS[data_type]
    if len(data) % record.size:
        raise SerializationError(f"invalid data length for {name}")
    return [DataPoint(timestamp, value) for timestamp, value in record.iter_unpack(data)]