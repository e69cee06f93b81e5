"""Loading of the datastore's general and counter configuration."""

from __future__ import annotations

import json
import mmap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DATA_TYPE = "dataType"

# JSON key -> (attribute, kind); "pages" values are multiplied by the page size.
_GENERAL_FIELDS: dict[str, tuple[str, str]] = {
    "Writers": ("writers", "int"),
    "DataWriteChannelSize": ("data_write_channel_size", "int"),
    "Readers": ("readers", "int"),
    "ReaderRequestChannelSize": ("reader_request_channel_size", "int"),
    "ReaderResponseChannelSize": ("reader_response_channel_size", "int"),
    "QueryParsers": ("query_parsers", "int"),
    "QueryChannelSize": ("query_channel_size", "int"),
    "QueryTimeoutTime": ("query_timeout", "int"),
    "Partitions": ("partitions", "int"),
    "BlockSize": ("block_size", "int"),
    "InitialFileSize": ("initial_file_size", "pages"),
    "FileSizeGrowthDelta": ("file_size_growth_delta", "pages"),
    "StorageCleanupInterval": ("storage_cleanup_interval", "int"),
    "MaxCacheKeys": ("max_cache_keys", "int"),
    "MaxCacheSizeInMB": ("max_cache_size_mb", "int"),
    "PollListenerBindPort": ("poll_listener_bind_port", "str"),
    "QueryListenerBindPort": ("query_listener_bind_port", "str"),
    "QueryResultBindPort": ("query_result_bind_port", "str"),
    "ProfilingPort": ("profiling_port", "str"),
    "IsProductionEnvironment": ("is_production", "bool"),
    "MaxLogFileSizeInMB": ("max_log_file_size_mb", "int"),
    "LogFileRetentionInDays": ("log_file_retention_days", "int"),
    "MemoryFraction": ("memory_fraction", "int"),
}


@dataclass
class Settings:
    """Runtime settings of the datastore."""

    writers: int = 4
    data_write_channel_size: int = 100
    readers: int = 4
    reader_request_channel_size: int = 100
    reader_response_channel_size: int = 100
    query_parsers: int = 2
    query_channel_size: int = 100
    query_timeout: int = 30
    partitions: int = 4
    block_size: int = 4096
    file_size_growth_delta: int = 16 * mmap.PAGESIZE
    initial_file_size: int = 16 * mmap.PAGESIZE
    storage_cleanup_interval: int = 60
    max_cache_keys: int = 10_000
    max_cache_size_mb: int = 64
    poll_listener_bind_port: str = "6001"
    query_listener_bind_port: str = "6002"
    query_result_bind_port: str = "6003"
    profiling_port: str = "6060"
    storage_directory: Path = Path("data")
    is_production: bool = False
    max_log_file_size_mb: int = 10
    log_file_retention_days: int = 7
    memory_fraction: int = 50
    counters: dict[int, dict[str, Any]] = field(default_factory=dict)

    def data_type(self, counter_id: int) -> str:
        """Return the configured data type of a counter."""
        try:
            value = self.counters[counter_id][DATA_TYPE]
        except KeyError:
            raise KeyError(f"no data type configured for counter {counter_id}") from None
        if not isinstance(value, str):
            raise ValueError(f"data type of counter {counter_id} is not a string")
        return value


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _parse_counters(raw: Any) -> dict[int, dict[str, Any]]:
    if not isinstance(raw, dict):
        raise ValueError("counter configuration must be a JSON object")
    counters: dict[int, dict[str, Any]] = {}
    for key, value in raw.items():
        try:
            counter_id = int(key)
        except ValueError:
            raise ValueError(f"invalid counter id {key!r}") from None
        if not 0 <= counter_id <= 0xFFFF:
            raise ValueError(f"counter id {key!r} out of range")
        if not isinstance(value, dict):
            raise ValueError(f"configuration of counter {key!r} must be a JSON object")
        counters[counter_id] = value
    return counters


def _field_value(config: dict[str, Any], key: str, kind: str) -> Any:
    if key not in config:
        raise ValueError(f"missing configuration key {key!r}")
    value = config[key]
    if kind == "str":
        if not isinstance(value, str):
            raise ValueError(f"configuration key {key!r} must be a string")
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise ValueError(f"configuration key {key!r} must be a boolean")
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"configuration key {key!r} must be a number")
    number = int(value)
    return number * mmap.PAGESIZE if kind == "pages" else number


def load_config(directory: str | Path | None = None) -> Settings:
    """Load settings from ``<directory>/config``; data lives in ``<directory>/data``."""
    base = Path(directory) if directory is not None else Path.cwd()
    config_dir = base / "config"

    counters = _parse_counters(_read_json(config_dir / "counters.json"))

    general = _read_json(config_dir / "general.json")
    if not isinstance(general, dict):
        raise ValueError("general configuration must be a JSON object")

    values = {
        attribute: _field_value(general, key, kind)
        for key, (attribute, kind) in _GENERAL_FIELDS.items()
    }
    return Settings(storage_directory=base / "data", counters=counters, **values)