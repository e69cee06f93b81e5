import json
import mmap

import pytest

from reportdb.config import Settings, load_config

GENERAL = {
    "Writers": 3,
    "DataWriteChannelSize": 50,
    "Readers": 5,
    "ReaderRequestChannelSize": 20,
    "ReaderResponseChannelSize": 21,
    "QueryParsers": 2,
    "QueryChannelSize": 10,
    "QueryTimeoutTime": 40,
    "Partitions": 5,
    "BlockSize": 120,
    "InitialFileSize": 4,
    "FileSizeGrowthDelta": 2,
    "StorageCleanupInterval": 30,
    "MaxCacheKeys": 1000,
    "MaxCacheSizeInMB": 8,
    "PollListenerBindPort": "7001",
    "QueryListenerBindPort": "7002",
    "QueryResultBindPort": "7003",
    "ProfilingPort": "7004",
    "IsProductionEnvironment": True,
    "MaxLogFileSizeInMB": 5,
    "LogFileRetentionInDays": 2,
    "MemoryFraction": 60,
}

COUNTERS = {
    "1": {"dataType": "int64", "pollingInterval": 10},
    "2": {"dataType": "float64", "pollingInterval": 5},
}


def _write(base, general=GENERAL, counters=COUNTERS):
    config_dir = base / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "general.json").write_text(json.dumps(general))
    (config_dir / "counters.json").write_text(json.dumps(counters))


def test_load_reads_general_values(tmp_path):
    _write(tmp_path)
    settings = load_config(tmp_path)
    assert settings.writers == 3
    assert settings.readers == 5
    assert settings.partitions == 5
    assert settings.block_size == 120
    assert settings.query_timeout == 40
    assert settings.poll_listener_bind_port == "7001"
    assert settings.is_production is True
    assert settings.memory_fraction == 60


def test_file_sizes_are_in_pages(tmp_path):
    _write(tmp_path)
    settings = load_config(tmp_path)
    assert settings.initial_file_size == 4 * mmap.PAGESIZE
    assert settings.file_size_growth_delta == 2 * mmap.PAGESIZE


def test_storage_directory_is_data_under_base(tmp_path):
    _write(tmp_path)
    assert load_config(tmp_path).storage_directory == tmp_path / "data"


def test_counters_keyed_by_int(tmp_path):
    _write(tmp_path)
    settings = load_config(tmp_path)
    assert sorted(settings.counters) == [1, 2]
    assert settings.data_type(2) == "float64"
    assert settings.data_type(1) == "int64"


def test_unknown_counter_raises():
    settings = Settings(counters={1: {"dataType": "int"}})
    with pytest.raises(KeyError):
        settings.data_type(9)


def test_missing_general_file(tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "counters.json").write_text("{}")
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path)


def test_missing_key_raises(tmp_path):
    general = dict(GENERAL)
    del general["BlockSize"]
    _write(tmp_path, general=general)
    with pytest.raises(ValueError, match="BlockSize"):
        load_config(tmp_path)


def test_wrong_type_raises(tmp_path):
    general = dict(GENERAL, PollListenerBindPort=7001)
    _write(tmp_path, general=general)
    with pytest.raises(ValueError, match="PollListenerBindPort"):
        load_config(tmp_path)


def test_invalid_counter_id_raises(tmp_path):
    _write(tmp_path, counters={"abc": {"dataType": "int"}})
    with pytest.raises(ValueError):
        load_config(tmp_path)


def test_bad_json_raises(tmp_path):
    _write(tmp_path)
    (tmp_path / "config" / "general.json").write_text("{not json")
    with pytest.raises(ValueError):
        load_config(tmp_path)