import msgpack
import pytest

from reportdb.cache import DataPointsCache
from reportdb.config import Settings
from reportdb.datapoint import serialize_batch
from reportdb.model import DataPoint, unix_to_date
from reportdb.query import QUERY_TIMED_OUT, Query, QueryEngine, Result
from reportdb.storagepool import StoragePool, StoragePoolKey

FROM = 1747107000
TO = 1747146600
OBJECT = 2886731972
OTHER = 2886731847


def _settings(tmp_path, **overrides):
    values = dict(
        storage_directory=tmp_path / "data",
        counters={2: {"dataType": "float64"}, 3: {"dataType": "string"}},
        partitions=2,
        block_size=64,
        readers=2,
        query_parsers=1,
        query_timeout=30,
    )
    values.update(overrides)
    return Settings(**values)


def _store(pool, start, counter, object_id, points, data_type="float64"):
    key = StoragePoolKey(unix_to_date(start - start % 86400), counter)
    pool.get_storage(key, True).put(object_id, serialize_batch(points, data_type))


@pytest.fixture
def env(tmp_path):
    settings = _settings(tmp_path)
    pool = StoragePool(settings)
    engine = QueryEngine(pool, DataPointsCache(), settings)
    yield pool, engine
    engine.close()
    pool.close()


def test_source_case_drilldown(env):
    pool, engine = env
    points = [DataPoint(FROM + 600, 1.0), DataPoint(FROM + 1200, 2.0)]
    _store(pool, FROM, 2, OBJECT, [DataPoint(FROM - 60, 0.5)] + points + [DataPoint(TO + 60, 9.0)])
    result = engine.execute(Query(1, FROM, TO, [OBJECT], 2, "none", "none", 0))
    assert result.query_id == 1
    assert result.error == ""
    assert result.data == {OBJECT: points}


def test_source_case_other_range(env):
    pool, engine = env
    start, end = 1746505800, 1746541800
    points = [DataPoint(start + 5, 3.0), DataPoint(end, 4.0)]
    _store(pool, start, 2, OTHER, points)
    result = engine.execute(Query(10, start, end, [OTHER], 2, "none", "none", 0))
    assert result.query_id == 10
    assert result.data == {OTHER: points}


def test_object_wise_sum(env):
    pool, engine = env
    _store(pool, FROM, 2, OBJECT, [DataPoint(FROM + 10, 1.0), DataPoint(FROM + 20, 3.0)])
    _store(pool, FROM, 2, OTHER, [DataPoint(FROM + 10, 2.0), DataPoint(FROM + 20, 4.0)])
    result = engine.execute(Query(2, FROM, TO, [OBJECT, OTHER], 2, "sum", "none", 0))
    assert result.data == {0: [DataPoint(FROM + 10, 3.0), DataPoint(FROM + 20, 7.0)]}


def test_timestamp_average_without_interval(env):
    pool, engine = env
    _store(pool, FROM, 2, OBJECT, [DataPoint(FROM + i, float(i)) for i in (1, 2, 3)])
    result = engine.execute(Query(3, FROM, TO, [OBJECT], 2, "none", "avg", 0))
    assert result.data == {OBJECT: [DataPoint(0, 2.0)]}


def test_timestamp_max_with_interval(env):
    pool, engine = env
    points = [DataPoint(FROM + 10, 1.0), DataPoint(FROM + 20, 5.0), DataPoint(FROM + 3700, 2.0)]
    _store(pool, FROM, 2, OBJECT, points)
    result = engine.execute(Query(4, FROM, TO, [OBJECT], 2, "none", "max", 3600))
    assert result.data == {OBJECT: [DataPoint(FROM, 5.0), DataPoint(FROM + 3600, 2.0)]}


def test_string_counter_is_not_aggregated(env):
    pool, engine = env
    points = [DataPoint(FROM + 1, "alpha"), DataPoint(FROM + 2, "beta")]
    _store(pool, FROM, 3, OBJECT, points, "string")
    result = engine.execute(Query(5, FROM, TO, [OBJECT], 3, "sum", "sum", 0))
    assert result.data == {OBJECT: points}


def test_empty_object_ids_returns_all_objects(env):
    pool, engine = env
    first = [DataPoint(FROM + 1, 1.0)]
    second = [DataPoint(FROM + 2, 2.0)]
    _store(pool, FROM, 2, OBJECT, first)
    _store(pool, FROM, 2, OTHER, second)
    result = engine.execute(Query(6, FROM, TO, [], 2, "none", "none", 0))
    assert result.data == {OBJECT: first, OTHER: second}


def test_missing_storage_gives_empty_data(env):
    _, engine = env
    result = engine.execute(Query(7, FROM, TO, [OBJECT], 2, "none", "none", 0))
    assert result.data == {}
    assert result.error == ""


def test_unknown_counter_gives_error(env):
    _, engine = env
    result = engine.execute(Query(8, FROM, TO, [OBJECT], 99, "none", "none", 0))
    assert result.data is None
    assert "99" in result.error


def test_reversed_range_gives_error(env):
    _, engine = env
    result = engine.execute(Query(9, TO, FROM, [OBJECT], 2, "none", "none", 0))
    assert result.data is None
    assert "range" in result.error


def test_timeout(tmp_path):
    settings = _settings(tmp_path, query_timeout=0)
    with StoragePool(settings) as pool:
        _store(pool, FROM, 2, OBJECT, [DataPoint(FROM + 1, 1.0)])
        with QueryEngine(pool, DataPointsCache(), settings) as engine:
            result = engine.execute(Query(11, FROM, TO, [OBJECT], 2, "none", "none", 0))
    assert result.error == QUERY_TIMED_OUT
    assert result.data is None


def test_submit_puts_result_on_queue(env):
    pool, engine = env
    points = [DataPoint(FROM + 1, 1.0)]
    _store(pool, FROM, 2, OBJECT, points)
    engine.submit(Query(12, FROM, TO, [OBJECT], 2, "none", "none", 0))
    result = engine.results.get(timeout=10)
    assert result == Result(12, {OBJECT: points}, "")


def test_close_marks_end_and_rejects_queries(tmp_path):
    settings = _settings(tmp_path)
    with StoragePool(settings) as pool:
        engine = QueryEngine(pool, DataPointsCache(), settings)
        engine.close()
        assert engine.results.get(timeout=5) is None
        with pytest.raises(RuntimeError):
            engine.submit(Query(1, FROM, TO))


def test_query_from_dict():
    raw = {
        "query_id": 10,
        "from": 1746505800,
        "to": 1746541800,
        "object_ids": [2886731847],
        "counter_id": 2,
        "object_wise_aggregation": "none",
        "timestamp_aggregation": "none",
        "interval": 0,
    }
    decoded = msgpack.unpackb(msgpack.packb(raw), raw=False)
    assert Query.from_dict(decoded) == Query(
        10, 1746505800, 1746541800, [2886731847], 2, "none", "none", 0
    )


def test_query_from_dict_defaults_and_errors():
    assert Query.from_dict({}) == Query(0, 0, 0, [], 0, "", "", 0)
    with pytest.raises(ValueError):
        Query.from_dict({"counter_id": 70000})
    with pytest.raises(ValueError):
        Query.from_dict({"object_ids": ["a"]})


def test_result_to_dict():
    result = Result(4, {OBJECT: [DataPoint(FROM, 1.5)]}, "")
    assert result.to_dict() == {
        "query_id": 4,
        "data": {OBJECT: [{"timestamp": FROM, "value": 1.5}]},
        "error": "",
    }
    assert Result(5, None, QUERY_TIMED_OUT).to_dict() == {
        "query_id": 5,
        "data": None,
        "error": QUERY_TIMED_OUT,
    }