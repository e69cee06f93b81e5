import pytest

from reportdb.config import Settings
from reportdb.database import ReportDB
from reportdb.model import DataPoint, PolledDataPoint
from reportdb.query import Query

T = 1747110000
OBJECT = 2886731972


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_directory=tmp_path / "data",
        counters={2: {"dataType": "float64"}},
        partitions=2,
        block_size=64,
        readers=2,
        query_parsers=1,
        writers=2,
    )


def _query(query_id, counter=2, object_ids=(OBJECT,)):
    return Query(query_id, T - 86400, T + 86400, list(object_ids), counter, "none", "none", 0)


def test_creates_storage_directory(settings):
    with ReportDB(settings):
        assert settings.storage_directory.is_dir()


def test_written_points_are_queryable_after_reopen(settings):
    points = [PolledDataPoint(T + i * 60, 2, OBJECT, float(i)) for i in range(5)]
    with ReportDB(settings, flush_interval=60) as db:
        db.write(points)
    with ReportDB(settings) as db:
        result = db.query(_query(1))
    assert result.error == ""
    assert result.data == {OBJECT: [DataPoint(p.timestamp, p.value) for p in points]}


def test_successive_writes_are_appended(settings):
    first = [PolledDataPoint(T, 2, OBJECT, 1.0)]
    second = [PolledDataPoint(T + 60, 2, OBJECT, 2.0)]
    with ReportDB(settings, flush_interval=60) as db:
        db.write(first)
    with ReportDB(settings, flush_interval=60) as db:
        assert db.query(_query(1)).data == {OBJECT: [DataPoint(T, 1.0)]}
        db.write(second)
    with ReportDB(settings) as db:
        result = db.query(_query(2))
    assert result.data == {OBJECT: [DataPoint(T, 1.0), DataPoint(T + 60, 2.0)]}


def test_points_of_unknown_counters_are_dropped(settings):
    with ReportDB(settings, flush_interval=60) as db:
        db.write([PolledDataPoint(T, 9, OBJECT, 1.0)])
    with ReportDB(settings) as db:
        assert db.query(_query(1)).data == {}
        unknown = db.query(_query(2, counter=9))
    assert unknown.data is None
    assert "9" in unknown.error


def test_submitted_query_result_arrives_on_results(settings):
    with ReportDB(settings, flush_interval=60) as db:
        db.write([PolledDataPoint(T, 2, OBJECT, 4.0)])
    with ReportDB(settings) as db:
        db.submit_query(_query(7))
        result = db.results.get(timeout=10)
    assert result.query_id == 7
    assert result.data == {OBJECT: [DataPoint(T, 4.0)]}


def test_write_after_close_is_rejected(settings):
    db = ReportDB(settings)
    db.close()
    with pytest.raises(RuntimeError):
        db.write([PolledDataPoint(T, 2, OBJECT, 1.0)])