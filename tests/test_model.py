import time

import pytest

from reportdb.model import DataPoint, Date, PolledDataPoint, unix_to_date


@pytest.fixture
def utc(monkeypatch):
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_date_format_has_no_padding():
    assert Date(day=8, month=4, year=2025).format() == "2025/4/8"


def test_date_is_hashable_key():
    lookup = {Date(1, 2, 2024): "a"}
    assert lookup[Date(1, 2, 2024)] == "a"


def test_unix_to_date_utc(utc):
    assert unix_to_date(1744089990) == Date(8, 4, 2025)


def test_unix_to_date_day_boundary(utc):
    assert unix_to_date(1744070399) == Date(7, 4, 2025)
    assert unix_to_date(1744070399 + 1) == unix_to_date(1744089990)


def test_unix_to_date_same_day_within_hour():
    assert unix_to_date(1744089990) == unix_to_date(1744089990 + 1) or (
        unix_to_date(1744089990 + 1).day != unix_to_date(1744089990).day
    )
    assert unix_to_date(1744089990 + 86400 * 7) != unix_to_date(1744089990)


def test_polled_from_dict_converts_numbers_to_float():
    point = PolledDataPoint.from_dict(
        {"timestamp": 1744089990, "counter_id": 2, "object_id": 2886731847, "value": 12}
    )
    assert point == PolledDataPoint(1744089990, 2, 2886731847, 12.0)
    assert isinstance(point.value, float)


def test_polled_from_dict_keeps_strings():
    point = PolledDataPoint.from_dict({"timestamp": 5, "counter_id": 3, "object_id": 1, "value": "root"})
    assert point.value == "root"


def test_polled_from_dict_missing_keys_default_to_zero():
    point = PolledDataPoint.from_dict({})
    assert (point.timestamp, point.counter_id, point.object_id, point.value) == (0, 0, 0, None)


@pytest.mark.parametrize(
    "data",
    [
        {"timestamp": -1},
        {"counter_id": 70000},
        {"object_id": "1"},
        {"timestamp": True},
        {"timestamp": 1.5},
    ],
)
def test_polled_from_dict_rejects_bad_fields(data):
    with pytest.raises(ValueError):
        PolledDataPoint.from_dict(data)


def test_polled_from_dict_rejects_non_mapping():
    with pytest.raises(ValueError):
        PolledDataPoint.from_dict([1, 2, 3])


def test_datapoint_equality():
    assert DataPoint(1, 2.0) == DataPoint(1, 2.0)
    assert DataPoint(1, 2.0) != DataPoint(1, 3.0)