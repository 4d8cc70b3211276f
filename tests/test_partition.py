from datetime import datetime, timedelta, timezone

import pytest

from sloop.partition import (
    PartitionDurationError,
    get_partition_duration,
    get_partition_id,
    get_time_range_for_partition,
    set_partition_duration,
)

SOME_TS = datetime(2019, 1, 2, 3, 4, 5, 0, tzinfo=timezone.utc)
SOME_TS_ROUNDED_HOUR = datetime(2019, 1, 2, 3, 0, 0, tzinfo=timezone.utc)
SOME_TS_ROUNDED_DAY = datetime(2019, 1, 2, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _restore_duration():
    saved = get_partition_duration()
    yield
    set_partition_duration(saved)


def test_partitions_round_trip_hour():
    set_partition_duration(timedelta(hours=1))
    part = get_partition_id(SOME_TS)
    min_ts, max_ts = get_time_range_for_partition(part)
    assert min_ts == SOME_TS_ROUNDED_HOUR
    assert max_ts == SOME_TS_ROUNDED_HOUR + timedelta(hours=1)


def test_partitions_round_trip_day():
    set_partition_duration(timedelta(hours=24))
    part = get_partition_id(SOME_TS)
    min_ts, max_ts = get_time_range_for_partition(part)
    assert min_ts == SOME_TS_ROUNDED_DAY
    assert max_ts == SOME_TS_ROUNDED_DAY + timedelta(hours=24)


def test_partition_id_hour_value():
    set_partition_duration(timedelta(hours=1))
    assert get_partition_id(SOME_TS) == "001546398000"


def test_partition_id_is_twelve_digits():
    set_partition_duration(timedelta(hours=1))
    part = get_partition_id(SOME_TS)
    assert len(part) == 12
    assert part.isdigit()


def test_naive_timestamp_treated_as_utc():
    set_partition_duration(timedelta(hours=1))
    assert get_partition_id(SOME_TS.replace(tzinfo=None)) == get_partition_id(SOME_TS)


def test_partition_ids_sort_in_time_order():
    set_partition_duration(timedelta(hours=1))
    earlier = get_partition_id(SOME_TS)
    later = get_partition_id(SOME_TS + timedelta(hours=5))
    assert earlier < later


def test_invalid_duration_raises():
    set_partition_duration(timedelta(minutes=5))
    with pytest.raises(PartitionDurationError):
        get_partition_id(SOME_TS)


def test_unset_duration_raises():
    set_partition_duration(None)
    with pytest.raises(PartitionDurationError):
        get_time_range_for_partition("001546398000")


def test_invalid_partition_id_raises():
    set_partition_duration(timedelta(hours=1))
    with pytest.raises(ValueError):
        get_time_range_for_partition("dfdfdere001564074000")


def test_get_partition_duration_returns_set_value():
    set_partition_duration(timedelta(hours=24))
    assert get_partition_duration() == timedelta(days=1)