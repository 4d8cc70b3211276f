import time
from datetime import datetime, timedelta, timezone

import pytest

from sloop.keys import EventCountKey, ResourceSummaryKey, WatchTableKey
from sloop.kvstore import MemoryStore
from sloop.partition import HOUR, get_partition_id, set_partition_duration
from sloop.storemanager import (
    StoreManager,
    clean_up_file_size_condition,
    clean_up_time_condition,
    collect_metrics,
    do_cleanup,
    get_dir_size_recursive,
)
from sloop.tables import Tables

SOME_TS = datetime(2019, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
SOME_TS_NANOS = 1546398245000000006
SOME_KIND = "somekind"
SOME_NAMESPACE = "somenamespace"
SOME_NAME = "somename"
SOME_UID = "123232"
CONTENT = b"abcdfdfdfd"


@pytest.fixture(autouse=True)
def hour_partitions():
    set_partition_duration(HOUR)
    yield


@pytest.fixture
def store_dir(tmp_path):
    root = tmp_path / "foo"
    root.mkdir()
    (root / "something").write_bytes(CONTENT)
    return str(root)


@pytest.fixture
def tables():
    t = Tables(MemoryStore())
    partition = get_partition_id(SOME_TS)
    key1 = str(WatchTableKey(partition, SOME_KIND + "a", SOME_NAMESPACE, SOME_NAME, SOME_TS_NANOS))
    key2 = str(
        ResourceSummaryKey.from_timestamp(SOME_TS, SOME_KIND + "b", SOME_NAMESPACE, SOME_NAME, SOME_UID)
    )
    key3 = str(
        EventCountKey.from_timestamp(SOME_TS, SOME_KIND + "c", SOME_NAMESPACE, SOME_NAME, SOME_UID)
    )
    with t.db.update() as txn:
        t.watch_table.set(txn, key1, b"watch")
        t.resource_summary_table.set(txn, key2, b"ressum")
        t.event_count_table.set(txn, key3, b"")
    return t


def test_get_dir_size_recursive(store_dir):
    assert get_dir_size_recursive(store_dir) == len(CONTENT)


def test_get_dir_size_recursive_nested(store_dir, tmp_path):
    sub = tmp_path / "foo" / "sub"
    sub.mkdir()
    (sub / "more").write_bytes(CONTENT)
    assert get_dir_size_recursive(store_dir) == 2 * len(CONTENT)


def test_get_dir_size_missing_root_raises(tmp_path):
    with pytest.raises(OSError):
        get_dir_size_recursive(str(tmp_path / "missing"))


def test_clean_up_file_size_condition_true(store_dir):
    assert clean_up_file_size_condition(store_dir, 3) is True


def test_clean_up_file_size_condition_false(store_dir):
    assert clean_up_file_size_condition(store_dir, 100) is False


def test_clean_up_file_size_condition_missing_dir(tmp_path):
    assert clean_up_file_size_condition(str(tmp_path / "missing"), 0) is False


def test_clean_up_time_condition():
    assert clean_up_time_condition("001564074000", "001564077600", timedelta(hours=3)) is False
    assert clean_up_time_condition("dfdfdere001564074000", "001564077600", HOUR) is False
    assert clean_up_time_condition("001564074000", "dfdfdere001564077600", HOUR) is False
    assert clean_up_time_condition("001564074000", "001564077600", timedelta(minutes=20)) is True


def test_do_cleanup_true(tables, store_dir):
    assert do_cleanup(tables, store_dir, HOUR, 2) is True
    assert tables.get_min_and_max_partition() is None


def test_do_cleanup_false(tables, store_dir):
    assert do_cleanup(tables, store_dir, HOUR, 1000) is False
    partition = get_partition_id(SOME_TS)
    assert tables.get_min_and_max_partition() == (partition, partition)


def test_do_cleanup_empty_store(store_dir):
    assert do_cleanup(Tables(MemoryStore()), store_dir, HOUR, 2) is False


def test_collect_metrics(tables, store_dir):
    result = collect_metrics(store_dir, tables.db)
    assert result.badger_keys == 3
    assert result.badger_tables == 1
    assert result.store_size_on_disk_mb == pytest.approx(len(CONTENT) / 1024.0 / 1024.0)
    assert result.badger_lsm_size_mb == pytest.approx(tables.db.size()[0] / 1024.0 / 1024.0)


def test_store_manager_runs_and_shuts_down(tables, store_dir):
    manager = StoreManager(tables, store_dir, timedelta(seconds=3600), HOUR, 1000)
    before = manager.metrics.gc_run_count
    manager.start()
    deadline = time.monotonic() + 5
    while manager.metrics.gc_run_count == before and time.monotonic() < deadline:
        time.sleep(0.01)
    started = time.monotonic()
    manager.shutdown()
    assert manager.metrics.gc_run_count > before
    assert time.monotonic() - started < 5
    partition = get_partition_id(SOME_TS)
    assert tables.get_min_and_max_partition() == (partition, partition)