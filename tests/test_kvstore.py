from datetime import timedelta

import pytest

from sloop.kvstore import (
    Item,
    KeyNotFoundError,
    MemoryStore,
    ReadOnlyTransactionError,
    StoreError,
    close_store,
    open_store,
)
from sloop.partition import get_partition_duration, set_partition_duration


@pytest.fixture(autouse=True)
def _restore_duration():
    saved = get_partition_duration()
    yield
    set_partition_duration(saved)


@pytest.fixture
def store():
    db = MemoryStore()
    with db.update() as txn:
        for key in ("/a/123/", "/watch/1/x", "/watch/1/y", "/watch/2/z", "/zzz/123/"):
            txn.set(key, key.encode())
    return db


def test_set_then_get_round_trip():
    db = MemoryStore()
    with db.update() as txn:
        txn.set("/k", b"value1")
    with db.view() as txn:
        item = txn.get("/k")
    assert item.key == "/k"
    assert item.value_copy() == b"value1"


def test_value_copy_is_equal_bytes():
    item = Item("/k", b"abc")
    assert item.value_copy() == b"abc"


def test_get_missing_key_raises():
    db = MemoryStore()
    with db.view() as txn:
        with pytest.raises(KeyNotFoundError):
            txn.get("/missing")


def test_read_only_set_and_delete_raise():
    db = MemoryStore()
    with db.view() as txn:
        with pytest.raises(ReadOnlyTransactionError):
            txn.set("/k", b"v")
        with pytest.raises(ReadOnlyTransactionError):
            txn.delete("/k")


def test_delete_removes_key(store):
    with store.update() as txn:
        txn.delete("/watch/1/x")
    with store.view() as txn:
        with pytest.raises(KeyNotFoundError):
            txn.get("/watch/1/x")


def test_forward_iteration_is_sorted(store):
    with store.view() as txn:
        itr = txn.iterator()
        keys = []
        while itr.valid():
            keys.append(itr.item().key)
            itr.next()
    assert keys == sorted(keys)
    assert len(keys) == 5


def test_prefix_iterator_limits_keys(store):
    with store.view() as txn:
        itr = txn.iterator("/watch/")
        itr.seek("/watch/")
        keys = []
        while itr.valid_for_prefix("/watch/"):
            keys.append(itr.item().key)
            itr.next()
    assert keys == ["/watch/1/x", "/watch/1/y", "/watch/2/z"]


def test_forward_seek_finds_first_not_less(store):
    with store.view() as txn:
        itr = txn.iterator()
        itr.seek("/watch/1/xa")
        assert itr.item().key == "/watch/1/y"


def test_reverse_seek_finds_last_key_before(store):
    with store.view() as txn:
        itr = txn.iterator(reverse=True)
        itr.seek("/watch/" + chr(255))
        assert itr.item().key == "/watch/2/z"
        itr.next()
        assert itr.item().key == "/watch/1/y"


def test_reverse_prefix_max_key(store):
    with store.view() as txn:
        itr = txn.iterator("/watch/", reverse=True)
        itr.seek("/watch/" + chr(255))
        assert itr.valid()
        assert itr.item().key == "/watch/2/z"


def test_item_none_when_exhausted(store):
    with store.view() as txn:
        itr = txn.iterator("/nothing/")
        assert itr.valid() is False
        assert itr.item() is None


def test_rewind_returns_to_start(store):
    with store.view() as txn:
        itr = txn.iterator()
        first = itr.item().key
        itr.next()
        itr.next()
        itr.rewind()
        assert itr.item().key == first


def test_drop_prefix(store):
    store.drop_prefix("/watch/1/")
    with store.view() as txn:
        itr = txn.iterator("/watch/")
        keys = []
        while itr.valid():
            keys.append(itr.item().key)
            itr.next()
    assert keys == ["/watch/2/z"]


def test_drop_prefix_on_empty_store_raises():
    with pytest.raises(StoreError):
        MemoryStore().drop_prefix("/watch/")


def test_size_tracks_contents():
    db = MemoryStore()
    assert db.size() == (0, 0)
    with db.update() as txn:
        txn.set("/k", b"value")
    lsm, vlog = db.size()
    assert lsm > 0
    assert vlog == 0
    with db.update() as txn:
        txn.delete("/k")
    assert db.size() == (0, 0)


def test_tables_key_count(store):
    assert store.tables(True)[0].key_count == 5
    assert store.tables(False)[0].key_count == 0


def test_open_store_sets_duration_and_creates_dir(tmp_path):
    root = tmp_path / "data"
    db = open_store(str(root), timedelta(hours=24))
    assert root.is_dir()
    assert get_partition_duration() == timedelta(hours=24)
    close_store(db)
    with db.view() as txn:
        with pytest.raises(KeyNotFoundError):
            txn.get("/k")


def test_open_store_rejects_invalid_duration(tmp_path):
    with pytest.raises(StoreError):
        open_store(str(tmp_path), timedelta(minutes=30))