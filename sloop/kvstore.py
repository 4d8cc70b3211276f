"""An in-memory ordered key/value store with transactions and iterators."""

from __future__ import annotations

import bisect
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from sloop.partition import DAY, HOUR, set_partition_duration

log = logging.getLogger(__name__)


class StoreError(Exception):
    """Base error for store operations."""


class KeyNotFoundError(StoreError):
    """Raised when a key is not present in the store."""


class ReadOnlyTransactionError(StoreError):
    """Raised when writing inside a read-only transaction."""


@dataclass(frozen=True)
class Item:
    """A key and its value."""

    key: str
    value: bytes

    def value_copy(self) -> bytes:
        """Return a copy of the value."""
        return bytes(self.value)


@dataclass(frozen=True)
class TableInfo:
    """Summary information about a storage table."""

    key_count: int = 0


class StoreIterator:
    """A cursor over a sorted snapshot of keys.

    Only keys starting with ``prefix`` are included. In reverse mode the keys
    are in descending order.
    """

    def __init__(self, data: Dict[str, bytes], prefix: str = "", reverse: bool = False):
        self._data = data
        self._reverse = reverse
        self._keys: List[str] = sorted(
            (k for k in data if k.startswith(prefix)), reverse=reverse
        )
        self._index = 0
        self.closed = False

    def __enter__(self) -> "StoreIterator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Mark the iterator closed; safe to call more than once."""
        self.closed = True

    def item(self) -> Optional[Item]:
        """Return the current item, or None when the iterator is exhausted."""
        if not self.valid():
            return None
        key = self._keys[self._index]
        return Item(key, self._data.get(key, b""))

    def next(self) -> None:
        """Advance by one position."""
        self._index += 1

    def seek(self, key: str) -> None:
        """Move to ``key``, or the next key past it in iteration order.

        Forward: the smallest key >= ``key``. Reverse: the largest key < ``key``.
        """
        if not self._reverse:
            self._index = bisect.bisect_left(self._keys, key)
        else:
            ascending = self._keys[::-1]
            self._index = len(ascending) - bisect.bisect_left(ascending, key)

    def valid(self) -> bool:
        """Return False once iteration is done."""
        return 0 <= self._index < len(self._keys)

    def valid_for_prefix(self, prefix: str) -> bool:
        """Return True if valid and the current key starts with ``prefix``."""
        return self.valid() and self._keys[self._index].startswith(prefix)

    def rewind(self) -> None:
        """Return to the first position."""
        self._index = 0


class Transaction:
    """A view of the store, writable unless read-only."""

    def __init__(self, data: Dict[str, bytes], read_only: bool):
        self._data = data
        self.read_only = read_only

    def get(self, key: str) -> Item:
        """Return the item for ``key``; raise KeyNotFoundError if absent."""
        try:
            value = self._data[key]
        except KeyError:
            raise KeyNotFoundError(f"Key not found: {key}") from None
        return Item(key, value)

    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``."""
        if self.read_only:
            raise ReadOnlyTransactionError("No sets or deletes are allowed in a read-only transaction")
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        if self.read_only:
            raise ReadOnlyTransactionError("No sets or deletes are allowed in a read-only transaction")
        self._data.pop(key, None)

    def iterator(self, prefix: str = "", reverse: bool = False) -> StoreIterator:
        """Return an iterator over keys starting with ``prefix``."""
        return StoreIterator(self._data, prefix, reverse)


class MemoryStore:
    """A key/value store held in memory, guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, bytes] = {}
        self.closed = False
        self.last_sync: Optional[float] = None

    def close(self) -> None:
        """Mark the store closed; the data stays readable."""
        self.closed = True

    def sync(self) -> None:
        """Wait for running transactions and record the sync time."""
        with self._lock:
            self.last_sync = time.monotonic()

    @contextmanager
    def view(self) -> Iterator[Transaction]:
        """Open a read-only transaction."""
        with self._lock:
            yield Transaction(self._data, read_only=True)

    @contextmanager
    def update(self) -> Iterator[Transaction]:
        """Open a read-write transaction."""
        with self._lock:
            yield Transaction(self._data, read_only=False)

    def drop_prefix(self, prefix: str) -> None:
        """Delete every key starting with ``prefix``."""
        with self._lock:
            if not self._data:
                raise StoreError(f"unable to delete prefix: {prefix} from empty table")
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]

    def size(self) -> Tuple[int, int]:
        """Return (lsm, vlog) sizes in bytes."""
        total = sum(len(k.encode()) + len(v) for k, v in self._data.items())
        return total, 0

    def tables(self, with_keys_count: bool = False) -> List[TableInfo]:
        """Return table information, counting keys when asked."""
        return [TableInfo(key_count=len(self._data) if with_keys_count else 0)]


def open_store(root_path: str, partition_duration: timedelta) -> MemoryStore:
    """Open a store rooted at ``root_path`` and set the partition duration."""
    try:
        os.makedirs(root_path, mode=0o755, exist_ok=True)
    except OSError as exc:
        log.info("mkdir failed with %s", exc)
    db = MemoryStore()
    if partition_duration not in (HOUR, DAY):
        raise StoreError("Only hour and day partitionDurations are supported")
    set_partition_duration(partition_duration)
    return db


def close_store(db: MemoryStore) -> None:
    """Close a store opened by open_store."""
    log.info("Closing store")
    db.close()
    log.info("Finished closing store")