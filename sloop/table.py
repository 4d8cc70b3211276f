"""A typed table stored in a key/value store, with partition aware reads."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sloop.keys import KeyParseError
from sloop.kvstore import Item, KeyNotFoundError, StoreError, Transaction
from sloop.partition import get_partition_duration, get_partition_id

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INTEGER = re.compile(r"[+-]?[0-9]+\Z")


class TableError(Exception):
    """Raised when a table operation fails."""


@dataclass
class RangeReadStats:
    """Counters collected during a range read."""

    table_name: str = ""
    partition_count: int = 0
    rows_visited_count: int = 0
    rows_passed_key_predicate_count: int = 0
    rows_passed_value_predicate_count: int = 0
    elapsed: timedelta = timedelta(0)

    def log(self, request_id: str) -> None:
        """Log the statistics for a request."""
        log.info(
            "reqId: %s range read on table %s took %s.  Partitions scanned %s.  "
            "Rows scanned %s, past key predicate %s, past value predicate %s",
            request_id,
            self.table_name,
            self.elapsed,
            self.partition_count,
            self.rows_visited_count,
            self.rows_passed_key_predicate_count,
            self.rows_passed_value_predicate_count,
        )


def partitions_between(start_partition: str, end_partition: str) -> List[str]:
    """Return every partition id from start to end, both included."""
    duration = get_partition_duration() or timedelta(0)
    result: List[str] = []
    current = start_partition
    while current <= end_partition:
        result.append(current)
        if not _INTEGER.match(current):
            raise TableError(f"failed to get partition:{current}")
        try:
            moment = _EPOCH + timedelta(seconds=int(current)) + duration
        except OverflowError as exc:
            raise TableError(f"failed to get partition:{current}") from exc
        current = get_partition_id(moment)
    return result


def _scan(txn: Transaction, prefix: str) -> Iterator[Item]:
    with txn.iterator(prefix=prefix) as it:
        it.seek(prefix)
        while it.valid_for_prefix(prefix):
            yield it.item()
            it.next()


class Table:
    """Rows keyed by one key type, with values stored through encode/decode.

    By default values are stored as raw bytes.
    """

    def __init__(
        self,
        key_type: Any,
        encode: Callable[[Any], bytes] = bytes,
        decode: Callable[[bytes], Any] = bytes,
    ):
        self.key_type = key_type
        self.table_name: str = key_type.table_name
        self._encode = encode
        self._decode = decode

    def _validate(self, key: str) -> None:
        try:
            self.key_type.validate_key(key)
        except KeyParseError as exc:
            raise TableError(f"invalid key for table {self.table_name}: {key}: {exc}") from exc

    def _decode_value(self, data: bytes) -> Any:
        try:
            return self._decode(data)
        except Exception as exc:
            raise TableError(
                f"decoding failed for table {self.table_name} on value length {len(data)}: {exc}"
            ) from exc

    def set(self, txn: Transaction, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        self._validate(key)
        try:
            data = self._encode(value)
        except Exception as exc:
            raise TableError(f"encoding for table {self.table_name} failed: {exc}") from exc
        try:
            txn.set(key, data)
        except StoreError as exc:
            raise TableError(f"set for table {self.table_name} failed: {exc}") from exc

    def get(self, txn: Transaction, key: str) -> Any:
        """Return the value under ``key``; KeyNotFoundError passes through unchanged."""
        self._validate(key)
        try:
            item = txn.get(key)
        except KeyNotFoundError:
            raise
        except StoreError as exc:
            raise TableError(f"get failed for table {self.table_name}: {exc}") from exc
        return self._decode_value(item.value_copy())

    def get_or_default(self, txn: Transaction, key: str, default_factory: Callable[[], Any]) -> Any:
        """Return the value under ``key``, or a fresh default if it is absent."""
        try:
            return self.get(txn, key)
        except KeyNotFoundError:
            return default_factory()

    def get_min_key(self, txn: Transaction) -> Optional[str]:
        """Return the smallest key of the table, or None if it is empty."""
        prefix = f"/{self.table_name}/"
        with txn.iterator(prefix=prefix) as it:
            it.seek(prefix)
            if not it.valid_for_prefix(prefix):
                return None
            return it.item().key

    def get_max_key(self, txn: Transaction) -> Optional[str]:
        """Return the largest key of the table, or None if it is empty."""
        prefix = f"/{self.table_name}/"
        with txn.iterator(prefix=prefix, reverse=True) as it:
            it.seek(prefix + "\xff")
            if not it.valid():
                return None
            return it.item().key

    def get_min_max_partitions(self, txn: Transaction) -> Optional[Tuple[str, str]]:
        """Return the (min, max) partition ids in the table, or None if empty."""
        min_key = self.get_min_key(txn)
        if min_key is None:
            return None
        max_key = self.get_max_key(txn)
        if max_key is None:
            return None
        partitions = []
        for raw in (min_key, max_key):
            try:
                partitions.append(self.key_type.parse(raw).partition_id)
            except KeyParseError as exc:
                raise TableError(
                    f"invalid key in table: {self.table_name} key: {raw!r} error: {exc}"
                ) from exc
        return partitions[0], partitions[1]

    def get_unique_partition_list(self, txn: Transaction) -> List[str]:
        """Return every partition id between the table's min and max partitions."""
        bounds = self.get_min_max_partitions(txn)
        if bounds is None:
            return []
        return partitions_between(*bounds)

    def get_previous_key(self, txn: Transaction, key: Any, key_prefix: Any) -> Any:
        """Return the closest key before ``key`` that starts with ``key_prefix``.

        Partitions are searched from ``key``'s partition backwards.
        """
        partitions = self.get_unique_partition_list(txn)
        probe = key
        for partition in reversed(partitions):
            if partition > key.partition_id:
                continue
            old_key = str(probe)
            probe = probe.with_partition(partition)
            found = self._last_matching_key(txn, old_key, str(probe) + "\xff", str(key_prefix))
            if found is not None:
                return found
        raise TableError(
            f"failed to get any previous key in table:{self.table_name}, "
            f"for key:{key}, keyPrefix:{key_prefix}"
        )

    def _last_matching_key(self, txn: Transaction, old_key: str, seek: str, prefix: str) -> Any:
        with txn.iterator(reverse=True) as it:
            it.seek(seek)
            item = it.item()
            if item is not None and item.key == old_key:
                it.next()
            if not it.valid_for_prefix(prefix):
                return None
            raw = it.item().key
            try:
                return self.key_type.parse(raw)
            except KeyParseError as exc:
                raise TableError(f"Failure getting previous key for {old_key}: {exc}") from exc

    def range_read(
        self,
        txn: Transaction,
        key_prefix: Any,
        key_predicate: Optional[Callable[[str], bool]],
        value_predicate: Optional[Callable[[Any], bool]],
        start_time: datetime,
        end_time: datetime,
    ) -> Tuple[Dict[Any, Any], RangeReadStats]:
        """Read matching rows in every partition of a time range.

        With no ``key_prefix`` whole partitions are scanned; otherwise only
        keys starting with the prefix moved to each partition.
        """
        stats = RangeReadStats(table_name=self.table_name)
        started = time.monotonic()
        partitions = self.get_partitions_from_time_range(txn, start_time, end_time)
        stats.partition_count = len(partitions)

        results: Dict[Any, Any] = {}
        for partition in partitions:
            if key_prefix is None:
                seek = f"/{self.table_name}/{partition}/"
            else:
                seek = str(key_prefix.with_partition(partition))
            for item in _scan(txn, seek):
                stats.rows_visited_count += 1
                if key_predicate is not None and not key_predicate(item.key):
                    continue
                key = self.key_type.parse(item.key)
                stats.rows_passed_key_predicate_count += 1
                value = self._decode_value(item.value_copy())
                if value_predicate is not None and not value_predicate(value):
                    continue
                stats.rows_passed_value_predicate_count += 1
                results[key] = value

        stats.elapsed = timedelta(seconds=time.monotonic() - started)
        return results, stats

    def get_partitions_from_time_range(
        self, txn: Transaction, start_time: datetime, end_time: datetime
    ) -> List[str]:
        """Return the partition ids covering start_time to end_time."""
        return partitions_between(get_partition_id(start_time), get_partition_id(end_time))