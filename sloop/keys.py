"""Keys of the typed store tables.

Every key is a slash separated string that starts with the table name and the
partition id, so that all rows of one table and one partition are adjacent in
key order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import ClassVar, List, Optional

from sloop.partition import get_partition_id

_INTEGER = re.compile(r"[+-]?[0-9]+\Z")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class KeyParseError(ValueError):
    """Raised when a string is not a valid key for a table."""


def _split_key(key: str, table_name: str) -> List[str]:
    parts = key.split("/")
    if len(parts) != 7:
        raise KeyParseError(f"Key should have 6 parts: {key}")
    if parts[0] != "":
        raise KeyParseError(f"Key should start with /: {key}")
    if parts[1] != table_name:
        raise KeyParseError(f"Second part of key ({key}) should be {table_name}")
    return parts[2:]


def _uid_key_string(table_name: str, partition_id: str, kind: str,
                    namespace: str, name: str, uid: str) -> str:
    return f"/{table_name}/{partition_id}/{kind}/{namespace}/{name}/{uid}"


@dataclass(frozen=True)
class WatchTableKey:
    """Key ``/watch/<partition>/<kind>/<namespace>/<name>/<timestamp>``.

    ``timestamp`` is Unix time in nanoseconds, or None when unset. A key with
    no name and no timestamp, or with no timestamp, renders as a shorter
    string that can be used as a key prefix.
    """

    table_name: ClassVar[str] = "watch"

    partition_id: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    timestamp: Optional[int] = None

    @classmethod
    def parse(cls, key: str) -> "WatchTableKey":
        """Build a key from its string form."""
        partition_id, kind, namespace, name, stamp = _split_key(key, cls.table_name)
        if not _INTEGER.match(stamp) or not _INT64_MIN <= int(stamp) <= _INT64_MAX:
            raise KeyParseError(f"Failed to parse timestamp from key: {key}")
        return cls(partition_id, kind, namespace, name, int(stamp))

    @classmethod
    def validate_key(cls, key: str) -> None:
        """Raise KeyParseError unless ``key`` is a valid key of this table."""
        cls.parse(key)

    def with_partition(self, partition_id: str) -> "WatchTableKey":
        """Return a copy of this key in another partition."""
        return replace(self, partition_id=partition_id)

    def __str__(self) -> str:
        base = f"/{self.table_name}/{self.partition_id}/{self.kind}/{self.namespace}"
        if self.name == "" and self.timestamp is None:
            return base
        if self.timestamp is None:
            return f"{base}/{self.name}"
        return f"{base}/{self.name}/{self.timestamp}"


@dataclass(frozen=True)
class ResourceSummaryKey:
    """Key ``/ressum/<partition>/<kind>/<namespace>/<name>/<uid>``."""

    table_name: ClassVar[str] = "ressum"

    partition_id: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""

    @classmethod
    def from_timestamp(cls, timestamp: datetime, kind: str, namespace: str,
                       name: str, uid: str) -> "ResourceSummaryKey":
        """Build a key in the partition that holds ``timestamp``."""
        return cls(get_partition_id(timestamp), kind, namespace, name, uid)

    @classmethod
    def parse(cls, key: str) -> "ResourceSummaryKey":
        """Build a key from its string form."""
        return cls(*_split_key(key, cls.table_name))

    @classmethod
    def validate_key(cls, key: str) -> None:
        """Raise KeyParseError unless ``key`` is a valid key of this table."""
        cls.parse(key)

    def with_partition(self, partition_id: str) -> "ResourceSummaryKey":
        """Return a copy of this key in another partition."""
        return replace(self, partition_id=partition_id)

    def __str__(self) -> str:
        return _uid_key_string(self.table_name, self.partition_id, self.kind,
                               self.namespace, self.name, self.uid)


@dataclass(frozen=True)
class EventCountKey:
    """Key ``/eventcount/<partition>/<kind>/<namespace>/<name>/<uid>``."""

    table_name: ClassVar[str] = "eventcount"

    partition_id: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""

    @classmethod
    def from_timestamp(cls, timestamp: datetime, kind: str, namespace: str,
                       name: str, uid: str) -> "EventCountKey":
        """Build a key in the partition that holds ``timestamp``."""
        return cls(get_partition_id(timestamp), kind, namespace, name, uid)

    @classmethod
    def parse(cls, key: str) -> "EventCountKey":
        """Build a key from its string form."""
        return cls(*_split_key(key, cls.table_name))

    @classmethod
    def validate_key(cls, key: str) -> None:
        """Raise KeyParseError unless ``key`` is a valid key of this table."""
        cls.parse(key)

    def with_partition(self, partition_id: str) -> "EventCountKey":
        """Return a copy of this key in another partition."""
        return replace(self, partition_id=partition_id)

    def __str__(self) -> str:
        return _uid_key_string(self.table_name, self.partition_id, self.kind,
                               self.namespace, self.name, self.uid)


@dataclass(frozen=True)
class WatchActivityKey:
    """Key ``/watchactivity/<partition>/<kind>/<namespace>/<name>/<uid>``."""

    table_name: ClassVar[str] = "watchactivity"

    partition_id: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""

    @classmethod
    def parse(cls, key: str) -> "WatchActivityKey":
        """Build a key from its string form."""
        return cls(*_split_key(key, cls.table_name))

    @classmethod
    def validate_key(cls, key: str) -> None:
        """Raise KeyParseError unless ``key`` is a valid key of this table."""
        cls.parse(key)

    def with_partition(self, partition_id: str) -> "WatchActivityKey":
        """Return a copy of this key in another partition."""
        return replace(self, partition_id=partition_id)

    def __str__(self) -> str:
        return _uid_key_string(self.table_name, self.partition_id, self.kind,
                               self.namespace, self.name, self.uid)