"""Time partitions used to group store keys.

A partition id is the Unix time (in seconds) of the start of the hour or day
that contains a timestamp, zero padded to 12 digits so that partition ids sort
lexicographically in time order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INTEGER = re.compile(r"[+-]?[0-9]+\Z")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


@dataclass
class _Settings:
    duration: Optional[timedelta] = None


# Set once at start-up; keys need it but should not carry configuration around.
_settings = _Settings()


class PartitionDurationError(ValueError):
    """Raised when the configured partition duration is neither an hour nor a day."""


def set_partition_duration(duration: Optional[timedelta]) -> Optional[timedelta]:
    """Set the partition duration used by all partition calculations.

    Returns the duration that was configured before.
    """
    previous = _settings.duration
    _settings.duration = duration
    return previous


def get_partition_duration() -> Optional[timedelta]:
    """Return the configured partition duration."""
    return _settings.duration


def _checked_duration() -> timedelta:
    duration = _settings.duration
    if duration not in (HOUR, DAY):
        raise PartitionDurationError("Invalid partition duration")
    return duration


def get_partition_id(timestamp: datetime) -> str:
    """Return the partition id holding ``timestamp``.

    Rounding happens in the timestamp's own time zone; naive timestamps are
    taken as UTC.
    """
    duration = _checked_duration()
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    if duration == HOUR:
        rounded = timestamp.replace(minute=0, second=0, microsecond=0)
    else:
        rounded = timestamp.replace(hour=0, minute=0, second=0, microsecond=0)
    seconds = (rounded - _EPOCH) // timedelta(seconds=1)
    return f"{seconds % 2**64:012d}"


def get_time_range_for_partition(partition_id: str) -> Tuple[datetime, datetime]:
    """Return the (oldest, newest) UTC times covered by a partition.

    Raises ValueError when the id is not an integer.
    """
    if not _INTEGER.match(partition_id):
        raise ValueError(f"invalid partition id: {partition_id!r}")
    seconds = int(partition_id)
    if not _INT64_MIN <= seconds <= _INT64_MAX:
        raise ValueError(f"partition id out of range: {partition_id!r}")
    try:
        oldest = _EPOCH + timedelta(seconds=seconds)
    except OverflowError as exc:
        raise ValueError(f"partition id out of range: {partition_id!r}") from exc
    duration = _checked_duration()
    return oldest, oldest + duration