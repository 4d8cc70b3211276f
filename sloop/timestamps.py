"""Conversion of RFC 3339 strings to protobuf timestamps."""

from __future__ import annotations

import calendar
import re

from google.protobuf.timestamp_pb2 import Timestamp

_RFC3339 = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?(?:(Z)|([+-])([0-9]{2}):([0-9]{2}))\Z"
)

# Range a protobuf Timestamp may hold: 0001-01-01T00:00:00Z to 9999-12-31T23:59:59Z.
_MIN_SECONDS = -62135596800
_MAX_SECONDS = 253402300799


class TimestampError(ValueError):
    """Raised when a string cannot become a protobuf timestamp."""


def _days_in_month(year: int, month: int) -> int:
    if month == 2:
        return 29 if calendar.isleap(year) else 28
    return 30 if month in (4, 6, 9, 11) else 31


def _days_from_civil(year: int, month: int, day: int) -> int:
    """Days since 1970-01-01 in the proleptic Gregorian calendar."""
    year -= month <= 2
    era = year // 400
    year_of_era = year - era * 400
    day_of_year = (153 * (month + (-3 if month > 2 else 9)) + 2) // 5 + day - 1
    day_of_era = year_of_era * 365 + year_of_era // 4 - year_of_era // 100 + day_of_year
    return era * 146097 + day_of_era - 719468


def string_to_timestamp(ts: str) -> Timestamp:
    """Parse an RFC 3339 time such as ``2019-07-12T20:12:12Z``."""
    match = _RFC3339.match(ts)
    if match is None:
        raise TimestampError(f"could not parse timestamp: {ts!r}")
    year, month, day, hour, minute, second = (int(g) for g in match.group(1, 2, 3, 4, 5, 6))
    if not (
        1 <= month <= 12
        and 1 <= day <= _days_in_month(year, month)
        and hour < 24
        and minute < 60
        and second < 60
    ):
        raise TimestampError(f"could not parse timestamp: {ts!r}: value out of range")

    offset = 0
    if match.group(8) is None:
        offset_hours, offset_minutes = int(match.group(10)), int(match.group(11))
        if offset_hours > 24 or offset_minutes > 60:
            raise TimestampError(f"could not parse timestamp: {ts!r}: offset out of range")
        offset = (offset_hours * 3600 + offset_minutes * 60) * (-1 if match.group(9) == "-" else 1)

    nanos = int((match.group(7) or "")[:9].ljust(9, "0"))
    seconds = (
        _days_from_civil(year, month, day) * 86400 + hour * 3600 + minute * 60 + second - offset
    )
    if not _MIN_SECONDS <= seconds <= _MAX_SECONDS:
        raise TimestampError(
            f"could not transform to proto timestamp: {ts!r} is outside the supported range"
        )
    return Timestamp(seconds=seconds, nanos=nanos)