"""Reading typed values out of request query parameters."""

from __future__ import annotations

import enum
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INTEGER = re.compile(r"[+-]?[0-9]+\Z")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_.]+")
_DURATION_PART = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")

_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


class TimeUnit(enum.Enum):
    """Units a Unix time parameter may be given in."""

    SECOND = "s"
    MILLISECOND = "ms"


class ParamError(ValueError):
    """Raised when a query parameter holds an unusable value."""


def _query_value(query: Mapping[str, Any], name: str) -> str:
    value = query.get(name, "")
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    return value or ""


def _parse_int64(text: str) -> int:
    if not _INTEGER.match(text):
        raise ParamError(f"invalid integer: {text!r}")
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ParamError(f"integer out of range: {text!r}")
    return number


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``300ms``, ``-1.5h`` or ``2h45m``.

    Valid units are ns, us (or µs), ms, s, m and h. Precision below a
    microsecond is dropped.
    """
    rest = text
    negative = False
    if rest[:1] in ("-", "+"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if rest == "":
        raise ParamError(f"invalid duration {text!r}")
    total = 0
    while rest:
        match = _DURATION_PART.match(rest)
        whole, fraction, unit = match.group(1), match.group(2), match.group(3)
        if whole == "" and not fraction:
            raise ParamError(f"invalid duration {text!r}")
        if unit == "":
            raise ParamError(f"missing unit in duration {text!r}")
        scale = _NANOS_PER_UNIT.get(unit)
        if scale is None:
            raise ParamError(f"unknown unit {unit!r} in duration {text!r}")
        total += int(whole or "0") * scale
        if fraction:
            total += int(fraction) * scale // 10 ** len(fraction)
        if total > _INT64_MAX + (1 if negative else 0):
            raise ParamError(f"invalid duration {text!r}")
        rest = rest[match.end():]
    micros = total // 1000
    return timedelta(microseconds=-micros if negative else micros)


def time_from_unix_time_param(
    query: Mapping[str, Any], param_name: str, default: Optional[datetime], unit: TimeUnit
) -> Optional[datetime]:
    """Return the UTC time held by a Unix time parameter, or ``default`` if absent."""
    text = _query_value(query, param_name)
    if text == "":
        return default
    number = _parse_int64(text)
    try:
        if unit is TimeUnit.SECOND:
            return _EPOCH + timedelta(seconds=number)
        if unit is TimeUnit.MILLISECOND:
            return _EPOCH + timedelta(milliseconds=number)
    except OverflowError as exc:
        raise ParamError(f"time out of range: {text!r}") from exc
    raise ParamError("Invalid unit.  Only second and millisecond are supported")


def duration_from_param(
    query: Mapping[str, Any], param_name: str, default: timedelta
) -> timedelta:
    """Return the duration held by a parameter, or ``default`` if absent."""
    text = _query_value(query, param_name)
    if text == "":
        return default
    return parse_duration(text)


def clean_string_from_param(query: Mapping[str, Any], param_name: str, default: str) -> str:
    """Return a parameter stripped to letters, digits, '-', '_' and '.'.

    Runs of '..' are removed so the value cannot climb a path.
    """
    text = _query_value(query, param_name)
    if text == "":
        return default
    return _UNSAFE.sub("", text).replace("..", "")


def number_from_param(query: Mapping[str, Any], param_name: str, default: int) -> int:
    """Return the integer held by a parameter, or ``default`` if absent or invalid."""
    text = _query_value(query, param_name)
    if text == "":
        return default
    try:
        return _parse_int64(text)
    except ParamError:
        return default