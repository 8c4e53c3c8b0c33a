"""Parsing and encoding of the gRPC Grpc-Timeout header.

Durations are integer nanoseconds throughout.
"""

from __future__ import annotations

import json
import re

NANOSECOND = 1
MICROSECOND = 1_000 * NANOSECOND
MILLISECOND = 1_000 * MICROSECOND
SECOND = 1_000 * MILLISECOND
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE

_MAX_INT64 = (1 << 63) - 1
_MIN_INT64 = -(1 << 63)
# The protocol limits the value to 8 ASCII digits, not counting the unit.
_MAX_TIMEOUT_VALUE = 99_999_999
_ENCODE_LIMIT = 100_000_000
# How many hours fit into a signed 64-bit count of nanoseconds.
_MAX_HOURS = _MAX_INT64 // HOUR

_UNITS = {
    "n": NANOSECOND,
    "u": MICROSECOND,
    "m": MILLISECOND,
    "S": SECOND,
    "M": MINUTE,
    "H": HOUR,
}
_ENCODE_ORDER = (
    (NANOSECOND, "n"),
    (MICROSECOND, "u"),
    (MILLISECOND, "m"),
    (SECOND, "S"),
    (MINUTE, "M"),
)
_INTEGER = re.compile(r"[+-]?[0-9]+")


class NoTimeout(Exception):
    """Raised when a header carries no usable timeout: absent or effectively unbounded."""


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def grpc_parse_timeout(timeout: str) -> int:
    """Parse a Grpc-Timeout header value into nanoseconds.

    Raises NoTimeout when the value is empty or too large to matter, and
    ValueError when it is malformed.
    """
    if timeout == "":
        raise NoTimeout("no timeout")
    unit_char = timeout[-1]
    unit = _UNITS.get(unit_char)
    if unit is None:
        raise ValueError(f"protocol error: timeout has invalid unit {unit_char!r}")
    digits = timeout[:-1]
    if not _INTEGER.fullmatch(digits):
        raise ValueError(f"protocol error: invalid timeout {_quote(timeout)}")
    num = int(digits)
    if num < 0 or num > _MAX_INT64 or num < _MIN_INT64:
        raise ValueError(f"protocol error: invalid timeout {_quote(timeout)}")
    if num > _MAX_TIMEOUT_VALUE:
        raise ValueError(f"protocol error: timeout {_quote(timeout)} is too long")
    if unit == HOUR and num > _MAX_HOURS:
        raise NoTimeout("timeout is effectively unbounded")
    return num * unit


def grpc_encode_timeout(timeout_ns: int) -> str:
    """Encode a duration in nanoseconds as a Grpc-Timeout header value.

    The largest unit is chosen that keeps the value below 1e8; the value is
    truncated towards zero. Non-positive durations encode as "0n".
    """
    if timeout_ns <= 0:
        return "0n"
    for size, unit in _ENCODE_ORDER:
        if timeout_ns < size * _ENCODE_LIMIT:
            return f"{timeout_ns // size}{unit}"
    return f"{timeout_ns // HOUR}H"