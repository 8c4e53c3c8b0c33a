import pytest
from hypothesis import given
from hypothesis import strategies as st

from rpcwire.grpc_timeout import (
    HOUR,
    MILLISECOND,
    NANOSECOND,
    SECOND,
    NoTimeout,
    grpc_encode_timeout,
    grpc_parse_timeout,
)

MAX_INT64 = (1 << 63) - 1


def test_parse_empty_is_no_timeout():
    with pytest.raises(NoTimeout):
        grpc_parse_timeout("")


@pytest.mark.parametrize("value", ["foo", "12xS", "S", "-5S", "12.5m", "1x"])
def test_parse_malformed(value):
    with pytest.raises(ValueError):
        grpc_parse_timeout(value)


def test_parse_nine_digits_is_error_not_no_timeout():
    with pytest.raises(ValueError, match="too long"):
        grpc_parse_timeout("999999999n")


def test_parse_hours_overflow_is_no_timeout():
    with pytest.raises(NoTimeout):
        grpc_parse_timeout("99999999H")


def test_parse_seconds():
    assert grpc_parse_timeout("45S") == 45 * SECOND


def test_parse_long_seconds_does_not_overflow():
    assert grpc_parse_timeout("99999999S") == 99999999 * SECOND


def test_parse_max_hours():
    assert grpc_parse_timeout("2562047H") == 2562047 * HOUR


@pytest.mark.parametrize(
    "value,expected",
    [
        ("1n", 1),
        ("1u", 1_000),
        ("1m", 1_000_000),
        ("1S", 1_000_000_000),
        ("1M", 60_000_000_000),
        ("1H", 3_600_000_000_000),
        ("+3m", 3_000_000),
    ],
)
def test_parse_units(value, expected):
    assert grpc_parse_timeout(value) == expected


def test_encode_hour_and_second_uses_millis():
    assert grpc_encode_timeout(HOUR + SECOND) == "3601000m"


def test_encode_overflow_and_underflow():
    assert grpc_encode_timeout(MAX_INT64) == "2562047H"
    assert grpc_encode_timeout(-1) == "0n"
    assert grpc_encode_timeout(-1 * HOUR) == "0n"
    assert grpc_encode_timeout(0) == "0n"


def test_encode_unit_conversions():
    eight_digits_nanos = 99999999 * NANOSECOND
    assert grpc_encode_timeout(eight_digits_nanos) == "99999999n"
    assert grpc_encode_timeout(eight_digits_nanos + 1) == "100000u"


def test_encode_rounding():
    assert grpc_encode_timeout(10 * MILLISECOND + 1) == "10000001n"
    assert grpc_encode_timeout(10 * SECOND + 1) == "10000000u"


def test_encode_forty_five_seconds():
    assert grpc_encode_timeout(45 * SECOND) == "45000000u"


@given(st.integers(min_value=1, max_value=MAX_INT64))
def test_encode_then_parse_is_close(timeout_ns):
    encoded = grpc_encode_timeout(timeout_ns)
    assert len(encoded) <= 9
    parsed = grpc_parse_timeout(encoded)
    assert parsed <= timeout_ns
    unit = {"n": 1, "u": 10**3, "m": 10**6, "S": 10**9, "M": 60 * 10**9, "H": HOUR}[encoded[-1]]
    assert timeout_ns - parsed < unit


@given(st.integers(min_value=0, max_value=99999999), st.sampled_from("numSM"))
def test_parse_then_encode_preserves_duration(num, unit):
    parsed = grpc_parse_timeout(f"{num}{unit}")
    if parsed == 0:
        assert grpc_encode_timeout(parsed) == "0n"
    else:
        assert grpc_parse_timeout(grpc_encode_timeout(parsed)) == parsed