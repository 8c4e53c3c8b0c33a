import pytest

from rpcwire.core import (
    Code,
    ConnectError,
    Envelope,
    ErrorDetail,
    Spec,
    StreamType,
    canonical_header_key,
    code_of,
    is_not_modified_error,
    merge_headers,
    not_modified_error,
    read_envelope,
)


def test_code_names():
    assert str(ConnectError(Code.INVALID_ARGUMENT)) == "invalid_argument"
    assert str(ConnectError(Code.UNAVAILABLE)) == "unavailable"
    assert code_of(ConnectError(Code.CANCELED)) < code_of(ConnectError(Code.UNAUTHENTICATED))


def test_stream_type_bidi_combines_client_and_server():
    spec = Spec(stream_type=StreamType.CLIENT | StreamType.SERVER)
    assert spec.stream_type == StreamType.BIDI


def test_spec_defaults():
    spec = Spec()
    assert spec.stream_type is StreamType.UNARY
    assert spec.is_client is False


def test_error_detail_type_name():
    detail = ErrorDetail(type_url="type.googleapis.com/acme.user.v1.User", value=b"")
    assert detail.type_name == "acme.user.v1.User"


def test_connect_error_str():
    err = ConnectError(Code.UNAVAILABLE, "oh no")
    assert err.message == "oh no"
    assert str(err) == "unavailable: oh no"
    assert str(ConnectError(Code.INTERNAL)) == str(Code.INTERNAL)


def test_connect_error_copies_meta():
    meta = {"Etag": ["some-etag"]}
    err = ConnectError(Code.UNKNOWN, "x", meta=meta)
    meta["Etag"].append("other")
    assert err.meta == {"Etag": ["some-etag"]}


def test_code_of():
    assert code_of(ConnectError(Code.NOT_FOUND, "gone")) == Code.NOT_FOUND
    assert code_of(ValueError("boom")) == Code.UNKNOWN


def test_not_modified():
    err = not_modified_error({"Etag": ["some-etag"]})
    assert code_of(err) == Code.UNKNOWN
    assert is_not_modified_error(err)
    assert err.meta["Etag"] == ["some-etag"]
    assert not is_not_modified_error(ConnectError(Code.UNKNOWN, "not modified"))
    assert not is_not_modified_error(None)


def test_not_modified_through_cause():
    outer = RuntimeError("wrapped")
    outer.__cause__ = not_modified_error()
    assert is_not_modified_error(outer)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("not-canonical-header", "Not-Canonical-Header"),
        ("mixed-Canonical", "Mixed-Canonical"),
        ("Canonical-Header", "Canonical-Header"),
        ("grpc-status", "Grpc-Status"),
    ],
)
def test_canonical_header_key(raw, expected):
    assert canonical_header_key(raw) == expected


def test_canonical_header_key_invalid_left_alone():
    assert canonical_header_key("bad key") == "bad key"


def test_canonical_header_key_idempotent():
    once = canonical_header_key("user-provided")
    assert canonical_header_key(once) == once


def test_merge_headers_appends():
    into = {"Mixed-Canonical": ["b"]}
    merge_headers(into, {"Mixed-Canonical": ["b"], "Canonical-Header": ["c"]})
    assert into == {"Mixed-Canonical": ["b", "b"], "Canonical-Header": ["c"]}
    merge_headers(into, None)
    assert into["Canonical-Header"] == ["c"]


def test_envelope_wire_form():
    assert Envelope(data=b"ab", flags=2).encode() == b"\x02\x00\x00\x00\x02ab"


def test_envelope_is_set():
    env = Envelope(data=b"", flags=0b10000010)
    assert env.is_set(0b00000010)
    assert env.is_set(0b10000000)
    assert not Envelope(flags=0).is_set(0b00000010)


def test_envelope_round_trip_with_rest():
    first = Envelope(data=b"hello", flags=0)
    second = Envelope(data=b"world!", flags=2)
    env, rest = read_envelope(first.encode() + second.encode())
    assert env == first
    env2, rest2 = read_envelope(rest)
    assert env2 == second
    assert rest2 == b""


def test_read_envelope_empty():
    with pytest.raises(EOFError):
        read_envelope(b"")


def test_read_envelope_truncated():
    encoded = Envelope(data=b"hello").encode()
    with pytest.raises(ConnectError) as info:
        read_envelope(encoded[:-1])
    assert info.value.code == Code.INTERNAL
    with pytest.raises(ConnectError):
        read_envelope(encoded[:3])