"""gRPC and gRPC-Web protocol rules: status trailers, content types and web trailers."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Iterator, List, Mapping, Optional, Tuple, Union

from .connect_protocol import CODEC_NAME_PROTO
from .core import (
    MAX_CODE,
    MIN_CODE,
    Code,
    ConnectError,
    Envelope,
    ErrorDetail,
    Headers,
    canonical_header_key,
    merge_headers,
)

GRPC_HEADER_COMPRESSION = "Grpc-Encoding"
GRPC_HEADER_ACCEPT_COMPRESSION = "Grpc-Accept-Encoding"
GRPC_HEADER_TIMEOUT = "Grpc-Timeout"
GRPC_HEADER_STATUS = "Grpc-Status"
GRPC_HEADER_MESSAGE = "Grpc-Message"
GRPC_HEADER_DETAILS = "Grpc-Status-Details-Bin"

GRPC_FLAG_ENVELOPE_TRAILER = 0b10000000

GRPC_CONTENT_TYPE_DEFAULT = "application/grpc"
GRPC_WEB_CONTENT_TYPE_DEFAULT = "application/grpc-web"
GRPC_CONTENT_TYPE_PREFIX = GRPC_CONTENT_TYPE_DEFAULT + "+"
GRPC_WEB_CONTENT_TYPE_PREFIX = GRPC_WEB_CONTENT_TYPE_DEFAULT + "+"

TRAILERS_WITHOUT_GRPC_STATUS_MESSAGE = (
    f"protocol error: no {GRPC_HEADER_STATUS} trailer: unexpected EOF"
)

_HEX = frozenset(b"0123456789abcdefABCDEF")
_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
)
_MAX_UINT32 = (1 << 32) - 1
_UINT64_MASK = (1 << 64) - 1

_HTTP_TO_CODE = {
    400: Code.INTERNAL,
    401: Code.UNAUTHENTICATED,
    403: Code.PERMISSION_DENIED,
    404: Code.UNIMPLEMENTED,
    429: Code.UNAVAILABLE,
    502: Code.UNAVAILABLE,
    503: Code.UNAVAILABLE,
    504: Code.UNAVAILABLE,
}


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _get(header: Mapping[str, List[str]], key: str) -> str:
    values = header.get(key)
    return values[0] if values else ""


def _code_or_unknown(value: int) -> Code:
    if MIN_CODE <= value <= MAX_CODE:
        return Code(value)
    return Code.UNKNOWN


# Percent encoding of the Grpc-Message trailer.


def _should_escape(byte: int) -> bool:
    return byte < 0x20 or byte > 0x7E or byte == 0x25


def grpc_percent_encode(msg: str) -> str:
    """Percent-encode a message for the Grpc-Message trailer.

    Control characters, '%' and every byte outside printable ASCII are
    escaped; everything else is left readable.
    """
    raw = msg.encode("utf-8", "surrogateescape")
    if not any(_should_escape(byte) for byte in raw):
        return msg
    return "".join(f"%{byte:02X}" if _should_escape(byte) else chr(byte) for byte in raw)


def grpc_percent_decode(value: str) -> str:
    """Decode a percent-encoded Grpc-Message value.

    Raises ValueError when a '%' is not followed by two hex digits.
    """
    raw = value.encode("utf-8", "surrogateescape")
    if b"%" not in raw:
        return value
    out = bytearray()
    pos = 0
    while pos < len(raw):
        byte = raw[pos]
        if byte != 0x25:
            out.append(byte)
            pos += 1
            continue
        chunk = raw[pos : pos + 3]
        if len(chunk) < 3 or chunk[1] not in _HEX or chunk[2] not in _HEX:
            shown = chunk.decode("utf-8", "replace")
            raise ValueError(f"invalid percent-encoded string {_quote(shown)}")
        out.append(int(chunk[1:3], 16))
        pos += 3
    return out.decode("utf-8", "surrogateescape")


# Status codes and content types.


def grpc_http_to_code(http_code: int) -> Code:
    """Map an HTTP status from a gRPC response to an RPC code."""
    return _HTTP_TO_CODE.get(http_code, Code.UNKNOWN)


def _content_types(web: bool) -> Tuple[str, str]:
    if web:
        return GRPC_WEB_CONTENT_TYPE_DEFAULT, GRPC_WEB_CONTENT_TYPE_PREFIX
    return GRPC_CONTENT_TYPE_DEFAULT, GRPC_CONTENT_TYPE_PREFIX


def grpc_codec_from_content_type(web: bool, content_type: str) -> str:
    """Extract the codec name from a gRPC or gRPC-Web content type."""
    bare, prefix = _content_types(web)
    if content_type == bare:
        return CODEC_NAME_PROTO
    if content_type.startswith(prefix):
        return content_type[len(prefix):]
    return content_type


def grpc_content_type_from_codec_name(web: bool, name: str) -> str:
    """Build the gRPC or gRPC-Web content type for a codec name."""
    if web:
        return GRPC_WEB_CONTENT_TYPE_PREFIX + name
    if name == CODEC_NAME_PROTO:
        return GRPC_CONTENT_TYPE_DEFAULT
    return GRPC_CONTENT_TYPE_PREFIX + name


def validate_grpc_response_content_type(
    web: bool, request_codec_name: str, response_content_type: str
) -> None:
    """Check that a response uses the same codec as the request.

    Raises ConnectError(INTERNAL) on a mismatch.
    """
    bare, prefix = _content_types(web)
    if response_content_type == prefix + request_codec_name:
        return
    if request_codec_name == CODEC_NAME_PROTO and response_content_type == bare:
        return
    expected = bare if request_codec_name == CODEC_NAME_PROTO else prefix + request_codec_name
    raise ConnectError(
        Code.INTERNAL,
        f"invalid content-type: {_quote(response_content_type)}; expecting {_quote(expected)}",
    )


# Binary status messages carried in Grpc-Status-Details-Bin.


def _encode_varint(value: int) -> bytes:
    value &= _UINT64_MASK
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _length_delimited(number: int, payload: bytes) -> bytes:
    return _encode_varint(number << 3 | 2) + _encode_varint(len(payload)) + payload


def _encode_status(code: int, message: str, details: List[ErrorDetail]) -> bytes:
    out = bytearray()
    if code:
        out += _encode_varint(1 << 3) + _encode_varint(code)
    if message:
        out += _length_delimited(2, message.encode("utf-8", "surrogateescape"))
    for detail in details:
        packed = bytearray()
        if detail.type_url:
            packed += _length_delimited(1, detail.type_url.encode("utf-8"))
        if detail.value:
            packed += _length_delimited(2, bytes(detail.value))
        out += _length_delimited(3, bytes(packed))
    return bytes(out)


def _decode_varint(data: bytes, pos: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("unexpected end of data in varint")
        if shift >= 70:
            raise ValueError("varint overflow")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return result & _UINT64_MASK, pos


def _take(data: bytes, pos: int, size: int) -> Tuple[bytes, int]:
    chunk = data[pos : pos + size]
    if len(chunk) < size:
        raise ValueError("unexpected end of data in field")
    return chunk, pos + size


def _iter_fields(data: bytes) -> Iterator[Tuple[int, int, Union[int, bytes]]]:
    pos = 0
    while pos < len(data):
        key, pos = _decode_varint(data, pos)
        number, wire_type = key >> 3, key & 7
        if number == 0:
            raise ValueError("invalid field number 0")
        value: Union[int, bytes]
        if wire_type == 0:
            value, pos = _decode_varint(data, pos)
        elif wire_type == 1:
            value, pos = _take(data, pos, 8)
        elif wire_type == 2:
            size, pos = _decode_varint(data, pos)
            value, pos = _take(data, pos, size)
        elif wire_type == 5:
            value, pos = _take(data, pos, 4)
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        yield number, wire_type, value


def _expect_bytes(wire_type: int, value: Union[int, bytes]) -> bytes:
    if wire_type != 2 or not isinstance(value, bytes):
        raise ValueError("wrong wire type for length-delimited field")
    return value


def _decode_any(data: bytes) -> ErrorDetail:
    type_url = ""
    value = b""
    for number, wire_type, raw in _iter_fields(data):
        if number == 1:
            type_url = _expect_bytes(wire_type, raw).decode("utf-8")
        elif number == 2:
            value = _expect_bytes(wire_type, raw)
    return ErrorDetail(type_url=type_url, value=value)


def _decode_status(data: bytes) -> Tuple[int, str, List[ErrorDetail]]:
    code = 0
    message = ""
    details: List[ErrorDetail] = []
    for number, wire_type, raw in _iter_fields(data):
        if number == 1:
            if wire_type != 0 or not isinstance(raw, int):
                raise ValueError("wrong wire type for status code")
            code = raw & _MAX_UINT32
            if code >= 1 << 31:
                code -= 1 << 32
        elif number == 2:
            message = _expect_bytes(wire_type, raw).decode("utf-8")
        elif number == 3:
            details.append(_decode_any(_expect_bytes(wire_type, raw)))
    return code, message, details


def _encode_binary_header(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _decode_binary_header(value: str) -> bytes:
    if len(value) % 4 != 0:
        value += "=" * (-len(value) % 4)
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"illegal base64 data: {exc}") from exc


# Errors as trailing metadata.


def grpc_error_to_trailer(trailer: Headers, err: Optional[BaseException]) -> None:
    """Write the status of err (None for success) into trailer."""
    if err is None:
        trailer[GRPC_HEADER_STATUS] = ["0"]
        trailer[GRPC_HEADER_MESSAGE] = [""]
        return
    if isinstance(err, ConnectError):
        code, message, details = int(err.code), err.message, err.details
        merge_headers(trailer, err.meta)
    else:
        code, message, details = int(Code.UNKNOWN), str(err), []
    status = _encode_status(code, message, details)
    trailer[GRPC_HEADER_STATUS] = [str(code)]
    trailer[GRPC_HEADER_MESSAGE] = [grpc_percent_encode(message)]
    trailer[GRPC_HEADER_DETAILS] = [_encode_binary_header(status)]


def grpc_error_from_trailer(trailer: Mapping[str, List[str]]) -> Optional[ConnectError]:
    """Read the error a server sent in trailing metadata.

    Returns None for an OK status. A missing status, or one that cannot be
    parsed, yields a ConnectError with code INTERNAL.
    """
    code_header = _get(trailer, GRPC_HEADER_STATUS)
    if code_header == "":
        return ConnectError(Code.INTERNAL, TRAILERS_WITHOUT_GRPC_STATUS_MESSAGE)
    if code_header == "0":
        return None
    if not code_header.isascii() or not code_header.isdigit() or int(code_header) > _MAX_UINT32:
        return ConnectError(
            Code.INTERNAL, f"protocol error: invalid error code {_quote(code_header)}"
        )
    raw_message = _get(trailer, GRPC_HEADER_MESSAGE)
    try:
        message = grpc_percent_decode(raw_message)
    except ValueError:
        return ConnectError(
            Code.INTERNAL, f"protocol error: invalid error message {_quote(raw_message)}"
        )
    code = _code_or_unknown(int(code_header))
    details: List[ErrorDetail] = []
    encoded_details = _get(trailer, GRPC_HEADER_DETAILS)
    if encoded_details:
        try:
            binary = _decode_binary_header(encoded_details)
        except ValueError as exc:
            return ConnectError(
                Code.INTERNAL,
                f"server returned invalid grpc-status-details-bin trailer: {exc}",
            )
        try:
            status_code, message, details = _decode_status(binary)
        except ValueError as exc:
            return ConnectError(
                Code.INTERNAL,
                f"server returned invalid protobuf for error details: {exc}",
            )
        # The binary status wins over the plain headers.
        code = _code_or_unknown(status_code)
    return ConnectError(code, message, details=details, wire=True)


# gRPC-Web trailers sent in the response body.


def marshal_web_trailers(trailer: Mapping[str, List[str]]) -> bytes:
    """Encode trailers as the enveloped HTTP/1 header block gRPC-Web uses."""
    lowered: Headers = {}
    for key, values in trailer.items():
        lowered.setdefault(key.lower(), []).extend(values)
    lines = []
    for key in sorted(lowered):
        for value in lowered[key]:
            value = value.replace("\r", " ").replace("\n", " ").strip(" \t")
            lines.append(f"{key}: {value}\r\n")
    data = "".join(lines).encode("utf-8", "surrogateescape")
    return Envelope(data=data, flags=GRPC_FLAG_ENVELOPE_TRAILER).encode()


def _invalid_trailers(reason: str) -> ConnectError:
    return ConnectError(Code.INTERNAL, f"gRPC-Web protocol error: trailers invalid: {reason}")


def parse_web_trailers(data: bytes) -> Headers:
    """Parse the payload of a gRPC-Web trailers envelope into canonical headers.

    Raises ConnectError(INTERNAL) when the block is malformed.
    """
    text = bytes(data).decode("utf-8", "surrogateescape") + "\n"
    lines = text.split("\n")[:-1]
    header: Headers = {}
    last_key: Optional[str] = None
    for line in lines:
        if line.endswith("\r"):
            line = line[:-1]
        if line == "":
            return header
        if line[0] in " \t":
            if last_key is None:
                raise _invalid_trailers(f"malformed MIME header initial line: {_quote(line)}")
            header[last_key][-1] = f"{header[last_key][-1]} {line.strip(' \t')}".strip(" ")
            continue
        name, sep, value = line.partition(":")
        if not sep or any(char not in _TOKEN_CHARS for char in name):
            raise _invalid_trailers(f"malformed MIME header line: {_quote(line)}")
        if not name:
            last_key = None
            continue
        last_key = canonical_header_key(name)
        header.setdefault(last_key, []).append(value.strip(" \t"))
    raise _invalid_trailers("EOF")