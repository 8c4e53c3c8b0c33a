"""Connect protocol rules: status mapping, content types, query values and timeouts."""

from __future__ import annotations

import base64
import json
import re
from typing import Optional

from .core import Code, ConnectError, StreamType, not_modified_error

CODEC_NAME_PROTO = "proto"
CODEC_NAME_JSON = "json"
CODEC_NAME_JSON_CHARSET_UTF8 = CODEC_NAME_JSON + "; charset=utf-8"

CONNECT_UNARY_HEADER_COMPRESSION = "Content-Encoding"
CONNECT_UNARY_HEADER_ACCEPT_COMPRESSION = "Accept-Encoding"
CONNECT_UNARY_TRAILER_PREFIX = "Trailer-"
CONNECT_STREAMING_HEADER_COMPRESSION = "Connect-Content-Encoding"
CONNECT_STREAMING_HEADER_ACCEPT_COMPRESSION = "Connect-Accept-Encoding"
CONNECT_HEADER_TIMEOUT = "Connect-Timeout-Ms"
CONNECT_HEADER_PROTOCOL_VERSION = "Connect-Protocol-Version"
CONNECT_PROTOCOL_VERSION = "1"

CONNECT_FLAG_ENVELOPE_END_STREAM = 0b00000010

CONNECT_UNARY_CONTENT_TYPE_PREFIX = "application/"
CONNECT_UNARY_CONTENT_TYPE_JSON = CONNECT_UNARY_CONTENT_TYPE_PREFIX + CODEC_NAME_JSON
CONNECT_STREAMING_CONTENT_TYPE_PREFIX = "application/connect+"

CONNECT_UNARY_ENCODING_QUERY_PARAMETER = "encoding"
CONNECT_UNARY_MESSAGE_QUERY_PARAMETER = "message"
CONNECT_UNARY_BASE64_QUERY_PARAMETER = "base64"
CONNECT_UNARY_COMPRESSION_QUERY_PARAMETER = "compression"
CONNECT_UNARY_CONNECT_QUERY_PARAMETER = "connect"
CONNECT_UNARY_CONNECT_QUERY_VALUE = "v" + CONNECT_PROTOCOL_VERSION

_MAX_TIMEOUT_DIGITS = 10
_TIMEOUT_PATTERN = re.compile(r"[+-]?[0-9]+")
_URLSAFE_ALPHABET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)

_CODE_TO_HTTP = {
    Code.CANCELED: 408,
    Code.UNKNOWN: 500,
    Code.INVALID_ARGUMENT: 400,
    Code.DEADLINE_EXCEEDED: 408,
    Code.NOT_FOUND: 404,
    Code.ALREADY_EXISTS: 409,
    Code.PERMISSION_DENIED: 403,
    Code.RESOURCE_EXHAUSTED: 429,
    Code.FAILED_PRECONDITION: 412,
    Code.ABORTED: 409,
    Code.OUT_OF_RANGE: 400,
    Code.UNIMPLEMENTED: 404,
    Code.INTERNAL: 500,
    Code.UNAVAILABLE: 503,
    Code.DATA_LOSS: 500,
    Code.UNAUTHENTICATED: 401,
}

_HTTP_TO_CODE = {
    400: Code.INVALID_ARGUMENT,
    401: Code.UNAUTHENTICATED,
    403: Code.PERMISSION_DENIED,
    404: Code.UNIMPLEMENTED,
    408: Code.DEADLINE_EXCEEDED,
    409: Code.ABORTED,
    412: Code.FAILED_PRECONDITION,
    413: Code.RESOURCE_EXHAUSTED,
    415: Code.INTERNAL,
    429: Code.UNAVAILABLE,
    431: Code.RESOURCE_EXHAUSTED,
    502: Code.UNAVAILABLE,
    503: Code.UNAVAILABLE,
    504: Code.UNAVAILABLE,
}


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def connect_code_to_http(code: int) -> int:
    """Map an RPC code to the HTTP status the Connect protocol uses for it."""
    return _CODE_TO_HTTP.get(code, 500)


def connect_http_to_code(http_code: int) -> Code:
    """Map an HTTP status from a Connect response to an RPC code."""
    return _HTTP_TO_CODE.get(http_code, Code.UNKNOWN)


def _prefix_for(stream_type: StreamType) -> str:
    if stream_type == StreamType.UNARY:
        return CONNECT_UNARY_CONTENT_TYPE_PREFIX
    return CONNECT_STREAMING_CONTENT_TYPE_PREFIX


def connect_codec_from_content_type(stream_type: StreamType, content_type: str) -> str:
    """Extract the codec name from a Connect content type."""
    prefix = _prefix_for(stream_type)
    if content_type.startswith(prefix):
        return content_type[len(prefix):]
    return content_type


def connect_content_type_from_codec_name(stream_type: StreamType, name: str) -> str:
    """Build the Connect content type for a codec name."""
    return _prefix_for(stream_type) + name


def encode_binary_query_value(data: bytes) -> str:
    """URL-safe base64 encode data, without padding."""
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def decode_query_value(data: str, base64_encoded: bool) -> bytes:
    """Decode a GET query message, which may be padded or unpadded URL-safe base64.

    Raises ValueError when the base64 is malformed.
    """
    if not base64_encoded:
        return data.encode("utf-8")
    if len(data) % 4 != 0:
        body, padding = data, ""
    else:
        body = data.rstrip("=")
        padding = data[len(body):]
        if len(padding) > 2:
            raise ValueError("illegal base64 data: too much padding")
    if any(char not in _URLSAFE_ALPHABET for char in body):
        raise ValueError("illegal base64 data: unexpected character")
    if len(body) % 4 == 1:
        raise ValueError("illegal base64 data: truncated input")
    if padding and (len(body) + len(padding)) % 4 != 0:
        raise ValueError("illegal base64 data: bad padding")
    padded = body + "=" * (-len(body) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def parse_connect_timeout(value: str) -> Optional[float]:
    """Parse a Connect-Timeout-Ms header into seconds, or None when absent.

    Raises ConnectError(INVALID_ARGUMENT) when the value is malformed.
    """
    if value == "":
        return None
    if len(value) > _MAX_TIMEOUT_DIGITS:
        raise ConnectError(
            Code.INVALID_ARGUMENT,
            f"parse timeout: {_quote(value)} has >10 digits",
        )
    if not _TIMEOUT_PATTERN.fullmatch(value):
        raise ConnectError(
            Code.INVALID_ARGUMENT,
            f"parse timeout: invalid syntax in {_quote(value)}",
        )
    return int(value) / 1000


def encode_connect_timeout(seconds: float) -> Optional[str]:
    """Encode a remaining time in seconds as a Connect-Timeout-Ms value.

    Returns None when no header should be sent: the time is used up, or it
    needs more than ten digits and is effectively unbounded.
    """
    millis = int(seconds * 1000)
    if millis <= 0:
        return None
    encoded = str(millis)
    if len(encoded) > _MAX_TIMEOUT_DIGITS:
        return None
    return encoded


def validate_unary_response_content_type(
    request_codec_name: str,
    http_method: str,
    status_code: int,
    status_msg: str,
    response_content_type: str,
) -> None:
    """Check a unary Connect response's status and content type.

    Raises ConnectError when the response cannot be decoded as expected.
    """
    if status_code != 200:
        if status_code == 304 and http_method == "GET":
            err = not_modified_error()
            err.wire = True
            raise err
        if response_content_type in (
            CONNECT_UNARY_CONTENT_TYPE_PREFIX + CODEC_NAME_JSON,
            CONNECT_UNARY_CONTENT_TYPE_PREFIX + CODEC_NAME_JSON_CHARSET_UTF8,
        ):
            return
        raise ConnectError(connect_http_to_code(status_code), status_msg)
    response_codec_name = connect_codec_from_content_type(StreamType.UNARY, response_content_type)
    if response_codec_name == request_codec_name:
        return
    json_names = {CODEC_NAME_JSON, CODEC_NAME_JSON_CHARSET_UTF8}
    if response_codec_name in json_names and request_codec_name in json_names:
        return
    raise ConnectError(
        Code.INTERNAL,
        f"invalid content-type: {_quote(response_content_type)}; expecting "
        f"{_quote(CONNECT_UNARY_CONTENT_TYPE_PREFIX + request_codec_name)}",
    )


def validate_stream_response_content_type(
    request_codec_name: str,
    stream_type: StreamType,
    response_content_type: str,
) -> None:
    """Check that a streaming response uses the same codec as the request."""
    response_codec_name = connect_codec_from_content_type(stream_type, response_content_type)
    if response_codec_name != request_codec_name:
        raise ConnectError(
            Code.INTERNAL,
            f"invalid content-type: {_quote(response_content_type)}; expecting "
            f"{_quote(CONNECT_STREAMING_CONTENT_TYPE_PREFIX + request_codec_name)}",
        )