"""JSON wire forms of Connect errors, error details and end-of-stream messages."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .connect_protocol import CONNECT_FLAG_ENVELOPE_END_STREAM
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
    read_envelope,
)

DEFAULT_ANY_RESOLVER_PREFIX = "type.googleapis.com/"

_COMPACT = (",", ":")
_CODES_BY_NAME = {str(code): code for code in Code}


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=_COMPACT, ensure_ascii=False)


def _decode_binary_header(value: str) -> bytes:
    """Decode standard base64, with or without padding."""
    if len(value) % 4 != 0:
        value += "=" * (-len(value) % 4)
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"illegal base64 data: {exc}") from exc


def wire_detail_to_json(detail: ErrorDetail) -> str:
    """Serialize an error detail to its Connect JSON form.

    A detail that was itself read from JSON is written back unchanged, so
    proxies without message descriptors keep its readable debug data.
    """
    if detail.wire_json:
        return detail.wire_json
    wire: Dict[str, Any] = {
        "type": detail.type_name,
        "value": base64.b64encode(bytes(detail.value)).decode("ascii").rstrip("="),
    }
    if detail.debug is not None:
        wire["debug"] = detail.debug
    return _dumps(wire)


def wire_detail_from_json(data: Union[str, bytes]) -> ErrorDetail:
    """Parse a Connect JSON error detail.

    Raises ValueError when the JSON or its base64 value is malformed.
    """
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    wire = json.loads(text)
    if not isinstance(wire, dict):
        raise ValueError("error detail must be a JSON object")
    type_name = wire.get("type", "")
    value = wire.get("value", "")
    if not isinstance(type_name, str) or not isinstance(value, str):
        raise ValueError("error detail type and value must be strings")
    if "/" not in type_name:
        type_name = DEFAULT_ANY_RESOLVER_PREFIX + type_name
    try:
        decoded = _decode_binary_header(value)
    except ValueError as exc:
        raise ValueError(f"decode base64: {exc}") from exc
    return ErrorDetail(
        type_url=type_name,
        value=decoded,
        debug=wire.get("debug"),
        wire_json=text,
    )


def wire_error_from_error(err: BaseException) -> Dict[str, Any]:
    """Build the JSON object the Connect protocol uses to send an error."""
    if isinstance(err, ConnectError):
        code: Code = err.code
        message = err.message
        details = err.details
    else:
        code = Code.UNKNOWN
        message = str(err)
        details = []
    wire: Dict[str, Any] = {"code": str(code)}
    if message:
        wire["message"] = message
    if details:
        wire["details"] = [json.loads(wire_detail_to_json(detail)) for detail in details]
    return wire


def _parse_code(value: Any) -> Code:
    if isinstance(value, str):
        return _CODES_BY_NAME.get(value, Code.UNKNOWN)
    if isinstance(value, int) and not isinstance(value, bool) and MIN_CODE <= value <= MAX_CODE:
        return Code(value)
    return Code.UNKNOWN


def wire_error_to_error(wire: Optional[Mapping[str, Any]]) -> Optional[ConnectError]:
    """Turn a Connect JSON error object into a ConnectError; None stays None."""
    if wire is None:
        return None
    message = wire.get("message") or ""
    if not isinstance(message, str):
        raise ValueError("error message must be a string")
    raw_details = wire.get("details") or []
    if not isinstance(raw_details, list):
        raise ValueError("error details must be a list")
    details = [
        wire_detail_from_json(item if isinstance(item, str) else _dumps(item))
        for item in raw_details
    ]
    return ConnectError(_parse_code(wire.get("code")), message, details=details, wire=True)


def marshal_end_stream(
    err: Optional[BaseException],
    trailer: Optional[Mapping[str, List[str]]] = None,
) -> bytes:
    """Encode the enveloped end-of-stream message that closes a Connect stream."""
    metadata: Headers = {key: list(values) for key, values in (trailer or {}).items()}
    end: Dict[str, Any] = {}
    if err is not None:
        end["error"] = wire_error_from_error(err)
        if isinstance(err, ConnectError):
            merge_headers(metadata, err.meta)
    if metadata:
        end["metadata"] = metadata
    data = _dumps(end).encode("utf-8")
    return Envelope(data=data, flags=CONNECT_FLAG_ENVELOPE_END_STREAM).encode()


def parse_end_stream(data: Union[str, bytes]) -> Tuple[Headers, Optional[ConnectError]]:
    """Parse an end-of-stream JSON message into canonical trailers and an error.

    Raises ConnectError(INTERNAL) when the message is malformed.
    """
    try:
        end = json.loads(data)
        if not isinstance(end, dict):
            raise ValueError("end stream message must be a JSON object")
        raw_trailer = end.get("metadata") or {}
        if not isinstance(raw_trailer, dict):
            raise ValueError("metadata must be a JSON object")
        trailer: Headers = {}
        for name, values in raw_trailer.items():
            if values is None:
                values = []
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise ValueError(f"metadata {name!r} must be a list of strings")
            trailer.setdefault(canonical_header_key(name), []).extend(values)
        raw_error = end.get("error")
        if raw_error is not None and not isinstance(raw_error, dict):
            raise ValueError("error must be a JSON object")
        error = wire_error_to_error(raw_error)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ConnectError(Code.INTERNAL, f"unmarshal end stream message: {exc}") from exc
    return trailer, error


def read_end_stream_envelope(data: bytes) -> Tuple[Headers, Optional[ConnectError]]:
    """Read an enveloped end-of-stream message from the front of data.

    Raises ConnectError(INTERNAL) when the envelope is not flagged as the
    end of the stream or its contents are malformed.
    """
    envelope, _ = read_envelope(data)
    if not envelope.is_set(CONNECT_FLAG_ENVELOPE_END_STREAM):
        raise ConnectError(
            Code.INTERNAL,
            f"protocol error: invalid envelope flags {envelope.flags}",
        )
    return parse_end_stream(envelope.data)