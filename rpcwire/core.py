"""Shared types for the RPC wire protocols: codes, errors, headers and envelopes."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

Headers = Dict[str, List[str]]

_ENVELOPE_PREFIX = struct.Struct(">BI")
_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
)


class Code(enum.IntEnum):
    """Status codes shared by the Connect and gRPC protocols."""

    CANCELED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    def __str__(self) -> str:
        return self.name.lower()


MIN_CODE = min(Code)
MAX_CODE = max(Code)


class StreamType(enum.IntEnum):
    """Shape of an RPC: which sides may send more than one message."""

    UNARY = 0b00
    CLIENT = 0b01
    SERVER = 0b10
    BIDI = 0b11


@dataclass(frozen=True)
class Spec:
    """Static description of an RPC."""

    procedure: str = ""
    stream_type: StreamType = StreamType.UNARY
    is_client: bool = False
    idempotency_level: int = 0
    schema: Any = None


@dataclass
class ErrorDetail:
    """A self-describing error detail: a type URL plus its serialized value."""

    type_url: str
    value: bytes
    debug: Any = None
    wire_json: Optional[str] = None

    @property
    def type_name(self) -> str:
        """The fully-qualified message name, without any URL prefix."""
        return self.type_url.rsplit("/", 1)[-1]


class ConnectError(Exception):
    """An RPC error carrying a status code, message, metadata and details."""

    def __init__(
        self,
        code: Code,
        message: str = "",
        meta: Optional[Mapping[str, Iterable[str]]] = None,
        details: Optional[Iterable[ErrorDetail]] = None,
        wire: bool = False,
    ) -> None:
        self.code = Code(code)
        self.message = message
        self.meta: Headers = {key: list(values) for key, values in (meta or {}).items()}
        self.details: List[ErrorDetail] = list(details or [])
        self.wire = wire
        self._not_modified = False
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.message:
            return str(self.code)
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        return f"ConnectError({self.code!s}, {self.message!r})"


def code_of(err: Optional[BaseException]) -> Code:
    """Return the code of a ConnectError, or UNKNOWN for anything else."""
    if isinstance(err, ConnectError):
        return err.code
    return Code.UNKNOWN


def not_modified_error(meta: Optional[Mapping[str, Iterable[str]]] = None) -> ConnectError:
    """Build the error a handler raises to answer a GET with 304 Not Modified."""
    err = ConnectError(Code.UNKNOWN, "not modified", meta=meta)
    err._not_modified = True
    return err


def is_not_modified_error(err: Optional[BaseException]) -> bool:
    """Report whether an error signals a 304 Not Modified response."""
    while err is not None:
        if isinstance(err, ConnectError) and err._not_modified:
            return True
        err = err.__cause__
    return False


def canonical_header_key(name: str) -> str:
    """Canonicalize a header name: 'accept-encoding' becomes 'Accept-Encoding'.

    Names holding characters that are not valid in a header token are
    returned unchanged.
    """
    if not all(char in _TOKEN_CHARS for char in name):
        return name
    out = []
    upper = True
    for char in name:
        if upper and "a" <= char <= "z":
            char = char.upper()
        elif not upper and "A" <= char <= "Z":
            char = char.lower()
        out.append(char)
        upper = char == "-"
    return "".join(out)


def merge_headers(into: Headers, source: Optional[Mapping[str, Iterable[str]]]) -> None:
    """Append every value in source to the same key in into."""
    if not source:
        return
    for key, values in source.items():
        into.setdefault(key, []).extend(values)


@dataclass
class Envelope:
    """A length-prefixed message frame: one flags byte, a 4-byte length, data."""

    data: bytes = b""
    flags: int = 0
    _extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def encode(self) -> bytes:
        """Serialize the envelope to its wire form."""
        return _ENVELOPE_PREFIX.pack(self.flags, len(self.data)) + bytes(self.data)

    def is_set(self, flag: int) -> bool:
        """Report whether every bit of flag is set."""
        return self.flags & flag == flag


def read_envelope(data: bytes) -> Tuple[Envelope, bytes]:
    """Parse one envelope from the front of data; return it and the rest.

    Raises EOFError on empty input and ConnectError on a truncated frame.
    """
    if not data:
        raise EOFError("no envelope")
    if len(data) < _ENVELOPE_PREFIX.size:
        raise ConnectError(
            Code.INTERNAL,
            f"protocol error: incomplete envelope: {len(data)} bytes of prefix",
        )
    flags, size = _ENVELOPE_PREFIX.unpack_from(data)
    start = _ENVELOPE_PREFIX.size
    body = data[start : start + size]
    if len(body) < size:
        raise ConnectError(
            Code.INTERNAL,
            f"protocol error: promised {size} bytes in enveloped message, got {len(body)} bytes",
        )
    return Envelope(data=bytes(body), flags=flags), bytes(data[start + size :])