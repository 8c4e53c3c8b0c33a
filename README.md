# rpcwire

Wire-format building blocks for the Connect, gRPC and gRPC-Web RPC
protocols. The package uses only the standard library.

## What is in it

- `rpcwire.core`: the `Code` and `StreamType` enumerations, the `Spec`
  dataclass, `ErrorDetail`, and the `ConnectError` exception, which carries
  a code, a message, metadata (`meta`) and details. `code_of` returns an
  error's code (`Code.UNKNOWN` for anything that is not a `ConnectError`);
  `not_modified_error` and `is_not_modified_error` handle the
  "304 Not Modified" answer to cacheable GET calls. `canonical_header_key`
  and `merge_headers` work on headers held as `dict[str, list[str]]`.
  `Envelope` is the five-byte-prefixed message frame (one flags byte, a
  big-endian 4-byte length), and `read_envelope` parses one from the front
  of a byte string.
- `rpcwire.connect_protocol`: `connect_code_to_http` and
  `connect_http_to_code`, conversion between content types and codec names,
  `encode_binary_query_value` and `decode_query_value` for messages sent in
  GET query strings, `parse_connect_timeout` and `encode_connect_timeout`
  for the `Connect-Timeout-Ms` header, and
  `validate_unary_response_content_type` /
  `validate_stream_response_content_type`, which raise `ConnectError` when a
  response does not match the request.
- `rpcwire.connect_wire`: the JSON forms of error details
  (`wire_detail_to_json`, `wire_detail_from_json`) and of errors
  (`wire_error_from_error`, `wire_error_to_error`), and the end-of-stream
  message (`marshal_end_stream`, `parse_end_stream`,
  `read_end_stream_envelope`), whose trailer keys come back canonicalized.
- `rpcwire.grpc_timeout`: `grpc_parse_timeout` and `grpc_encode_timeout`
  for the `Grpc-Timeout` header, with durations as integer nanoseconds.
  Parsing raises `NoTimeout` for an empty or effectively unbounded value and
  `ValueError` for a malformed one.
- `rpcwire.grpc_protocol`: `grpc_percent_encode` / `grpc_percent_decode` for
  `Grpc-Message`, `grpc_http_to_code`, content-type helpers and
  `validate_grpc_response_content_type`, `grpc_error_to_trailer` /
  `grpc_error_from_trailer` (including the binary
  `Grpc-Status-Details-Bin` status), and `marshal_web_trailers` /
  `parse_web_trailers` for the trailer block gRPC-Web sends in the body.
- `rpcwire.recover`: `RecoverHandlerInterceptor` wraps unary and streaming
  handlers. A `ConnectError` or `AbortHandler` passes through; any other
  exception goes to `handle(spec, header, exc)`, and whatever that returns
  is raised in its place (returning `None` makes the call yield `None`).

## Installation

```
pip install rpcwire
```

## Examples

Codes and HTTP statuses:

```python
from rpcwire.core import Code, ConnectError, code_of
from rpcwire.connect_protocol import connect_code_to_http, connect_http_to_code

err = ConnectError(Code.NOT_FOUND, "no such user")
assert code_of(err) is Code.NOT_FOUND
assert connect_code_to_http(Code.NOT_FOUND) == 404
assert connect_http_to_code(429) is Code.UNAVAILABLE
```

gRPC timeouts and messages:

```python
from rpcwire.grpc_timeout import grpc_encode_timeout, grpc_parse_timeout
from rpcwire.grpc_protocol import grpc_percent_encode, grpc_percent_decode

assert grpc_encode_timeout(45 * 10**9) == "45000000u"
assert grpc_parse_timeout("45S") == 45 * 10**9

encoded = grpc_percent_encode("Hello, 世界")
assert encoded == "Hello, %E4%B8%96%E7%95%8C"
assert grpc_percent_decode(encoded) == "Hello, 世界"
```

Ending a Connect stream with an error:

```python
from rpcwire.core import Code, ConnectError
from rpcwire.connect_wire import marshal_end_stream, read_end_stream_envelope

frame = marshal_end_stream(ConnectError(Code.NOT_FOUND, "gone"), {"x-id": ["1"]})
trailer, error = read_end_stream_envelope(frame)
assert trailer == {"X-Id": ["1"]}
assert error.code is Code.NOT_FOUND and error.message == "gone"
```

gRPC-Web trailers:

```python
from rpcwire.core import read_envelope
from rpcwire.grpc_protocol import marshal_web_trailers, parse_web_trailers

envelope, rest = read_envelope(marshal_web_trailers({"Grpc-Status": ["0"]}))
assert parse_web_trailers(envelope.data) == {"Grpc-Status": ["0"]}
```

## What it does not do

rpcwire is a set of functions and types for the wire format only. It has
no HTTP client or server, does not route or dispatch calls, has no message
codecs (Protobuf or JSON serialization of your messages) and no compression
support. Those are left to the code that uses it.

## Running the tests

```
pip install -e ".[test]"
pytest
```