from dataclasses import dataclass, field

import pytest

from rpcwire.core import Code, ConnectError, Spec, StreamType
from rpcwire.recover import AbortHandler, RecoverHandlerInterceptor


@dataclass
class _Request:
    spec: Spec
    header: dict = field(default_factory=dict)


def _recording_interceptor(result=None):
    calls = []

    def handle(spec, header, exc):
        calls.append((spec, header, exc))
        return result

    return RecoverHandlerInterceptor(handle), calls


def _explode(*_):
    raise ValueError("boom")


def test_unary_passes_result_through():
    interceptor, calls = _recording_interceptor()
    wrapped = interceptor.wrap_unary(lambda req: "response")
    assert wrapped(_Request(Spec(procedure="/svc/Ping"))) == "response"
    assert calls == []


def test_unary_handler_failure_is_replaced():
    replacement = ConnectError(Code.INTERNAL, "handler failed")
    interceptor, calls = _recording_interceptor(replacement)
    spec = Spec(procedure="/svc/Ping")
    request = _Request(spec, {"X-Test": ["1"]})
    with pytest.raises(ConnectError) as info:
        interceptor.wrap_unary(_explode)(request)
    assert info.value is replacement
    assert len(calls) == 1
    got_spec, got_header, got_exc = calls[0]
    assert got_spec == spec
    assert got_header == {"X-Test": ["1"]}
    assert isinstance(got_exc, ValueError)


def test_unary_handle_returning_none_yields_none():
    interceptor, calls = _recording_interceptor(None)
    assert interceptor.wrap_unary(_explode)(_Request(Spec())) is None
    assert len(calls) == 1


def test_unary_client_side_not_trapped():
    interceptor, calls = _recording_interceptor(ConnectError(Code.INTERNAL))
    with pytest.raises(ValueError):
        interceptor.wrap_unary(_explode)(_Request(Spec(is_client=True)))
    assert calls == []


def test_unary_connect_error_passes_through():
    interceptor, calls = _recording_interceptor(ConnectError(Code.INTERNAL))
    original = ConnectError(Code.NOT_FOUND, "gone")

    def fail(_):
        raise original

    with pytest.raises(ConnectError) as info:
        interceptor.wrap_unary(fail)(_Request(Spec()))
    assert info.value is original
    assert calls == []


def test_unary_abort_reraised():
    interceptor, calls = _recording_interceptor(ConnectError(Code.INTERNAL))

    def abort(_):
        raise AbortHandler()

    with pytest.raises(AbortHandler):
        interceptor.wrap_unary(abort)(_Request(Spec()))
    assert calls == []


def test_streaming_failure_gets_empty_spec():
    replacement = ConnectError(Code.UNAVAILABLE, "stream failed")
    interceptor, calls = _recording_interceptor(replacement)
    with pytest.raises(ConnectError) as info:
        interceptor.wrap_streaming_handler(_explode)(object())
    assert info.value is replacement
    spec, header, exc = calls[0]
    assert spec == Spec()
    assert header is None
    assert isinstance(exc, ValueError)


def test_streaming_success_and_abort():
    interceptor, calls = _recording_interceptor(ConnectError(Code.INTERNAL))
    spec = Spec(stream_type=StreamType.BIDI)
    assert interceptor.wrap_streaming_handler(lambda conn: conn)(spec) == spec

    def abort(_):
        raise AbortHandler()

    with pytest.raises(AbortHandler):
        interceptor.wrap_streaming_handler(abort)(None)
    assert calls == []