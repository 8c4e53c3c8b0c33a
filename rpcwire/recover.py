"""An interceptor that turns unexpected handler failures into RPC errors."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from .core import ConnectError, Spec

Handle = Callable[
    [Spec, Optional[Mapping[str, Any]], BaseException], Optional[BaseException]
]


class AbortHandler(Exception):
    """Raised to abort a handler; never trapped by the recover interceptor."""


class RecoverHandlerInterceptor:
    """Trap unexpected exceptions in handlers and pass them to a callback.

    ConnectError is the normal way for a handler to fail and passes through
    untouched, as does AbortHandler. Any other exception is handed to
    ``handle(spec, header, exc)``; whatever it returns is raised in its
    place, and if it returns None the call yields None.
    """

    def __init__(self, handle: Handle) -> None:
        self.handle = handle

    def _recover(self, spec: Spec, header: Any, exc: BaseException) -> None:
        replacement = self.handle(spec, header, exc)
        if replacement is not None:
            raise replacement from exc

    def wrap_unary(self, next_func: Callable[[Any], Any]) -> Callable[[Any], Any]:
        def wrapped(request: Any) -> Any:
            if request.spec.is_client:
                return next_func(request)
            try:
                return next_func(request)
            except (ConnectError, AbortHandler):
                raise
            except Exception as exc:
                self._recover(request.spec, request.header, exc)
                return None

        return wrapped

    def wrap_streaming_handler(
        self, next_func: Callable[[Any], Any]
    ) -> Callable[[Any], Any]:
        def wrapped(conn: Any) -> Any:
            try:
                return next_func(conn)
            except (ConnectError, AbortHandler):
                raise
            except Exception as exc:
                self._recover(Spec(), None, exc)
                return None

        return wrapped