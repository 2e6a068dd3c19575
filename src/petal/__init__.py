"""Petal — a minimal HTTP request-dispatch layer for ASGI.

Match paths against ordered route chains, read per-request values
without threading them through every call, and turn declarative
response descriptions into ASGI writes.

Basic usage::

    from petal import ResponseDescription, RouteChain, make_handler, on_get

    router = (
        RouteChain()
        .route("/hello/:<name>", on_get(lambda p: ResponseDescription(body=f"hello, {p['name']}")))
        .fallback(lambda path: ResponseDescription(status=404, body="Not Found"))
    )

    app = make_handler(lambda request: router(request.path), max_duration=5_000)
"""

__version__ = "0.1.0"
__all__ = [
    "NO_MATCH",
    "ConfigurationError",
    "ContextError",
    "DispatchConfig",
    "Dispatcher",
    "ExtendedRouteChain",
    "NoMatch",
    "PatternError",
    "PetalError",
    "Request",
    "RequestHandle",
    "ResponseDescription",
    "ResponseError",
    "RouteChain",
    "allow_methods",
    "compile_pattern",
    "create_context",
    "create_context_for_handle",
    "make_handler",
    "on_any",
    "on_delete",
    "on_get",
    "on_head",
    "on_patch",
    "on_post",
    "on_put",
    "provide_context",
    "request_scope",
    "switch",
    "use_request",
    "use_request_handle",
    "use_url",
]

_ERRORS = frozenset({"ConfigurationError", "ContextError", "PatternError", "PetalError", "ResponseError"})
_CONTEXT = frozenset(
    {
        "RequestHandle",
        "create_context",
        "create_context_for_handle",
        "provide_context",
        "request_scope",
        "use_request",
        "use_request_handle",
        "use_url",
    }
)
_ROUTING = frozenset(
    {
        "NO_MATCH",
        "ExtendedRouteChain",
        "NoMatch",
        "RouteChain",
        "allow_methods",
        "compile_pattern",
        "on_any",
        "on_delete",
        "on_get",
        "on_head",
        "on_patch",
        "on_post",
        "on_put",
        "switch",
    }
)


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import petal`` fast while providing a clean top-level API.
    """
    if name in _ERRORS:
        from petal import errors

        return getattr(errors, name)

    if name in _CONTEXT:
        from petal import context

        return getattr(context, name)

    if name in _ROUTING:
        from petal import routing

        return getattr(routing, name)

    if name in ("Dispatcher", "make_handler"):
        from petal.server import dispatcher

        return getattr(dispatcher, name)

    if name == "DispatchConfig":
        from petal.config import DispatchConfig

        return DispatchConfig

    if name == "Request":
        from petal.http.request import Request

        return Request

    if name == "ResponseDescription":
        from petal.http.response import ResponseDescription

        return ResponseDescription

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
