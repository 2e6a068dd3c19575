"""Method filters for route handlers.

A filtered handler returns ``NO_MATCH`` when the active request's method
is not allowed, so the chain keeps looking. The method is read from the
request scope rather than passed in, which keeps plain and extended
handlers declared the same way::

    chain = (
        RouteChain()
        .route("/items", on_get(list_items))
        .route("/items", on_post(create_item))
        .fallback(not_found)
    )
"""

import functools
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from petal.context import use_request
from petal.routing.pattern import NO_MATCH

STANDARD_METHODS: frozenset[str] = frozenset(
    {"GET", "HEAD", "POST", "PUT", "DELETE", "CONNECT", "OPTIONS", "TRACE", "PATCH"}
)


def _active_method() -> str:
    return (use_request().method or "UNKNOWN").upper()


def allow_methods(handler: Callable[..., Any], methods: Iterable[str]) -> Callable[..., Any]:
    """Restrict *handler* to *methods*; other methods yield ``NO_MATCH``.

    Raises ``ContextError`` when called outside a request scope.
    """
    allowed = frozenset(m.upper() for m in methods)

    @functools.wraps(handler)
    def filtered(*args: Any) -> Any:
        if _active_method() not in allowed:
            return NO_MATCH
        return handler(*args)

    filtered.allowed_methods = allowed  # type: ignore[attr-defined]
    return filtered


def method_table(handlers: Mapping[str, Callable[..., Any]]) -> Callable[..., Any]:
    """Build one handler dispatching on the active method.

    Unlisted methods yield ``NO_MATCH``. Keys are case-insensitive.
    """
    table = {method.upper(): handler for method, handler in handlers.items()}

    def dispatch(*args: Any) -> Any:
        handler = table.get(_active_method())
        if handler is None:
            return NO_MATCH
        return handler(*args)

    dispatch.allowed_methods = frozenset(table)  # type: ignore[attr-defined]
    return dispatch


def on_any(handler: Callable[..., Any]) -> Callable[..., Any]:
    """Allow the nine standard methods; custom methods fall through."""
    return allow_methods(handler, STANDARD_METHODS)


def on_get(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("GET",))


def on_head(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("HEAD",))


def on_post(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("POST",))


def on_put(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("PUT",))


def on_delete(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("DELETE",))


def on_connect(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("CONNECT",))


def on_options(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("OPTIONS",))


def on_trace(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("TRACE",))


def on_patch(handler: Callable[..., Any]) -> Callable[..., Any]:
    return allow_methods(handler, ("PATCH",))
