"""Ordered route chains with first-match dispatch.

Chains are built once at startup. ``route()`` returns a new chain, so a
partially built chain can be shared and extended without affecting the
original::

    router = (
        RouteChain()
        .route("/hello/:<name>", lambda params: greet(params["name"]))
        .route("/items", {"GET": list_items, "POST": create_item})
        .fallback(lambda path: not_found(path))
    )
    response = router("/hello/ada")

Routes are tried in the order they were added; the first result that
is not ``NO_MATCH`` wins. Handler exceptions are not caught.
"""

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from petal.routing.methods import method_table
from petal.routing.pattern import NO_MATCH, NoMatch
from petal.routing.route import CompiledRoute

R = TypeVar("R")
X = TypeVar("X")


def _compile(pattern: str, handler: Callable[..., Any] | Mapping[str, Callable[..., Any]]) -> CompiledRoute:
    if isinstance(handler, Mapping):
        handler = method_table(handler)
    return CompiledRoute.compile(pattern, handler)


def _first_match(routes: tuple[CompiledRoute, ...], path: str, *extra: Any) -> Any:
    for route in routes:
        result = route(path, *extra)
        if result is not NO_MATCH:
            return result
    return NO_MATCH


@dataclass(frozen=True, slots=True)
class RouteChain(Generic[R]):
    """Routes whose handlers take the captured params: ``handler(params) -> R``.

    A handler may be a mapping of method to handler, dispatched on the
    active request's method (see ``petal.routing.methods``).
    """

    routes: tuple[CompiledRoute, ...] = ()

    def route(
        self,
        pattern: str,
        handler: Callable[[dict[str, str]], R | NoMatch] | Mapping[str, Callable[[dict[str, str]], R]],
    ) -> "RouteChain[R]":
        """Return a new chain with this route appended after all others.

        Raises ``PatternError`` if *pattern* does not compile.
        """
        return replace(self, routes=(*self.routes, _compile(pattern, handler)))

    def include(self, other: "RouteChain[R]") -> "RouteChain[R]":
        """Return a new chain with every route of *other* appended, in order."""
        return replace(self, routes=(*self.routes, *other.routes))

    def build(self) -> Callable[[str], R | NoMatch]:
        """Freeze the chain into ``dispatch(path) -> R | NO_MATCH``."""
        routes = self.routes

        def dispatch(path: str) -> R | NoMatch:
            return _first_match(routes, path)

        return dispatch

    def fallback(self, handler: Callable[[str], R]) -> Callable[[str], R]:
        """Freeze the chain into a total ``dispatch(path) -> R``.

        *handler* receives the path whenever no route applies.
        """
        routes = self.routes

        def dispatch(path: str) -> R:
            result = _first_match(routes, path)
            if result is NO_MATCH:
                return handler(path)
            return result

        return dispatch

    def __len__(self) -> int:
        return len(self.routes)

    def __iter__(self) -> Iterator[CompiledRoute]:
        return iter(self.routes)


@dataclass(frozen=True, slots=True)
class ExtendedRouteChain(Generic[R, X]):
    """Like ``RouteChain`` but threads one extra argument to every handler.

    Handlers are ``handler(params, extra)``, the fallback is
    ``handler(path, extra)``, and the built dispatcher is
    ``dispatch(path, extra)``::

        router = ExtendedRouteChain().route(
            "/upload", lambda params, request: store(request),
        ).build()
        router(request.path, request)
    """

    routes: tuple[CompiledRoute, ...] = ()

    def route(
        self,
        pattern: str,
        handler: Callable[[dict[str, str], X], R | NoMatch] | Mapping[str, Callable[[dict[str, str], X], R]],
    ) -> "ExtendedRouteChain[R, X]":
        """Return a new chain with this route appended after all others."""
        return replace(self, routes=(*self.routes, _compile(pattern, handler)))

    def include(self, other: "ExtendedRouteChain[R, X]") -> "ExtendedRouteChain[R, X]":
        """Return a new chain with every route of *other* appended, in order."""
        return replace(self, routes=(*self.routes, *other.routes))

    def build(self) -> Callable[[str, X], R | NoMatch]:
        """Freeze the chain into ``dispatch(path, extra) -> R | NO_MATCH``."""
        routes = self.routes

        def dispatch(path: str, extra: X) -> R | NoMatch:
            return _first_match(routes, path, extra)

        return dispatch

    def fallback(self, handler: Callable[[str, X], R]) -> Callable[[str, X], R]:
        """Freeze the chain into a total ``dispatch(path, extra) -> R``."""
        routes = self.routes

        def dispatch(path: str, extra: X) -> R:
            result = _first_match(routes, path, extra)
            if result is NO_MATCH:
                return handler(path, extra)
            return result

        return dispatch

    def __len__(self) -> int:
        return len(self.routes)

    def __iter__(self) -> Iterator[CompiledRoute]:
        return iter(self.routes)


def switch(*dispatchers: Callable[..., Any]) -> Callable[..., Any]:
    """Combine built dispatchers into one, tried in argument order.

    Each dispatcher is ``dispatch(path)`` or ``dispatch(path, extra)``
    (all of the same kind); the combined dispatcher returns the first
    result that is not ``NO_MATCH``::

        api = RouteChain().route("/api/users", list_users).build()
        pages = RouteChain().route("/about", about).build()
        router = switch(api, pages)

    A dispatcher made with ``fallback()`` never declines, so later ones
    after it are unreachable.
    """

    def dispatch(path: str, *extra: Any) -> Any:
        for candidate in dispatchers:
            result = candidate(path, *extra)
            if result is not NO_MATCH:
                return result
        return NO_MATCH

    return dispatch
