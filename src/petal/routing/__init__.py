"""Routing — pattern matchers composed into ordered route chains.

Chains are built once at startup and are read-only afterwards.
"""

from petal.routing.chain import ExtendedRouteChain, RouteChain, switch
from petal.routing.methods import (
    allow_methods,
    method_table,
    on_any,
    on_connect,
    on_delete,
    on_get,
    on_head,
    on_options,
    on_patch,
    on_post,
    on_put,
    on_trace,
)
from petal.routing.pattern import NO_MATCH, NoMatch, PathMatcher, compile_pattern
from petal.routing.route import CompiledRoute

__all__ = [
    "NO_MATCH",
    "CompiledRoute",
    "ExtendedRouteChain",
    "NoMatch",
    "PathMatcher",
    "RouteChain",
    "allow_methods",
    "compile_pattern",
    "method_table",
    "on_any",
    "on_connect",
    "on_delete",
    "on_get",
    "on_head",
    "on_options",
    "on_patch",
    "on_post",
    "on_put",
    "on_trace",
    "switch",
]
