"""Shared type aliases used across petal modules."""

from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

# Entry point: receives the Request, returns a ResponseDescription (or awaitable)
EntryPoint: TypeAlias = Callable[[Any], Any | Awaitable[Any]]

# Error hook: receives the exception raised while serving a request
ErrorHook: TypeAlias = Callable[[BaseException], object]

# Route handler: receives the captured path params (plus an optional extra arg)
RouteHandler: TypeAlias = Callable[..., Any]
