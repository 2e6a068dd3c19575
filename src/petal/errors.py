"""Petal exception hierarchy.

Shared across routing, context, and the dispatcher so every module
raises and catches the same types.

"No match" is not an exception: it is the ``NO_MATCH`` sentinel
returned by matchers and chains.
"""


class PetalError(Exception):
    """Base for all petal-specific errors."""


class ConfigurationError(PetalError):
    """Raised when routes or dispatch options are invalid.

    Detected at build time, before any request is served.
    """


class PatternError(ConfigurationError):
    """Raised when a route pattern cannot be compiled."""

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid route pattern {pattern!r}: {reason}")


class ContextError(PetalError):
    """Misuse of request-scoped context.

    Raised for observe-before-assign, double assign without
    ``reassignable=True``, drop-without-assign, assigning to a released
    handle, and any lookup made outside a request scope. Always a bug in
    handler composition, so it is never swallowed.
    """


class ResponseError(PetalError):
    """The entry point produced something that is not a ``ResponseDescription``."""
