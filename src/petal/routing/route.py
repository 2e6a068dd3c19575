"""CompiledRoute frozen dataclass."""

from dataclasses import dataclass
from typing import Any

from petal._internal.types import RouteHandler
from petal.routing.pattern import NO_MATCH, NoMatch, PathMatcher, compile_pattern


@dataclass(frozen=True, slots=True)
class CompiledRoute:
    """A pattern's matcher paired with the handler it selects.

    Created while building a chain; immutable afterwards.
    """

    matcher: PathMatcher
    handler: RouteHandler

    @classmethod
    def compile(cls, pattern: str, handler: RouteHandler) -> "CompiledRoute":
        return cls(matcher=compile_pattern(pattern), handler=handler)

    @property
    def pattern(self) -> str:
        return self.matcher.pattern

    def __call__(self, path: str, *extra: Any) -> Any:
        """Run the handler if *path* matches, else return ``NO_MATCH``.

        *extra* is forwarded after the params (at most one value, used by
        ``ExtendedRouteChain``). Handler exceptions propagate.
        """
        params = self.matcher(path)
        if isinstance(params, NoMatch):
            return NO_MATCH
        return self.handler(params, *extra)
