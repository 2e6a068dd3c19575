"""Route pattern compilation.

A pattern is literal text interleaved with named captures::

    "/users/:id"            plain capture, one segment        -> ([^/]+)
    "/hello/:<name>"        non-greedy, one segment           -> ([^/]+?)
    "/files/:{path}"        greedy, one or more characters    -> (.+)
    "/static/:[rest]"       greedy, zero or more characters   -> (.*)
    "/docs/:(page)"         optional, absorbs the leading "/" -> (?:/(.*))?

Everything else is matched literally. Compiled matchers are immutable
and safe to share between concurrent requests.
"""

import logging
import re
from dataclasses import dataclass
from typing import Final, Literal

from petal.errors import PatternError

logger = logging.getLogger("petal.routing")


class NoMatch:
    """Type of the ``NO_MATCH`` sentinel.

    Distinct from ``None`` so a handler may legitimately match and
    return ``None``. Falsy, so ``if not result`` still reads naturally
    when the handler result type is never falsy.
    """

    __slots__ = ()
    _instance: "NoMatch | None" = None

    def __new__(cls) -> "NoMatch":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> Literal[False]:
        return False

    def __repr__(self) -> str:
        return "NO_MATCH"

    def __reduce__(self) -> str:
        return "NO_MATCH"


NO_MATCH: Final = NoMatch()
"""Returned by matchers, handlers, and chains that do not apply to a path."""

# Opening bracket -> (closing bracket, regex for the captured group)
_BRACKETED: Final[dict[str, tuple[str, str]]] = {
    "<": (">", r"([^/]+?)"),
    "{": ("}", r"(.+)"),
    "[": ("]", r"(.*)"),
    "(": (")", r"(.*)"),
}

_PLAIN_CAPTURE: Final = r"([^/]+)"
_NAME_RE: Final = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@dataclass(frozen=True, slots=True)
class PathMatcher:
    """A compiled route pattern.

    Call it with a path: returns a ``dict`` of captured strings (possibly
    empty) on success, ``NO_MATCH`` otherwise.
    """

    pattern: str
    regex: re.Pattern[str]
    names: tuple[str, ...]

    def __call__(self, path: str) -> dict[str, str] | NoMatch:
        return self.match(path)

    def match(self, path: str) -> dict[str, str] | NoMatch:
        """Match the whole of *path*, an already-decoded ASGI path."""
        found = self.regex.fullmatch(path)
        if found is None:
            return NO_MATCH
        # Unmatched optional groups come back as None; params are always strings
        return {name: value or "" for name, value in zip(self.names, found.groups(), strict=True)}


def _read_name(pattern: str, start: int, end: int) -> str:
    name = pattern[start:end]
    if not _NAME_RE.fullmatch(name):
        raise PatternError(pattern, f"capture name {name!r} is not an identifier")
    return name


def compile_pattern(pattern: str) -> PathMatcher:
    """Compile a route pattern into a ``PathMatcher``.

    Raises ``PatternError`` for unterminated captures, invalid names,
    and names used twice.
    """
    parts: list[str] = []
    names: list[str] = []
    literal: list[str] = []
    i = 0
    n = len(pattern)

    def add_capture(name: str, regex: str) -> None:
        if name in names:
            raise PatternError(pattern, f"duplicate capture name {name!r}")
        names.append(name)
        parts.append(re.escape("".join(literal)))
        literal.clear()
        parts.append(regex)

    while i < n:
        char = pattern[i]
        if char != ":" or i + 1 >= n:
            literal.append(char)
            i += 1
            continue

        opener = pattern[i + 1]
        if opener in _BRACKETED:
            closer, regex = _BRACKETED[opener]
            end = pattern.find(closer, i + 2)
            if end == -1:
                raise PatternError(pattern, f"unterminated capture starting at {i}")
            name = _read_name(pattern, i + 2, end)
            if opener == "(":
                # Absorb the separator so "/docs" matches "/docs/:(page)"
                if literal and literal[-1] == "/":
                    literal.pop()
                    regex = r"(?:/(.*))?"
                else:
                    regex = r"(.*)"
            add_capture(name, regex)
            i = end + 1
            continue

        plain = _NAME_RE.match(pattern, i + 1)
        if plain is None:
            # A colon not introducing a capture is literal text
            literal.append(char)
            i += 1
            continue
        add_capture(plain.group(), _PLAIN_CAPTURE)
        i = plain.end()

    parts.append(re.escape("".join(literal)))
    source = "".join(parts)
    logger.debug("Compiled route pattern %r -> %r", pattern, source)
    return PathMatcher(pattern=pattern, regex=re.compile(source), names=tuple(names))
