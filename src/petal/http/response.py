"""Declarative response description with chainable .with_*() API.

A handler returns a ``ResponseDescription``; the dispatcher translates
it into transport writes exactly once. Each transformation returns a
new description.
"""

from collections.abc import AsyncIterable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from types import MappingProxyType
from typing import TypeAlias

# A header value may repeat (e.g. several Set-Cookie lines)
HeaderValue: TypeAlias = str | Sequence[str]

ChunkStream: TypeAlias = AsyncIterable[str | bytes] | Iterable[str | bytes]

Body: TypeAlias = str | bytes | ChunkStream | None


def _frozen_headers(headers: Mapping[str, HeaderValue]) -> Mapping[str, HeaderValue]:
    return MappingProxyType(dict(headers))


def is_stream(body: object) -> bool:
    """True when *body* is a lazily-produced chunk stream rather than a payload."""
    # Mappings iterate their keys, which is never a meaningful body
    if body is None or isinstance(body, (str, bytes, bytearray, memoryview, Mapping)):
        return False
    return isinstance(body, (AsyncIterable, Iterable))


@dataclass(frozen=True, slots=True)
class ResponseDescription:
    """What a handler wants sent back, built through immutable transformations.

    ``body`` is one of: ``None`` (no payload), ``str``/``bytes`` (fixed
    payload), or an async/sync iterable of ``str``/``bytes`` chunks
    (streamed). ``headers`` keys are case-preserving; later writes to
    the same key win.

    Usage::

        ResponseDescription(body="created").with_status(201).with_headers(
            {"Location": "/items/7"},
        )
    """

    status: int = 200
    status_text: str | None = None
    headers: Mapping[str, HeaderValue] = field(default_factory=dict)
    body: Body = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _frozen_headers(self.headers))

    # -- Chainable transformations --

    def with_status(self, status: int, text: str | None = None) -> "ResponseDescription":
        """Return a new description with a different status (and optional reason phrase)."""
        return replace(self, status=status, status_text=text)

    def with_status_text(self, text: str) -> "ResponseDescription":
        """Return a new description with a custom reason phrase.

        Ignored by the dispatcher on HTTP/2, which has no reason phrase.
        """
        return replace(self, status_text=text)

    def with_body(self, body: Body) -> "ResponseDescription":
        """Return a new description with a different body."""
        return replace(self, body=body)

    def with_header(self, name: str, value: HeaderValue) -> "ResponseDescription":
        """Return a new description with *name* set to *value*."""
        return self.with_headers({name: value})

    def with_headers(self, *headers: Mapping[str, HeaderValue]) -> "ResponseDescription":
        """Return a new description with *headers* merged in, left to right.

        ``.with_headers(a, b)`` and ``.with_headers(a).with_headers(b)``
        are equivalent.
        """
        merged = dict(self.headers)
        for mapping in headers:
            merged.update(mapping)
        return replace(self, headers=merged)

    # -- Introspection --

    @property
    def reason(self) -> str:
        """The reason phrase to send: ``status_text`` or the standard phrase."""
        if self.status_text is not None:
            return self.status_text
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return ""

    @property
    def is_streaming(self) -> bool:
        return is_stream(self.body)
