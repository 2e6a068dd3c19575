"""The request handed to the entry point.

Built from the ASGI scope once per request and bound to the request
scope, where ``use_request()`` and ``use_url()`` read it. The body is
pulled from ASGI ``receive`` on demand.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

from petal._internal.asgi import Receive, Scope
from petal.http.headers import Headers
from petal.http.query import QueryParams


@dataclass(frozen=True, slots=True)
class Request:
    """Method, path, headers and query of one HTTP request.

    ``path`` is the percent-decoded ASGI path, without the query string.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    http_version: str

    _receive: Receive = field(repr=False, compare=False)

    # Filled by body(); the dict itself stays mutable
    _cache: dict[str, bytes] = field(default_factory=dict, repr=False, compare=False)

    @property
    def host(self) -> str:
        """The Host header, or ``localhost`` when the client sent none."""
        return self.headers.get("host") or "localhost"

    @property
    def url(self) -> str:
        """Path plus query string, as the client sent it."""
        if self.query.raw:
            return f"{self.path}?{self.query.raw.decode('latin-1')}"
        return self.path

    async def body(self) -> bytes:
        """Read the whole body. Later calls return the same bytes."""
        if "body" not in self._cache:
            self._cache["body"] = b"".join([chunk async for chunk in self.stream()])
        return self._cache["body"]

    async def stream(self) -> AsyncGenerator[bytes]:
        """Yield body chunks as ASGI delivers them. Consumes ``receive``."""
        more_body = True
        while more_body:
            message = await self._receive()
            more_body = message.get("more_body", False)
            if message.get("body"):
                yield message["body"]

    async def text(self) -> str:
        return (await self.body()).decode("utf-8")

    async def json(self) -> Any:
        return json_module.loads(await self.body())

    @classmethod
    def from_asgi(cls, scope: Scope, receive: Receive) -> Request:
        """Create a Request from an ``http`` scope and its receive callable."""
        return cls(
            method=scope["method"],
            path=scope["path"],
            headers=Headers.from_asgi(scope.get("headers", ())),
            query=QueryParams(scope.get("query_string", b"")),
            http_version=scope.get("http_version", "1.1"),
            _receive=receive,
        )
