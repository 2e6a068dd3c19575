"""ASGI 3.0 callable signatures and protocol constants."""

from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any, TypeAlias

Scope: TypeAlias = MutableMapping[str, Any]
Receive: TypeAlias = Callable[[], Awaitable[MutableMapping[str, Any]]]
Send: TypeAlias = Callable[[MutableMapping[str, Any]], Awaitable[None]]

# HTTP versions whose status line carries a reason phrase
REASON_PHRASE_VERSIONS = frozenset({"1.0", "1.1"})
