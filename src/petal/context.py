"""Request-scoped context via ContextVar.

Provides:
- ``request_scope()``: opens the scope of one request, binding a fresh
  ``RequestHandle`` for everything that runs inside it.
- ``use_request_handle()`` / ``use_request()`` / ``use_url()``: implicit
  discovery of the active request.
- ``create_context()`` / ``create_context_for_handle()``: independent
  stores binding one value per request.

The active handle lives in a ``ContextVar``, so it follows the request
across ``await`` and into tasks spawned while it is active, while
requests served by other tasks on the same event loop never see it.

Stores are keyed by the handle object itself and are emptied explicitly
when the handle is released at the end of the request.

Thread safety:
    ``ContextVar`` is task-local under asyncio and thread-local across
    threads. A ``ContextStore`` holds no lock; do not share one between
    worker threads.
"""

import functools
import inspect
import itertools
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generic, Literal, NamedTuple, TypeVar, overload

from petal.errors import ContextError
from petal.http.query import QueryParams

T = TypeVar("T")
R = TypeVar("R")

_handle_ids = itertools.count(1)


class RequestHandle:
    """Opaque identity of one request's processing lifetime.

    Hashes and compares by identity: two requests for the same path with
    the same headers still get distinct handles. Never reused.
    """

    __slots__ = ("_released", "_stores", "id", "request")

    def __init__(self, request: Any = None) -> None:
        self.id = next(_handle_ids)
        self.request = request
        self._stores: set[ContextStore[Any]] = set()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Drop every context value bound to this handle.

        Called by ``request_scope()`` on exit. Idempotent.
        """
        self._released = True
        stores, self._stores = self._stores, set()
        for store in stores:
            store._discard(self)

    def __repr__(self) -> str:
        state = " released" if self._released else ""
        return f"<RequestHandle #{self.id}{state}>"


_active_handle: ContextVar[RequestHandle] = ContextVar("petal_request_handle")


@contextmanager
def request_scope(request: Any = None) -> Iterator[RequestHandle]:
    """Make a fresh ``RequestHandle`` active for the duration of the block.

    Usage::

        with request_scope(request) as handle:
            response = await entry_point(request)

    The handle is released on every exit path, emptying all context
    stores for it.
    """
    handle = RequestHandle(request)
    token = _active_handle.set(handle)
    try:
        yield handle
    finally:
        _active_handle.reset(token)
        handle.release()


def use_request_handle() -> RequestHandle:
    """Return the handle of the request currently being processed.

    Raises ``ContextError`` outside any request scope, or once the
    request has finished (e.g. in work left running after a timeout).
    """
    try:
        handle = _active_handle.get()
    except LookupError:
        msg = "No active request; is this called while a request is being dispatched?"
        raise ContextError(msg) from None
    if handle.released:
        msg = f"{handle!r} has already finished processing"
        raise ContextError(msg)
    return handle


def use_request() -> Any:
    """Return the request bound to the active handle."""
    handle = use_request_handle()
    if handle.request is None:
        msg = f"{handle!r} has no request bound"
        raise ContextError(msg)
    return handle.request


@overload
def use_url() -> str: ...
@overload
def use_url(prop: Literal["method", "path", "host"]) -> str: ...
@overload
def use_url(prop: Literal["query"]) -> QueryParams: ...
@overload
def use_url(prop: Callable[[str], R]) -> R: ...


def use_url(prop: Any = None) -> Any:
    """Read parts of the active request's URL.

    ``"method"``, ``"path"``, ``"host"``, ``"query"`` return that part;
    no argument returns the absolute URL; a callable (typically a built
    route chain) is called with the path and its result returned::

        page = use_url(router)
    """
    request = use_request()
    if prop == "method":
        return request.method
    if prop == "path":
        return request.path
    if prop == "host":
        return request.host
    if prop == "query":
        return request.query
    if prop is None:
        return f"http://{request.host}{request.url}"
    if callable(prop):
        return prop(request.path)
    msg = f"use_url() got an unknown property {prop!r}"
    raise ValueError(msg)


# -- Context stores --


class ContextStore(Generic[T]):
    """Binds at most one value of type ``T`` to each ``RequestHandle``.

    One writer per handle until ``drop()``: a second ``assign()`` raises
    unless it is explicitly marked ``reassignable``.
    """

    __slots__ = ("_entries", "name")

    def __init__(self, name: str | None = None) -> None:
        self.name = name
        self._entries: dict[RequestHandle, T] = {}

    def assign(self, handle: RequestHandle, value: T, reassignable: bool = False) -> None:
        if handle.released:
            msg = f"Cannot assign {self._label} to {handle!r}"
            raise ContextError(msg)
        if handle in self._entries and not reassignable:
            msg = f"{self._label} is already assigned for {handle!r}; pass reassignable=True to replace it"
            raise ContextError(msg)
        self._entries[handle] = value
        handle._stores.add(self)

    def observe(self, handle: RequestHandle) -> T:
        try:
            return self._entries[handle]
        except KeyError:
            msg = f"{self._label} was observed before being assigned for {handle!r}"
            raise ContextError(msg) from None

    def drop(self, handle: RequestHandle) -> None:
        try:
            del self._entries[handle]
        except KeyError:
            msg = f"{self._label} was dropped without being assigned for {handle!r}"
            raise ContextError(msg) from None

    def __contains__(self, handle: object) -> bool:
        return handle in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _discard(self, handle: RequestHandle) -> None:
        self._entries.pop(handle, None)

    @property
    def _label(self) -> str:
        return f"context {self.name!r}" if self.name else "context value"

    def __repr__(self) -> str:
        return f"<ContextStore {self.name or hex(id(self))} entries={len(self._entries)}>"


class ContextAccessors(NamedTuple, Generic[T]):
    """``(assign, observe, drop)`` acting on the active request."""

    assign: Callable[..., None]
    observe: Callable[[], T]
    drop: Callable[[], None]


class HandleContextAccessors(NamedTuple, Generic[T]):
    """``(assign, observe, drop)`` taking the ``RequestHandle`` explicitly."""

    assign: Callable[..., None]
    observe: Callable[[RequestHandle], T]
    drop: Callable[[RequestHandle], None]


def create_context(name: str | None = None) -> ContextAccessors[Any]:
    """Create an independent context bound to whichever request is active.

    Usage::

        assign_user, use_user, drop_user = create_context("user")

        assign_user(current_user)   # in an outer handler
        use_user()                  # anywhere later in the same request
    """
    store: ContextStore[Any] = ContextStore(name)

    def assign(value: Any, reassignable: bool = False) -> None:
        store.assign(use_request_handle(), value, reassignable)

    def observe() -> Any:
        return store.observe(use_request_handle())

    def drop() -> None:
        store.drop(use_request_handle())

    return ContextAccessors(assign, observe, drop)


def create_context_for_handle(name: str | None = None) -> HandleContextAccessors[Any]:
    """Like ``create_context()`` but every accessor takes the handle first.

    For code touching a request other than the active one, or avoiding
    implicit discovery altogether.
    """
    store: ContextStore[Any] = ContextStore(name)
    return HandleContextAccessors(store.assign, store.observe, store.drop)


# Per request: accessors -> (binding before the outermost call, active calls in entry order)
_provided: ContextStore[dict[Any, tuple[tuple[bool, Any], dict[int, Any]]]] = ContextStore("provided values")
_call_ids = itertools.count(1)


def provide_context(accessors: ContextAccessors[T], value: T, fn: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap *fn* so *value* is the context value while it runs.

    A value assigned before the call is restored afterwards; otherwise
    the binding is dropped. Coroutine functions keep the value until
    they complete.

    Calls that overlap within one request (sibling tasks wrapping the
    same accessors) share the request's single binding: it holds the
    value of the most recently entered call still running, and the
    outer binding comes back only when the last of them finishes.
    """

    def enter() -> tuple[RequestHandle, int]:
        handle = use_request_handle()
        if handle not in _provided:
            _provided.assign(handle, {})
        calls = _provided.observe(handle)
        if accessors not in calls:
            try:
                outer = (True, accessors.observe())
            except ContextError:
                outer = (False, None)
            calls[accessors] = (outer, {})
        call_id = next(_call_ids)
        calls[accessors][1][call_id] = value
        accessors.assign(value, reassignable=True)
        return handle, call_id

    def leave(handle: RequestHandle, call_id: int) -> None:
        if handle.released:
            return
        calls = _provided.observe(handle)
        (had_outer, outer), active = calls[accessors]
        del active[call_id]
        if active:
            accessors.assign(next(reversed(active.values())), reassignable=True)
            return
        del calls[accessors]
        if had_outer:
            accessors.assign(outer, reassignable=True)
        else:
            accessors.drop()

    if inspect.iscoroutinefunction(fn):

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            state = enter()
            try:
                return await fn(*args, **kwargs)
            finally:
                leave(*state)

        return async_wrapper

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        state = enter()
        try:
            return fn(*args, **kwargs)
        finally:
            leave(*state)

    return wrapper
