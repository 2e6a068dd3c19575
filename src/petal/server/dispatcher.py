"""ASGI dispatcher — runs an entry point per request and sends its response.

The only component that touches raw ASGI directly. For each HTTP scope:

1. open a request scope (unless ``bypass_scope``) binding a fresh
   ``RequestHandle`` to the ``Request``;
2. await the entry point, racing ``max_duration`` if configured;
3. send the ``ResponseDescription`` (status, headers, body or stream);
4. on any failure, report once and terminate the response;
5. release the scope and every context value bound to it.

Timeouts stop the *waiting*, not the work: an entry point that outlives
``max_duration`` keeps running, and its eventual result is discarded.
A discarded streamed body is closed without being sent.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any

from petal._internal.asgi import REASON_PHRASE_VERSIONS, Receive, Scope, Send
from petal._internal.invoke import invoke
from petal._internal.types import EntryPoint
from petal.config import DispatchConfig
from petal.context import request_scope
from petal.errors import ResponseError
from petal.http.request import Request
from petal.http.response import ResponseDescription
from petal.server.errors import ErrorReporter
from petal.server.sender import ResponseWriter, close_stream, send_response

logger = logging.getLogger("petal.server")


def _log_close_failure(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Could not close late response stream", exc_info=task.exception())


class Dispatcher:
    """ASGI 3.0 application wrapping one entry point.

    Build with ``make_handler()``. Stateless per request apart from the
    set of timed-out entry points still running, which is held only so
    the event loop does not drop them mid-flight.
    """

    __slots__ = ("_late_tasks", "config", "entry_point")

    def __init__(self, entry_point: EntryPoint, config: DispatchConfig | None = None) -> None:
        self.entry_point = entry_point
        self.config: DispatchConfig = config or DispatchConfig()
        self._late_tasks: set[asyncio.Task[Any]] = set()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI entry point. Lifespan is acknowledged; non-HTTP scopes are ignored."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        if scope["type"] != "http":
            return

        request = Request.from_asgi(scope, receive)
        writer = ResponseWriter(send, reason_phrase=request.http_version in REASON_PHRASE_VERSIONS)
        reporter = ErrorReporter(self.config.error_handler)

        if self.config.bypass_scope:
            await self._dispatch(request, writer, reporter)
            return

        with request_scope(request):
            await self._dispatch(request, writer, reporter)

    async def _dispatch(self, request: Request, writer: ResponseWriter, reporter: ErrorReporter) -> None:
        try:
            response = await self._produce(request)
            if not isinstance(response, ResponseDescription):
                msg = f"Entry point returned {type(response).__name__}, expected ResponseDescription"
                raise ResponseError(msg)
            await send_response(response, writer, reporter)
        except Exception as exc:
            await reporter(exc)
            await writer.terminate()
            return
        logger.debug("%s %s -> %d", request.method, request.path, response.status)

    async def _produce(self, request: Request) -> Any:
        """Await the entry point, or the timeout response if it takes too long."""
        timeout = self.config.timeout_seconds
        if timeout is None:
            return await invoke(self.entry_point, request)

        task = asyncio.create_task(invoke(self.entry_point, request))
        try:
            # asyncio.wait does not cancel the task on timeout
            done, _ = await asyncio.wait({task}, timeout=timeout)
        finally:
            if not task.done():
                self._late_tasks.add(task)
                task.add_done_callback(self._late_tasks.discard)
                task.add_done_callback(self._discard_late_result)

        if done:
            return task.result()

        logger.warning(
            "%s %s did not respond within %dms; sending %d",
            request.method,
            request.path,
            self.config.max_duration,
            self.config.timeout_status,
        )
        return ResponseDescription(
            status=self.config.timeout_status,
            status_text=self.config.timeout_text,
        )

    def _discard_late_result(self, task: "asyncio.Task[Any]") -> None:
        """Done-callback for entry points that finished after their timeout.

        A late streamed body is never sent, but its stream still gets closed.
        """
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Discarded late entry point failure: %r", exc)
            return
        result = task.result()
        logger.debug("Discarded late entry point result: %r", result)
        if isinstance(result, ResponseDescription) and result.is_streaming:
            closing = asyncio.ensure_future(close_stream(result.body))
            self._late_tasks.add(closing)
            closing.add_done_callback(self._late_tasks.discard)
            closing.add_done_callback(_log_close_failure)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        """Acknowledge the ASGI lifespan protocol; there is nothing to set up."""
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return


def make_handler(
    entry_point: EntryPoint,
    config: DispatchConfig | None = None,
    **overrides: Any,
) -> Dispatcher:
    """Wrap *entry_point* as an ASGI application.

    Options come from *config* and/or keyword overrides of its fields::

        app = make_handler(entry, max_duration=5_000, error_handler=report)

    Raises ``TypeError`` for unknown option names and
    ``ConfigurationError`` for invalid values.
    """
    resolved = config or DispatchConfig()
    if overrides:
        resolved = replace(resolved, **overrides)
    return Dispatcher(entry_point, resolved)
