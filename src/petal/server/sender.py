"""ASGI response sending — translates a ResponseDescription to ASGI messages.

Handles fixed payloads, empty bodies, and streamed bodies. Streams are
closed on every exit path; a failing stream is reported and the
response terminated, since the status is already on the wire.
"""

import inspect
import logging
from collections.abc import AsyncIterable, Awaitable, Callable, Mapping
from typing import Any

from petal._internal.asgi import Send
from petal.errors import ResponseError
from petal.http.response import ChunkStream, HeaderValue, ResponseDescription

logger = logging.getLogger("petal.server")

ReportError = Callable[[BaseException], Awaitable[None]]


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


def _encode_chunk(chunk: object) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    msg = f"Response body chunks must be str or bytes, got {type(chunk).__name__}"
    raise ResponseError(msg)


def encode_headers(headers: Mapping[str, HeaderValue]) -> list[tuple[bytes, bytes]]:
    """Flatten a header mapping into ASGI byte pairs.

    A sequence value becomes one header line per item.
    """
    raw: list[tuple[bytes, bytes]] = []
    for name, value in headers.items():
        key = name.lower().encode("latin-1")
        if isinstance(value, str):
            raw.append((key, value.encode("latin-1")))
        else:
            raw.extend((key, str(item).encode("latin-1")) for item in value)
    return raw


class ResponseWriter:
    """Writes one ASGI response in order: start once, body chunks, end once.

    ``terminate()`` closes the response after a failure from whatever
    state it is in.
    """

    __slots__ = ("_reason_phrase", "_send", "finished", "started")

    def __init__(self, send: Send, *, reason_phrase: bool = True) -> None:
        self._send = send
        self._reason_phrase = reason_phrase
        self.started = False
        self.finished = False

    async def start(
        self,
        status: int,
        headers: list[tuple[bytes, bytes]],
        reason: str | None = None,
    ) -> None:
        if self.started:
            msg = "Response already started"
            raise RuntimeError(msg)
        message: dict[str, Any] = {
            "type": "http.response.start",
            "status": status,
            "headers": headers,
        }
        # Not part of ASGI proper; HTTP/1.x servers may honour it
        if reason is not None and self._reason_phrase:
            message["reason"] = reason
        self.started = True
        await self._send(message)

    async def write(self, chunk: bytes) -> None:
        await self._send({"type": "http.response.body", "body": chunk, "more_body": True})

    async def end(self, chunk: bytes = b"") -> None:
        if self.finished:
            msg = "Response already finished"
            raise RuntimeError(msg)
        self.finished = True
        await self._send({"type": "http.response.body", "body": chunk, "more_body": False})

    async def terminate(self) -> None:
        """Close the response after an error. Never raises.

        Sends a bare 500 first if nothing was sent yet.
        """
        if self.finished:
            return
        try:
            if not self.started:
                await self.start(500, [(b"content-length", b"0")])
            await self.end()
        except Exception:
            logger.debug("Could not terminate response cleanly", exc_info=True)
        finally:
            self.finished = True


async def close_stream(stream: Any) -> None:
    """Release a stream body's resources (generators, files, sockets)."""
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
        return
    close = getattr(stream, "close", None)
    if close is not None:
        result = close()
        if inspect.isawaitable(result):
            await result


async def send_response(response: ResponseDescription, writer: ResponseWriter, report: ReportError) -> None:
    """Translate a ResponseDescription into ASGI send() calls."""
    if response.is_streaming:
        try:
            # No content-length; the server falls back to chunked encoding
            await writer.start(response.status, encode_headers(response.headers), response.status_text)
        except BaseException:
            await close_stream(response.body)
            raise
        await send_streaming_body(response.body, writer, report)  # type: ignore[arg-type]
        return

    headers = encode_headers(response.headers)
    body = b""
    if response.body is not None and _body_allowed(response.status):
        body = _encode_chunk(response.body)  # type: ignore[arg-type]

    if not any(name == b"content-length" for name, _ in headers):
        headers.append((b"content-length", str(len(body)).encode("latin-1")))

    await writer.start(response.status, headers, response.status_text)
    await writer.end(body)


async def send_streaming_body(stream: ChunkStream, writer: ResponseWriter, report: ReportError) -> None:
    """Pipe *stream* to the transport, then end the response.

    On a stream (or send) error the error is reported and the response
    terminated instead. The stream is closed either way.
    """
    try:
        try:
            if isinstance(stream, AsyncIterable):
                async for chunk in stream:
                    if chunk:
                        await writer.write(_encode_chunk(chunk))
            else:
                for chunk in stream:
                    if chunk:
                        await writer.write(_encode_chunk(chunk))
        finally:
            await close_stream(stream)
    except Exception as exc:
        await report(exc)
        await writer.terminate()
        return

    await writer.end()
