"""Tests for petal.server.dispatcher — entry point execution over ASGI."""

import asyncio
import logging

import pytest

from petal.config import DispatchConfig
from petal.context import RequestHandle, create_context, use_request, use_request_handle
from petal.errors import ConfigurationError, ContextError, ResponseError
from petal.http.request import Request
from petal.http.response import ResponseDescription
from petal.routing.chain import RouteChain
from petal.routing.methods import on_get, on_post
from petal.server.dispatcher import Dispatcher, make_handler
from petal.testing import TestClient


def _ok(body: str = "ok"):
    return lambda request: ResponseDescription(body=body)


class TestMakeHandler:
    def test_returns_dispatcher(self) -> None:
        app = make_handler(_ok())
        assert isinstance(app, Dispatcher)
        assert app.config == DispatchConfig()

    def test_keyword_overrides(self) -> None:
        app = make_handler(_ok(), max_duration=100, bypass_scope=True)
        assert app.config.max_duration == 100
        assert app.config.bypass_scope is True

    def test_overrides_apply_on_top_of_config(self) -> None:
        base = DispatchConfig(max_duration=100, timeout_status=503)
        app = make_handler(_ok(), base, max_duration=200)
        assert app.config.max_duration == 200
        assert app.config.timeout_status == 503

    def test_unknown_option(self) -> None:
        with pytest.raises(TypeError):
            make_handler(_ok(), max_time=5)

    def test_invalid_duration(self) -> None:
        with pytest.raises(ConfigurationError):
            make_handler(_ok(), max_duration=0)


class TestFixedResponses:
    async def test_sync_entry_point(self) -> None:
        client = TestClient(make_handler(_ok("hello")))
        response = await client.get("/")
        assert response.status == 200
        assert response.text == "hello"
        assert response.header("content-length") == "5"
        assert response.finished

    async def test_async_entry_point(self) -> None:
        async def entry(request: Request) -> ResponseDescription:
            await asyncio.sleep(0)
            return ResponseDescription(status=201, body=b"made")

        response = await TestClient(make_handler(entry)).post("/")
        assert response.status == 201
        assert response.body == b"made"

    async def test_headers_sent(self) -> None:
        def entry(request: Request) -> ResponseDescription:
            return ResponseDescription(body="x").with_headers({"X-One": "1"}, {"Set-Cookie": ["a=1", "b=2"]})

        response = await TestClient(make_handler(entry)).get("/")
        assert response.header("x-one") == "1"
        assert response.header_list("set-cookie") == ["a=1", "b=2"]

    async def test_absent_body(self) -> None:
        response = await TestClient(make_handler(lambda r: ResponseDescription(status=204))).get("/")
        assert response.status == 204
        assert response.body == b""
        assert response.finished

    async def test_request_body_readable(self) -> None:
        async def echo(request: Request) -> ResponseDescription:
            return ResponseDescription(body=(await request.text()).upper())

        response = await TestClient(make_handler(echo)).post("/", body=b"shout")
        assert response.text == "SHOUT"

    async def test_single_start_and_single_final_body(self) -> None:
        response = await TestClient(make_handler(_ok())).get("/")
        types = [m["type"] for m in response.messages]
        assert types == ["http.response.start", "http.response.body"]


class TestRoutedEntryPoint:
    async def test_hello_route_and_fallback(self) -> None:
        router = (
            RouteChain()
            .route("/hello/:<name>", on_get(lambda p: ResponseDescription(body=f"hello, {p['name']}")))
            .route("/items", on_post(lambda p: ResponseDescription(status=201)))
            .fallback(lambda path: ResponseDescription(status=404, body="Not Found"))
        )
        client = TestClient(make_handler(lambda request: router(request.path)))

        hello = await client.get("/hello/ada")
        assert (hello.status, hello.text) == (200, "hello, ada")

        missing = await client.get("/hello/")
        assert missing.status == 404

        created = await client.post("/items")
        assert created.status == 201

        wrong_method = await client.get("/items")
        assert wrong_method.status == 404


class TestStreamingResponses:
    async def test_chunks_written_in_order(self) -> None:
        async def chunks():
            for part in ("one ", "two ", "three"):
                await asyncio.sleep(0)
                yield part

        response = await TestClient(make_handler(lambda r: ResponseDescription(body=chunks()))).get("/")
        assert response.text == "one two three"
        assert response.header("content-length") is None
        assert response.body_chunks == [b"one ", b"two ", b"three", b""]
        assert response.finished

    async def test_stream_error_reports_once_and_terminates(self) -> None:
        errors: list[BaseException] = []

        async def broken():
            yield "partial "
            msg = "upstream went away"
            raise ConnectionError(msg)

        app = make_handler(lambda r: ResponseDescription(body=broken()), error_handler=errors.append)
        response = await TestClient(app).get("/")

        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionError)
        assert response.status == 200
        assert response.body.startswith(b"partial ")
        assert response.finished

    async def test_stream_closed(self) -> None:
        closed: list[bool] = []

        class Stream:
            def __init__(self) -> None:
                self.parts = ["a", "b"]

            def __aiter__(self):
                return self

            async def __anext__(self) -> str:
                if not self.parts:
                    raise StopAsyncIteration
                return self.parts.pop(0)

            async def aclose(self) -> None:
                closed.append(True)

        response = await TestClient(make_handler(lambda r: ResponseDescription(body=Stream()))).get("/")
        assert response.text == "ab"
        assert closed == [True]

    async def test_stream_runs_inside_request_scope(self) -> None:
        async def chunks():
            yield use_request().path

        response = await TestClient(make_handler(lambda r: ResponseDescription(body=chunks()))).get("/inside")
        assert response.text == "/inside"


class TestErrors:
    async def test_error_before_headers_sends_500(self) -> None:
        errors: list[BaseException] = []

        def entry(request: Request) -> ResponseDescription:
            msg = "handler exploded"
            raise ValueError(msg)

        response = await TestClient(make_handler(entry, error_handler=errors.append)).get("/")
        assert response.status == 500
        assert response.header("content-length") == "0"
        assert response.finished
        assert [str(e) for e in errors] == ["handler exploded"]

    async def test_non_response_result(self) -> None:
        errors: list[BaseException] = []
        response = await TestClient(make_handler(lambda r: "oops", error_handler=errors.append)).get("/")
        assert response.status == 500
        assert len(errors) == 1
        assert isinstance(errors[0], ResponseError)
        assert "str" in str(errors[0])

    async def test_route_handler_errors_reach_hook(self) -> None:
        errors: list[BaseException] = []

        def boom(params: dict[str, str]) -> ResponseDescription:
            raise KeyError(params["id"])

        router = RouteChain().route("/items/:id", boom).fallback(lambda path: ResponseDescription(status=404))
        app = make_handler(lambda r: router(r.path), error_handler=errors.append)
        response = await TestClient(app).get("/items/9")
        assert response.status == 500
        assert isinstance(errors[0], KeyError)

    async def test_async_error_hook(self) -> None:
        seen: list[str] = []

        async def hook(exc: BaseException) -> None:
            await asyncio.sleep(0)
            seen.append(type(exc).__name__)

        def entry(request: Request) -> ResponseDescription:
            raise RuntimeError

        response = await TestClient(make_handler(entry, error_handler=hook)).get("/")
        assert seen == ["RuntimeError"]
        assert response.finished

    async def test_failing_hook_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        def hook(exc: BaseException) -> None:
            msg = "hook broke"
            raise OSError(msg)

        def entry(request: Request) -> ResponseDescription:
            raise RuntimeError

        with caplog.at_level(logging.ERROR, logger="petal.server"):
            response = await TestClient(make_handler(entry, error_handler=hook)).get("/")
        assert response.status == 500
        assert response.finished
        assert "error_handler raised" in caplog.text

    async def test_default_hook_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        def entry(request: Request) -> ResponseDescription:
            msg = "nobody listening"
            raise RuntimeError(msg)

        with caplog.at_level(logging.ERROR, logger="petal.server"):
            response = await TestClient(make_handler(entry)).get("/")
        assert response.status == 500
        assert "nobody listening" in caplog.text

    async def test_unencodable_header_on_stream_sends_500_and_closes(self) -> None:
        errors: list[BaseException] = []
        closed: list[bool] = []

        class Stream:
            def __aiter__(self):
                return self

            async def __anext__(self) -> str:
                raise StopAsyncIteration

            async def aclose(self) -> None:
                closed.append(True)

        def entry(request: Request) -> ResponseDescription:
            return ResponseDescription(headers={"x-sym": "€"}, body=Stream())

        response = await TestClient(make_handler(entry, error_handler=errors.append)).get("/")
        assert response.status == 500
        assert response.finished
        assert len(errors) == 1
        assert isinstance(errors[0], UnicodeEncodeError)
        assert closed == [True]

    async def test_mapping_body_sends_500(self) -> None:
        errors: list[BaseException] = []
        app = make_handler(lambda r: ResponseDescription(body={"a": 1}), error_handler=errors.append)
        response = await TestClient(app).get("/")
        assert response.status == 500
        assert isinstance(errors[0], ResponseError)


class TestTimeouts:
    async def test_slow_entry_point_gets_timeout_response(self) -> None:
        release = asyncio.Event()

        async def slow(request: Request) -> ResponseDescription:
            await release.wait()
            return ResponseDescription(body="too late")

        app = make_handler(slow, max_duration=50)
        response = await TestClient(app).get("/slow")

        assert response.status == 408
        assert response.reason == "Request Timeout"
        assert response.body == b""
        assert response.finished
        assert len(app._late_tasks) == 1

        late = next(iter(app._late_tasks))
        release.set()
        await late
        await asyncio.sleep(0)
        assert app._late_tasks == set()
        # The late result is never written
        assert b"too late" not in response.body

    async def test_custom_timeout_response(self) -> None:
        release = asyncio.Event()

        async def slow(request: Request) -> ResponseDescription:
            await release.wait()
            return ResponseDescription()

        app = make_handler(slow, max_duration=10, timeout_status=503, timeout_text="Busy")
        response = await TestClient(app).get("/")
        assert (response.status, response.reason) == (503, "Busy")
        release.set()
        await asyncio.gather(*app._late_tasks)

    async def test_fast_entry_point_unaffected(self) -> None:
        app = make_handler(_ok("quick"), max_duration=1_000)
        response = await TestClient(app).get("/")
        assert (response.status, response.text) == (200, "quick")
        assert app._late_tasks == set()

    async def test_error_within_duration_is_reported(self) -> None:
        errors: list[BaseException] = []

        async def failing(request: Request) -> ResponseDescription:
            raise LookupError

        app = make_handler(failing, max_duration=1_000, error_handler=errors.append)
        response = await TestClient(app).get("/")
        assert response.status == 500
        assert len(errors) == 1

    async def test_late_work_sees_released_handle(self) -> None:
        release = asyncio.Event()

        async def slow(request: Request) -> ResponseDescription:
            await release.wait()
            use_request_handle()
            return ResponseDescription()

        app = make_handler(slow, max_duration=10)
        response = await TestClient(app).get("/")
        assert response.status == 408

        late = next(iter(app._late_tasks))
        release.set()
        with pytest.raises(ContextError):
            await late

    async def test_late_stream_is_closed_unsent(self) -> None:
        closed: list[bool] = []

        class Stream:
            def __aiter__(self):
                return self

            async def __anext__(self) -> str:
                return "too late"

            async def aclose(self) -> None:
                closed.append(True)

        async def slow(request: Request) -> ResponseDescription:
            await asyncio.sleep(0.05)
            return ResponseDescription(body=Stream())

        app = make_handler(slow, max_duration=10)
        response = await TestClient(app).get("/")
        assert response.status == 408

        # First the entry point, then the close it schedules
        await asyncio.gather(*app._late_tasks)
        await asyncio.gather(*app._late_tasks)
        assert closed == [True]
        assert b"too late" not in response.body
        await asyncio.sleep(0)
        assert app._late_tasks == set()


class TestRequestScope:
    async def test_request_bound_to_handle(self) -> None:
        def entry(request: Request) -> ResponseDescription:
            assert use_request() is request
            return ResponseDescription(body=use_request_handle().request.path)

        response = await TestClient(make_handler(entry)).get("/bound")
        assert response.text == "/bound"

    async def test_handle_released_after_response(self) -> None:
        handles: list[RequestHandle] = []
        assign, _, _ = create_context("trace")

        def entry(request: Request) -> ResponseDescription:
            handles.append(use_request_handle())
            assign("abc")
            return ResponseDescription()

        await TestClient(make_handler(entry)).get("/")
        assert handles[0].released

    async def test_each_request_gets_fresh_handle(self) -> None:
        handles: list[RequestHandle] = []

        def entry(request: Request) -> ResponseDescription:
            handles.append(use_request_handle())
            return ResponseDescription()

        client = TestClient(make_handler(entry))
        await client.get("/same")
        await client.get("/same")
        assert handles[0] is not handles[1]

    async def test_bypass_scope(self) -> None:
        errors: list[BaseException] = []

        def entry(request: Request) -> ResponseDescription:
            use_request_handle()
            return ResponseDescription()

        app = make_handler(entry, bypass_scope=True, error_handler=errors.append)
        response = await TestClient(app).get("/")
        assert response.status == 500
        assert isinstance(errors[0], ContextError)

    async def test_bypass_scope_plain_entry_point(self) -> None:
        response = await TestClient(make_handler(_ok("free"), bypass_scope=True)).get("/")
        assert response.text == "free"

    async def test_concurrent_requests_are_isolated(self) -> None:
        assign, observe, _ = create_context("user")

        async def entry(request: Request) -> ResponseDescription:
            name = request.path.strip("/")
            assign(name)
            await asyncio.sleep(0.02 if name == "slow" else 0)
            return ResponseDescription(body=observe())

        client = TestClient(make_handler(entry))
        slow, fast = await client.gather(lambda: client.get("/slow"), lambda: client.get("/fast"))
        assert slow.text == "slow"
        assert fast.text == "fast"


class TestReasonPhrase:
    async def test_sent_on_http_1_1(self) -> None:
        app = make_handler(lambda r: ResponseDescription(status=200, status_text="Fine Thanks"))
        response = await TestClient(app).request("GET", "/", http_version="1.1")
        assert response.reason == "Fine Thanks"

    async def test_sent_on_http_1_0(self) -> None:
        app = make_handler(lambda r: ResponseDescription(status_text="Fine Thanks"))
        response = await TestClient(app).request("GET", "/", http_version="1.0")
        assert response.reason == "Fine Thanks"

    async def test_omitted_on_http_2(self) -> None:
        app = make_handler(lambda r: ResponseDescription(status=200, status_text="Fine Thanks"))
        response = await TestClient(app).request("GET", "/", http_version="2")
        assert response.status == 200
        assert response.reason is None

    async def test_omitted_without_status_text(self) -> None:
        response = await TestClient(make_handler(_ok())).get("/")
        assert response.reason is None


class TestProtocolScopes:
    async def test_lifespan_acknowledged(self) -> None:
        incoming = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
        sent: list[dict] = []

        async def receive() -> dict:
            return incoming.pop(0)

        async def send(message: dict) -> None:
            sent.append(message)

        await make_handler(_ok())({"type": "lifespan"}, receive, send)
        assert sent == [{"type": "lifespan.startup.complete"}, {"type": "lifespan.shutdown.complete"}]

    async def test_other_scopes_ignored(self) -> None:
        sent: list[dict] = []

        async def receive() -> dict:
            return {"type": "websocket.connect"}

        async def send(message: dict) -> None:
            sent.append(message)

        await make_handler(_ok())({"type": "websocket"}, receive, send)
        assert sent == []
