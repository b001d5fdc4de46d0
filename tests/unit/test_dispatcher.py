"""
Unit tests for the dispatcher and the respond() finalizer.

Requests run through ``app.callback()`` against in-memory raw
request/response pairs, so every byte the client would see can be checked.
"""

import asyncio
import io
import logging

import pytest

from onionhttp import AppConfig, Application
from onionhttp.dispatcher import respond
from onionhttp.errors import HTTPError


async def run(app, make_exchange, **kwargs):
    req, res = make_exchange(**kwargs)
    await app.callback()(req, res)
    return res


class TestScenarios:
    """End-to-end request scenarios."""

    @pytest.mark.asyncio
    async def test_state_shared_between_middleware(self, app, make_exchange, read_response):
        """Test state set by one middleware is seen by the next."""
        seen = []

        async def first(ctx, next):
            ctx.state["seen"] = True
            await next()

        async def second(ctx, next):
            seen.append(ctx.state.get("seen"))
            seen.append((ctx.path, ctx.query))
            ctx.body = "ok"

        app.use(first).use(second)
        res = await run(app, make_exchange, url="/aaa?x=1")

        status, headers, body = read_response(res)
        assert status == 200
        assert body == b"ok"
        assert headers["content-length"] == "2"
        assert seen == [True, ("/aaa", {"x": "1"})]

    @pytest.mark.asyncio
    async def test_sync_throw(self, make_exchange, read_response, caplog):
        """Test a synchronous raise stops the chain and is logged."""
        app = Application()
        calls = []

        def failing(ctx, next):
            raise RuntimeError("sync failure")

        async def downstream(ctx, next):
            calls.append("downstream")

        app.use(failing).use(downstream)

        with caplog.at_level(logging.ERROR, logger="onionhttp.errors"):
            res = await run(app, make_exchange)

        status, _, body = read_response(res)
        assert status == 500
        assert body == b"Internal Server Error"
        assert calls == []
        assert "sync failure" in caplog.text

    @pytest.mark.asyncio
    async def test_exposed_error_not_logged(self, make_exchange, read_response, caplog):
        """Test client errors reach the client but not the log."""
        app = Application()

        async def guard(ctx, next):
            ctx.throw(422, "name is required")

        app.use(guard)

        with caplog.at_level(logging.ERROR, logger="onionhttp.errors"):
            res = await run(app, make_exchange)

        status, _, body = read_response(res)
        assert status == 422
        assert body == b"name is required"
        assert caplog.records == []

    @pytest.mark.asyncio
    async def test_silent_app_not_logged(self, make_exchange, caplog):
        """Test silent apps don't log server errors."""
        app = Application(AppConfig(silent=True))

        async def failing(ctx, next):
            raise RuntimeError("quiet")

        app.use(failing)

        with caplog.at_level(logging.ERROR, logger="onionhttp.errors"):
            await run(app, make_exchange)

        assert caplog.records == []

    @pytest.mark.asyncio
    async def test_error_subscriber_replaces_logging(self, make_exchange, caplog):
        """Test an error subscriber receives errors instead of the logger."""
        app = Application()
        received = []
        app.on("error", lambda err, ctx: received.append((str(err), ctx.path)))

        async def failing(ctx, next):
            raise ValueError("reported")

        app.use(failing)

        with caplog.at_level(logging.ERROR, logger="onionhttp.errors"):
            await run(app, make_exchange, url="/boom")

        assert received == [("reported", "/boom")]
        assert caplog.records == []

    @pytest.mark.asyncio
    async def test_outer_middleware_handles_error(self, app, make_exchange, read_response):
        """Test an outer middleware can turn an error into a response."""
        async def handler(ctx, next):
            try:
                await next()
            except HTTPError as error:
                ctx.status = error.status
                ctx.body = {"error": error.message}

        async def failing(ctx, next):
            ctx.throw(409, "conflict")

        app.use(handler).use(failing)
        res = await run(app, make_exchange)

        status, headers, body = read_response(res)
        assert status == 409
        assert headers["content-type"] == "application/json; charset=utf-8"
        assert body == b'{"error": "conflict"}'

    @pytest.mark.asyncio
    async def test_redirect_back(self, app, make_exchange, read_response):
        """Test redirect("back") for a browser."""
        async def back(ctx, next):
            ctx.redirect("back")

        app.use(back)
        res = await run(app, make_exchange, headers={"Referrer": "http://x", "Accept": "text/html"})

        status, headers, body = read_response(res)
        assert status == 302
        assert headers["location"] == "http://x"
        assert body == b'Redirecting to <a href="http://x">http://x</a>.'


class TestRespond:
    """Tests for what the finalizer writes."""

    @pytest.mark.asyncio
    async def test_no_middleware_is_404(self, app, make_exchange, read_response):
        """Test an unclaimed request is a plain-text 404."""
        res = await run(app, make_exchange)

        status, headers, body = read_response(res)
        assert status == 404
        assert headers["content-type"] == "text/plain; charset=utf-8"
        assert body == b"Not Found"

    @pytest.mark.asyncio
    async def test_status_without_body(self, app, make_exchange, read_response):
        """Test a status without a body sends the status phrase."""
        async def accepted(ctx, next):
            ctx.status = 202

        app.use(accepted)
        res = await run(app, make_exchange)

        status, _, body = read_response(res)
        assert status == 202
        assert body == b"Accepted"

    @pytest.mark.asyncio
    async def test_http2_fallback_body_is_code(self, app, make_exchange, read_response):
        """Test HTTP/2 requests get the bare code as fallback body."""
        async def teapot(ctx, next):
            ctx.status = 418

        app.use(teapot)
        res = await run(app, make_exchange, http_version="2.0")

        _, _, body = read_response(res)
        assert body == b"418"

    @pytest.mark.asyncio
    async def test_empty_status(self, app, make_exchange, read_response):
        """Test 204 sends no body and no content headers."""
        async def no_content(ctx, next):
            ctx.body = "discarded"
            ctx.status = 204

        app.use(no_content)
        res = await run(app, make_exchange)

        status, headers, body = read_response(res)
        assert status == 204
        assert body == b""
        assert "content-type" not in headers
        assert "content-length" not in headers
        assert "transfer-encoding" not in headers

    @pytest.mark.asyncio
    async def test_none_body_is_204(self, app, make_exchange, read_response):
        """Test assigning None responds 204."""
        async def nothing(ctx, next):
            ctx.body = None

        app.use(nothing)
        res = await run(app, make_exchange)

        status, _, body = read_response(res)
        assert status == 204
        assert body == b""

    @pytest.mark.asyncio
    async def test_head_request(self, app, make_exchange, read_response):
        """Test HEAD keeps Content-Length but sends no body."""
        async def hello(ctx, next):
            ctx.body = "hello"

        app.use(hello)
        res = await run(app, make_exchange, method="HEAD")

        status, headers, body = read_response(res)
        assert status == 200
        assert headers["content-length"] == "5"
        assert body == b""

    @pytest.mark.asyncio
    async def test_head_json_length(self, app, make_exchange, read_response):
        """Test HEAD computes Content-Length for JSON bodies."""
        async def data(ctx, next):
            ctx.body = {"a": 1}

        app.use(data)
        res = await run(app, make_exchange, method="HEAD")

        _, headers, body = read_response(res)
        assert headers["content-length"] == str(len(b'{"a": 1}'))
        assert body == b""

    @pytest.mark.asyncio
    async def test_bytes_body(self, app, make_exchange, read_response):
        """Test bytes are sent as is."""
        async def blob(ctx, next):
            ctx.body = b"\x00\x01\x02"

        app.use(blob)
        res = await run(app, make_exchange)

        _, headers, body = read_response(res)
        assert headers["content-type"] == "application/octet-stream"
        assert body == b"\x00\x01\x02"

    @pytest.mark.asyncio
    async def test_json_body(self, app, make_exchange, read_response):
        """Test JSON bodies are serialized with a length."""
        async def data(ctx, next):
            ctx.body = {"name": "café"}

        app.use(data)
        res = await run(app, make_exchange)

        _, headers, body = read_response(res)
        expected = '{"name": "café"}'.encode("utf-8")
        assert body == expected
        assert headers["content-length"] == str(len(expected))

    @pytest.mark.asyncio
    async def test_stream_body(self, app, make_exchange, read_response):
        """Test file-like bodies are piped chunked and closed."""
        source = io.BytesIO(b"streamed data")

        async def stream(ctx, next):
            ctx.body = source

        app.use(stream)
        res = await run(app, make_exchange)

        status, headers, body = read_response(res)
        assert status == 200
        assert headers["transfer-encoding"] == "chunked"
        assert body == b"streamed data"
        assert source.closed

    @pytest.mark.asyncio
    async def test_head_closes_stream(self, app, make_exchange, read_response):
        """Test HEAD skips the stream but still closes it."""
        source = io.BytesIO(b"streamed data")

        async def stream(ctx, next):
            ctx.body = source

        app.use(stream)
        res = await run(app, make_exchange, method="HEAD")

        _, _, body = read_response(res)
        assert body == b""
        assert source.closed

    @pytest.mark.asyncio
    async def test_head_closes_async_stream(self, app, make_exchange):
        """Test async sources are closed on the loop when never piped."""
        class Chunks:
            closed = False

            def __aiter__(self):
                return self

            async def __anext__(self):
                raise StopAsyncIteration

            async def aclose(self):
                self.closed = True

        source = Chunks()

        async def stream(ctx, next):
            ctx.body = source

        app.use(stream)
        await run(app, make_exchange, method="HEAD")
        await asyncio.sleep(0)

        assert source.closed

    @pytest.mark.asyncio
    async def test_error_closes_stream(self, app, make_exchange, read_response):
        """Test a stream assigned before an error is closed with the error response."""
        source = io.BytesIO(b"streamed data")

        async def failing(ctx, next):
            ctx.body = source
            raise RuntimeError("boom")

        app.use(failing)
        res = await run(app, make_exchange)

        status, _, body = read_response(res)
        assert status == 500
        assert body == b"Internal Server Error"
        assert source.closed

    @pytest.mark.asyncio
    async def test_redirect_from_query_stays_one_header(self, app, make_exchange, read_response):
        """Test a line break in a redirect target cannot add headers."""
        async def login(ctx, next):
            ctx.redirect(ctx.query["next"])

        app.use(login)
        res = await run(app, make_exchange, url="/login?next=/home%0d%0aSet-Cookie:%20admin=1")

        status, headers, _ = read_response(res)
        assert status == 302
        assert headers["location"] == "/home%0D%0ASet-Cookie:%20admin=1"
        assert "set-cookie" not in headers

    @pytest.mark.asyncio
    async def test_header_with_line_break_is_500(self, app, make_exchange, read_response):
        """Test a header value holding CRLF fails the request instead of being sent."""
        async def echo_name(ctx, next):
            ctx.set("X-Name", "guest\r\nSet-Cookie: admin=1")
            ctx.body = "hi"

        app.use(echo_name)
        res = await run(app, make_exchange)

        status, headers, _ = read_response(res)
        assert status == 500
        assert "x-name" not in headers
        assert "set-cookie" not in headers

    @pytest.mark.asyncio
    async def test_async_generator_body(self, app, make_exchange, read_response):
        """Test async generators are piped chunk by chunk."""
        async def chunks():
            for part in ("one ", "two ", "three"):
                yield part

        async def stream(ctx, next):
            ctx.body = chunks()

        app.use(stream)
        res = await run(app, make_exchange)

        _, _, body = read_response(res)
        assert body == b"one two three"

    @pytest.mark.asyncio
    async def test_stream_error_after_head(self, app, make_exchange):
        """Test a stream failing mid-body destroys the response."""
        received = []
        app.on("error", lambda err, ctx: received.append(err))

        async def broken():
            yield b"first"
            raise OSError("disk went away")

        async def stream(ctx, next):
            ctx.body = broken()

        app.use(stream)
        res = await run(app, make_exchange)

        assert res.destroyed is True
        assert isinstance(received[0], OSError)

    @pytest.mark.asyncio
    async def test_respond_bypass(self, app, make_exchange, read_response):
        """Test respond=False leaves the raw response to the middleware."""
        async def raw(ctx, next):
            ctx.respond = False
            ctx.res.status_code = 200
            ctx.res.set_header("Content-Type", "text/plain")
            ctx.res.end("raw output")

        app.use(raw)
        res = await run(app, make_exchange)

        status, _, body = read_response(res)
        assert status == 200
        assert body == b"raw output"

    @pytest.mark.asyncio
    async def test_respond_on_finished_response(self, make_context):
        """Test respond() on a finished response changes nothing."""
        ctx = make_context()
        ctx.body = "first"
        await respond(ctx)
        written = ctx.res.sink.getvalue()

        ctx.body = "second"
        await respond(ctx)

        assert ctx.res.finished is True
        assert ctx.res.sink.getvalue() == written

    @pytest.mark.asyncio
    async def test_custom_headers_sent(self, app, make_exchange, read_response):
        """Test headers set by middleware reach the client."""
        async def headers(ctx, next):
            ctx.set("X-Response-Time", "1ms")
            ctx.set("Set-Cookie", ["a=1", "b=2"])
            ctx.body = "ok"

        app.use(headers)
        res = await run(app, make_exchange)

        _, parsed, _ = read_response(res)
        assert parsed["x-response-time"] == "1ms"
        assert parsed["set-cookie"] == "a=1, b=2"
        assert "date" in parsed

    @pytest.mark.asyncio
    async def test_callback_snapshots_middleware(self, app, make_exchange, read_response):
        """Test middleware added after callback() isn't used by it."""
        handler = app.callback()

        async def late(ctx, next):
            ctx.body = "late"

        app.use(late)
        req, res = make_exchange()
        await handler(req, res)

        status, _, _ = read_response(res)
        assert status == 404
