"""
Unit tests for Context: delegation, throw/assert and onerror.
"""

import pytest

from onionhttp import AppConfig, Application, ErrorChannel
from onionhttp.core.message import RawSocket
from onionhttp.errors import HTTPError


class ClosingTransport:
    def is_closing(self) -> bool:
        return True


class TestDelegation:
    """Tests for the request/response shortcuts."""

    def test_facades_are_per_context(self, make_context):
        """Test each context gets its own facades."""
        first, second = make_context(), make_context()

        assert first.request is not second.request
        assert first.response is not second.response
        assert first.request.ctx is first
        assert first.response.ctx is first

    def test_state_starts_empty(self, make_context):
        """Test state is a fresh dict per context."""
        first, second = make_context(), make_context()
        first.state["user"] = "alice"

        assert second.state == {}

    def test_request_delegates(self, make_context):
        """Test request attributes are reachable on the context."""
        ctx = make_context(method="POST", url="/a?b=1", headers={"Host": "example.com"})

        assert ctx.method == "POST"
        assert ctx.path == "/a"
        assert ctx.query == {"b": "1"}
        assert ctx.host == "example.com"
        assert ctx.get("host") == "example.com"

    def test_response_delegates(self, make_context):
        """Test response attributes are writable through the context."""
        ctx = make_context()
        ctx.status = 202
        ctx.body = "accepted"

        assert ctx.response.status == 202
        assert ctx.response.body == "accepted"

    def test_read_only_delegate(self, make_context):
        """Test read-only shortcuts can't be assigned."""
        ctx = make_context()

        with pytest.raises(AttributeError):
            ctx.href = "http://elsewhere/"

    def test_respond_defaults_true(self, make_context):
        """Test respond is on by default."""
        assert make_context().respond is True

    def test_to_dict(self, make_context):
        """Test the inspection snapshot."""
        ctx = make_context(url="/x")
        data = ctx.to_dict()

        assert data["request"]["url"] == "/x"
        assert data["response"]["status"] == 404
        assert data["app"] == {"subdomain_offset": 2, "proxy": False, "env": "development"}
        assert data["original_url"] == "/x"


class TestThrow:
    """Tests for throw() and assert_()."""

    def test_throw_status(self, make_context):
        """Test throwing with a status."""
        with pytest.raises(HTTPError) as exc_info:
            make_context().throw(403)

        assert exc_info.value.status == 403
        assert exc_info.value.message == "Forbidden"
        assert exc_info.value.expose is True

    def test_throw_message_and_properties(self, make_context):
        """Test throwing with a message and extra attributes."""
        with pytest.raises(HTTPError) as exc_info:
            make_context().throw(400, "name required", field="name")

        assert exc_info.value.message == "name required"
        assert exc_info.value.field == "name"

    def test_throw_server_error_not_exposed(self, make_context):
        """Test 5xx errors are not exposed."""
        with pytest.raises(HTTPError) as exc_info:
            make_context().throw(503)

        assert exc_info.value.expose is False

    def test_assert_passes(self, make_context):
        """Test a truthy value doesn't raise."""
        make_context().assert_(True, 401)

    def test_assert_fails(self, make_context):
        """Test a falsy value raises with the given status."""
        with pytest.raises(HTTPError) as exc_info:
            make_context().assert_(None, 401, "Please login!")

        assert exc_info.value.status == 401
        assert str(exc_info.value) == "Please login!"


class TestOnerror:
    """Tests for ctx.onerror()."""

    def test_none_is_ignored(self, make_context, read_response):
        """Test a clean finish signal does nothing."""
        ctx = make_context()
        ctx.onerror(None)

        assert ctx.res.headers_sent is False
        assert ctx.res.sink.getvalue() == b""

    def test_exposed_error(self, make_context, read_response):
        """Test an exposed error's message is sent."""
        ctx = make_context()
        ctx.onerror(HTTPError(403, "Keep out"))

        status, headers, body = read_response(ctx.res)
        assert status == 403
        assert headers["content-type"] == "text/plain; charset=utf-8"
        assert headers["content-length"] == "8"
        assert body == b"Keep out"

    def test_internal_error(self, make_context, read_response):
        """Test an internal error only shows the status phrase."""
        ctx = make_context()
        ctx.onerror(RuntimeError("database password is hunter2"))

        status, _, body = read_response(ctx.res)
        assert status == 500
        assert body == b"Internal Server Error"

    def test_headers_are_reset(self, make_context, read_response):
        """Test headers set before the failure are dropped."""
        ctx = make_context()
        ctx.set("X-Partial", "1")
        ctx.onerror(HTTPError(401, headers={"WWW-Authenticate": 'Basic realm="api"'}))

        status, headers, _ = read_response(ctx.res)
        assert status == 401
        assert "x-partial" not in headers
        assert headers["www-authenticate"] == 'Basic realm="api"'

    def test_file_not_found(self, make_context, read_response):
        """Test FileNotFoundError maps to 404."""
        ctx = make_context()
        ctx.onerror(FileNotFoundError("missing.txt"))

        status, _, body = read_response(ctx.res)
        assert status == 404
        assert body == b"Not Found"

    @pytest.mark.parametrize("bad_status", [999, "418", None])
    def test_invalid_status_becomes_500(self, make_context, read_response, bad_status):
        """Test unknown or non-int statuses map to 500."""
        error = Exception("weird")
        error.status = bad_status
        ctx = make_context()
        ctx.onerror(error)

        status, _, _ = read_response(ctx.res)
        assert status == 500

    def test_status_code_attribute(self, make_context, read_response):
        """Test errors carrying status_code instead of status are honored."""
        class Forbidden(Exception):
            status_code = 403
            expose = True

        ctx = make_context()
        ctx.onerror(Forbidden("Members only"))

        status, _, body = read_response(ctx.res)
        assert status == 403
        assert body == b"Members only"

    def test_status_wins_over_status_code(self, make_context, read_response):
        error = Exception("both")
        error.status = 409
        error.status_code = 400
        ctx = make_context()
        ctx.onerror(error)

        assert read_response(ctx.res)[0] == 409

    def test_non_error_is_wrapped(self, make_context):
        """Test non-exception values are wrapped in a TypeError."""
        received = []
        app = Application(AppConfig(silent=True))
        app.on("error", lambda err, ctx: received.append(err))

        ctx = make_context(app)
        ctx.onerror("just a string")

        assert isinstance(received[0], TypeError)
        assert "non-error thrown" in str(received[0])
        assert ctx.status == 500

    def test_emits_to_channel(self, make_context):
        """Test subscribers receive the error and the context."""
        received = []
        app = Application(AppConfig(silent=True))
        app.on("error", lambda err, ctx: received.append((err, ctx)))

        ctx = make_context(app)
        error = ValueError("boom")
        ctx.onerror(error)

        assert received == [(error, ctx)]

    def test_headers_already_sent(self, make_context):
        """Test a failure after the head was sent destroys the response."""
        ctx = make_context()
        ctx.res.write(b"partial")
        error = RuntimeError("mid-stream")
        ctx.onerror(error)

        assert ctx.res.destroyed is True
        assert error.header_sent is True

    def test_not_writable(self, make_context):
        """Test a failure on a dead connection destroys the response."""
        ctx = make_context(socket=RawSocket(transport=ClosingTransport()))
        ctx.onerror(RuntimeError("gone"))

        assert ctx.res.destroyed is True
        assert ctx.res.headers_sent is False

    def test_uses_injected_channel(self, make_exchange):
        """Test a context reports to the channel it was given."""
        app = Application(AppConfig(silent=True))
        channel = ErrorChannel(silent=True)
        received = []
        channel.subscribe(lambda err, ctx: received.append(err))

        req, res = make_exchange()
        ctx = app.create_context(req, res, errors=channel)
        ctx.onerror(KeyError("x"))

        assert len(received) == 1
        assert app.errors.listener_count == 0
