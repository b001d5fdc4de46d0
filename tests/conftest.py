"""
pytest configuration and fixtures.
"""

import socket
from typing import Callable, Dict, Optional, Tuple

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from onionhttp import AppConfig, Application, Context
from onionhttp.core.message import RawRequest, RawResponse, RawSocket


ParsedResponse = Tuple[int, Dict[str, str], bytes]


def parse_response(data: bytes) -> ParsedResponse:
    """Split serialized response bytes into (status, headers, decoded body)."""
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ", 2)[1])

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        name = name.strip().lower()
        value = value.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value

    if headers.get("transfer-encoding") == "chunked":
        decoded = b""
        while body:
            size_line, _, rest = body.partition(b"\r\n")
            size = int(size_line, 16)
            if size == 0:
                break
            decoded += rest[:size]
            body = rest[size + 2:]
        body = decoded

    return status, headers, body


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample GET request head."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample POST request with a JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        b"Content-Length: " + str(len(body)).encode() + b"\r\n"
        b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def app() -> Application:
    """Application with default settings and error logging silenced."""
    return Application(AppConfig(silent=True))


@pytest.fixture
def make_exchange() -> Callable[..., Tuple[RawRequest, RawResponse]]:
    """Factory for a raw request/response pair writing to memory."""

    def _make(
        method: str = "GET",
        url: str = "/",
        headers: Optional[Dict[str, str]] = None,
        http_version: str = "1.1",
        body: bytes = b"",
        socket: Optional[RawSocket] = None,
    ) -> Tuple[RawRequest, RawResponse]:
        sock = socket if socket is not None else RawSocket(remote_address="127.0.0.1", remote_port=50000)
        req = RawRequest(
            method=method,
            url=url,
            headers=dict(headers or {}),
            http_version=http_version,
            body=body,
            socket=sock,
        )
        res = RawResponse(socket=sock, http_version=http_version, request_method=method)
        return req, res

    return _make


@pytest.fixture
def make_context(app: Application, make_exchange) -> Callable[..., Context]:
    """
    Factory for a Context in the state the dispatcher hands to middleware
    (status 404, no body).
    """

    def _make(target_app: Optional[Application] = None, **kwargs) -> Context:
        req, res = make_exchange(**kwargs)
        res.status_code = 404
        return (target_app or app).create_context(req, res)

    return _make


@pytest.fixture
def read_response() -> Callable[[RawResponse], ParsedResponse]:
    """Parse what a RawResponse wrote to its in-memory sink."""

    def _read(res: RawResponse) -> ParsedResponse:
        return parse_response(res.sink.getvalue())

    return _read


@pytest.fixture
def parse_raw() -> Callable[[bytes], ParsedResponse]:
    """Parse response bytes read off a socket."""
    return parse_response


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
