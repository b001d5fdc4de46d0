"""
=============================================================================
HOST TRANSPORT
=============================================================================

Everything below the framework: bytes on a TCP stream in, RawRequest /
RawResponse pairs out.

    HTTPTransport   asyncio.start_server, one task per client
    Connection      keep-alive loop, timeouts, size limits
    RequestParser   request line + headers → RawRequest
    RawRequest      what arrived
    RawResponse     status line, headers and framed body going out

The framework above only relies on the RawRequest / RawResponse
contracts, so tests can drive it with in-memory objects.

=============================================================================
"""

from .message import RawRequest, RawResponse, RawSocket
from .parser import RequestParser, HTTPParseError
from .connection import Connection, ConnectionState
from .server import HTTPTransport

__all__ = [
    "RawRequest",
    "RawResponse",
    "RawSocket",
    "RequestParser",
    "HTTPParseError",
    "Connection",
    "ConnectionState",
    "HTTPTransport",
]
