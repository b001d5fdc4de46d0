"""
=============================================================================
RAW TRANSPORT MESSAGES
=============================================================================

The host transport hands the framework two objects per request:

    RawRequest   what arrived: method, target, headers, body bytes, socket
    RawResponse  where the answer goes: status, headers, write()/end()

Everything above this layer (facades, context, dispatcher) talks only to
these two contracts. Anything that looks like them can drive the
framework, which is how the unit tests run without opening sockets:
RawResponse writes to any object with a ``write(bytes)`` method and
defaults to an in-memory buffer.

=============================================================================
RESPONSE FRAMING
=============================================================================

    ┌─────────────────────────────────────────────────────────────────┐
    │  end(data) before any write()                                   │
    │     └── Content-Length known → "Content-Length: N"              │
    │                                                                 │
    │  write(chunk) ... end()                                         │
    │     └── HTTP/1.1 → "Transfer-Encoding: chunked"                 │
    │     └── HTTP/1.0 → no length, connection closes after body      │
    │                                                                 │
    │  HEAD, 1xx, 204, 304                                            │
    │     └── head only, body bytes are never written                 │
    └─────────────────────────────────────────────────────────────────┘

The head (status line + headers) goes out on the first write(), on
end(), or on an explicit flush_headers(). After that ``headers_sent`` is
True for good.

=============================================================================
"""

import asyncio
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..http.dates import format_http_date
from ..http.status_codes import status_message


logger = logging.getLogger(__name__)


HeaderValue = Union[str, List[str]]
FinishCallback = Callable[[Optional[BaseException]], Any]

_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# Anything outside visible latin-1 and tab, so CR, LF and NUL included
_INVALID_FIELD_CHAR = re.compile(r"[^\t\x20-\x7e\x80-\xff]")


def validate_header(name: str, value: HeaderValue) -> None:
    """
    Reject header fields that cannot be written safely.

    Raises:
        ValueError: If the name is not a token, or a value holds a line
            break, NUL, or a character latin-1 cannot carry.
    """
    if not _TOKEN.match(name):
        raise ValueError(f"Invalid header name: {name!r}")
    values = value if isinstance(value, list) else [value]
    for item in values:
        if _INVALID_FIELD_CHAR.search(str(item)):
            raise ValueError(f"Invalid value for header {name}: {item!r}")


# =============================================================================
# SOCKET
# =============================================================================

@dataclass
class RawSocket:
    """
    The bits of the underlying connection the framework looks at.

    Attributes:
        remote_address: Peer IP address.
        remote_port: Peer port.
        encrypted: True for TLS connections.
        transport: asyncio transport, used to report writability.
    """
    remote_address: str = ""
    remote_port: int = 0
    encrypted: bool = False
    transport: Optional[asyncio.BaseTransport] = field(default=None, repr=False)

    @property
    def writable(self) -> bool:
        if self.transport is None:
            return True
        return not self.transport.is_closing()


# =============================================================================
# REQUEST
# =============================================================================

@dataclass
class RawRequest:
    """
    An inbound request as delivered by the transport.

    Header names are stored lowercase. Repeated headers are either
    comma-joined by the parser or kept as a list (``set-cookie``).
    """
    method: str = "GET"
    url: str = "/"
    headers: Dict[str, HeaderValue] = field(default_factory=dict)
    http_version: str = "1.1"
    body: bytes = field(default=b"", repr=False)
    socket: Optional[RawSocket] = None

    def __post_init__(self):
        self.headers = {name.lower(): value for name, value in self.headers.items()}

    @property
    def http_version_major(self) -> int:
        try:
            return int(self.http_version.split(".", 1)[0])
        except ValueError:
            return 1

    @property
    def keep_alive(self) -> bool:
        """Whether the client asked to keep the connection open."""
        connection = str(self.headers.get("connection", "")).lower()
        if self.http_version == "1.0":
            return "keep-alive" in connection
        return "close" not in connection

    # Request headers are never "sent"; the facade treats both sides alike.
    headers_sent = False

    def get_header(self, name: str) -> Optional[HeaderValue]:
        return self.headers.get(name.lower())

    def set_header(self, name: str, value: HeaderValue) -> None:
        self.headers[name.lower()] = value

    def remove_header(self, name: str) -> None:
        self.headers.pop(name.lower(), None)

    def has_header(self, name: str) -> bool:
        return name.lower() in self.headers

    def get_headers(self) -> Dict[str, HeaderValue]:
        return dict(self.headers)


# =============================================================================
# RESPONSE
# =============================================================================

class RawResponse:
    """
    An outbound response bound to a byte sink.

    Args:
        sink: Object with ``write(bytes)`` and optionally ``drain()`` (an
              ``asyncio.StreamWriter`` fits). Defaults to a ``BytesIO``.
        socket: Connection info, used for writability checks.
        http_version: Version echoed on the status line.
        request_method: The request's method; HEAD suppresses the body.
        server_name: Value for the Server header, None to omit it.
        keep_alive: Whether the connection stays open after this response.
    """

    def __init__(
        self,
        sink: Any = None,
        socket: Optional[RawSocket] = None,
        http_version: str = "1.1",
        request_method: str = "GET",
        server_name: Optional[str] = None,
        keep_alive: bool = True,
    ):
        self.sink = sink if sink is not None else io.BytesIO()
        self.socket = socket
        self.http_version = http_version
        self.request_method = request_method.upper()
        self.server_name = server_name
        self.keep_alive = keep_alive

        self.status_code = 200
        self.status_message = ""
        self.headers_sent = False
        self.finished = False
        self.destroyed = False
        self.bytes_written = 0

        # lowercase name -> (original name, value)
        self._headers: Dict[str, tuple] = {}
        self._chunked = False
        self._finish_callbacks: List[FinishCallback] = []
        self._finish_error: Optional[BaseException] = None
        self._finished_event = asyncio.Event()

    # =========================================================================
    # HEADERS
    # =========================================================================

    def get_header(self, name: str) -> Optional[HeaderValue]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def set_header(self, name: str, value: HeaderValue) -> None:
        if self.headers_sent:
            raise RuntimeError("Cannot set headers after they are sent")
        validate_header(name, value)
        self._headers[name.lower()] = (name, value)

    def remove_header(self, name: str) -> None:
        if self.headers_sent:
            raise RuntimeError("Cannot remove headers after they are sent")
        self._headers.pop(name.lower(), None)

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def get_headers(self) -> Dict[str, HeaderValue]:
        """All headers keyed by lowercase name."""
        return {key: value for key, (_, value) in self._headers.items()}

    def get_header_names(self) -> List[str]:
        return list(self._headers)

    # =========================================================================
    # WRITING
    # =========================================================================

    @property
    def body_allowed(self) -> bool:
        """False for HEAD requests and for 1xx, 204 and 304 responses."""
        if self.request_method == "HEAD":
            return False
        return not (self.status_code < 200 or self.status_code in (204, 304))

    def flush_headers(self) -> None:
        """Send the status line and headers now."""
        if self.headers_sent:
            return

        if (
            self.body_allowed
            and not self.has_header("content-length")
            and not self.has_header("transfer-encoding")
        ):
            if self.http_version == "1.1":
                self._headers["transfer-encoding"] = ("Transfer-Encoding", "chunked")
                self._chunked = True
            else:
                # HTTP/1.0 without a length: the close delimits the body.
                self.keep_alive = False

        self.sink.write(self._build_head())
        self.headers_sent = True

    def write(self, data: Union[bytes, str]) -> None:
        """Write a chunk of body, sending the head first if needed."""
        if self.finished:
            raise RuntimeError("write after end")
        if isinstance(data, str):
            data = data.encode("utf-8")

        if not self.headers_sent:
            self.flush_headers()
        if not data or not self.body_allowed:
            return

        if self._chunked:
            self.sink.write(f"{len(data):x}\r\n".encode("ascii") + data + b"\r\n")
        else:
            self.sink.write(data)
        self.bytes_written += len(data)

    def end(self, data: Union[bytes, str, None] = None) -> None:
        """Finish the response, optionally with a last piece of body."""
        if self.finished:
            return
        if isinstance(data, str):
            data = data.encode("utf-8")

        if not self.headers_sent:
            if (
                self.body_allowed
                and not self.has_header("content-length")
                and not self.has_header("transfer-encoding")
            ):
                self._headers["content-length"] = ("Content-Length", str(len(data or b"")))
            self.flush_headers()

        if data:
            self.write(data)
        if self._chunked:
            self.sink.write(b"0\r\n\r\n")

        self.finished = True
        self._emit_finish(None)

    async def drain(self) -> None:
        """Wait for the sink's buffer to flush, if it supports that."""
        drain = getattr(self.sink, "drain", None)
        if drain is not None:
            await drain()

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """
        Abandon the response and close the sink.

        Used when the connection dies underneath us or when a failure hits
        after the head was already sent. ``error`` is handed to the finish
        callbacks. The owning connection closes the socket once it sees
        ``destroyed``.
        """
        if self.finished:
            return
        self.finished = True
        self.destroyed = True
        self.keep_alive = False
        self._emit_finish(error)

    # =========================================================================
    # COMPLETION
    # =========================================================================

    def on_finish(self, callback: FinishCallback) -> None:
        """
        Register a completion callback.

        The callback receives None on a clean finish and the error when the
        response was destroyed. Registering on an already finished response
        calls it right away.
        """
        if self.finished:
            callback(self._finish_error)
            return
        self._finish_callbacks.append(callback)

    async def wait_finished(self) -> None:
        await self._finished_event.wait()

    def _emit_finish(self, error: Optional[BaseException]) -> None:
        self._finish_error = error
        self._finished_event.set()
        callbacks, self._finish_callbacks = self._finish_callbacks, []
        for callback in callbacks:
            callback(error)

    def _build_head(self) -> bytes:
        default_reason = status_message(self.status_code) or "Unknown"
        reason = self.status_message or default_reason
        if _INVALID_FIELD_CHAR.search(reason):
            logger.warning(f"Dropping unsafe status message {reason!r}")
            reason = default_reason
        lines = [f"HTTP/{self.http_version} {self.status_code} {reason}"]

        if not self.has_header("date"):
            lines.append(f"Date: {format_http_date()}")
        if self.server_name and not self.has_header("server"):
            lines.append(f"Server: {self.server_name}")
        if not self.has_header("connection"):
            lines.append(f"Connection: {'keep-alive' if self.keep_alive else 'close'}")

        for name, value in self._headers.values():
            values = value if isinstance(value, list) else [value]
            for item in values:
                lines.append(f"{name}: {item}")

        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

    def __repr__(self) -> str:
        return (
            f"RawResponse(status={self.status_code}, "
            f"headers_sent={self.headers_sent}, finished={self.finished})"
        )
