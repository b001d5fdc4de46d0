"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

One Connection per accepted TCP stream. It reads requests off an
``asyncio.StreamReader``, hands each one to the request handler as a
(RawRequest, RawResponse) pair, and loops while keep-alive holds.

=============================================================================
READING A REQUEST OFF A BYTE STREAM
=============================================================================

TCP has no message boundaries, so the head is found by its delimiter and
the body by what the head says:

    1. readuntil(b"\\r\\n\\r\\n")         → head bytes (431 if too large)
    2. Content-Length: N              → readexactly(N)  (413 if too large)
       Transfer-Encoding: chunked     → decode chunks until the 0 chunk
       neither                        → no body

StreamReader keeps whatever it has buffered past the current request, so
pipelined requests are picked up by the next loop iteration for free.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► PROCESSING ──────► KEEP_ALIVE ──┐
     │             │                 │                   │       │
     │             ▼                 ▼                   ▼       │
     └──────────► CLOSING ◄─────────────────────────────────     │
                    │                      ▲                     │
                    ▼                      └─── idle timeout ────┘
                  CLOSED

=============================================================================
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..config import AppConfig
from ..http.status_codes import status_message
from .message import RawRequest, RawResponse, RawSocket
from .parser import HTTPParseError, RequestParser, content_length_of


logger = logging.getLogger(__name__)


RequestHandler = Callable[[RawRequest, RawResponse], Awaitable[Any]]

HEAD_DELIMITER = b"\r\n\r\n"


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and shutdown."""
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """
    A client connection.

    Args:
        reader: Stream the request bytes arrive on.
        writer: Stream the response bytes go to.
        handler: ``async (req, res)`` callable, usually a Dispatcher.
        config: Timeouts, size limits and keep-alive settings.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        handler: RequestHandler,
        config: AppConfig,
    ):
        self.reader = reader
        self.writer = writer
        self.handler = handler
        self.config = config
        self.parser = RequestParser()

        self.id = str(uuid.uuid4())[:8]
        self.state = ConnectionState.NEW
        self.created_at = time.time()
        self.requests_handled = 0

        peer = writer.get_extra_info("peername") or ("", 0)
        self.socket = RawSocket(
            remote_address=peer[0],
            remote_port=peer[1],
            encrypted=writer.get_extra_info("sslcontext") is not None,
            transport=writer.transport,
        )

    @property
    def client_ip(self) -> str:
        return self.socket.remote_address

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def serve(self) -> None:
        """Serve requests until the client leaves or keep-alive ends."""
        logger.debug(f"[{self.id}] Connection from {self.client_ip}:{self.socket.remote_port}")
        try:
            while True:
                try:
                    request = await self.read_request()
                except HTTPParseError as error:
                    logger.warning(f"[{self.id}] Bad request from {self.client_ip}: {error}")
                    await self._send_error(error.status_code)
                    break
                except asyncio.TimeoutError:
                    if self.requests_handled:
                        logger.debug(f"[{self.id}] Keep-alive timeout")
                    else:
                        logger.debug(f"[{self.id}] Request read timeout")
                        await self._send_error(408)
                    break

                if request is None:
                    break

                keep_alive = await self._handle(request)
                self.requests_handled += 1
                if not keep_alive:
                    break
                self.state = ConnectionState.KEEP_ALIVE

        except (ConnectionResetError, BrokenPipeError) as error:
            logger.debug(f"[{self.id}] Client disconnected: {error!r}")
        finally:
            await self.close()

    async def read_request(self) -> Optional[RawRequest]:
        """
        Read one complete request.

        Returns:
            The request, or None when the client closed the connection
            between requests.

        Raises:
            HTTPParseError: For malformed or oversized requests.
            asyncio.TimeoutError: When the client is too slow.
        """
        self.state = ConnectionState.READING
        timeout = self.config.keep_alive_timeout if self.requests_handled else self.config.timeout

        try:
            head = await asyncio.wait_for(self.reader.readuntil(HEAD_DELIMITER), timeout)
        except asyncio.IncompleteReadError as error:
            if error.partial.strip():
                raise HTTPParseError("Incomplete request head") from error
            return None
        except asyncio.LimitOverrunError as error:
            raise HTTPParseError("Request header fields too large", status_code=431) from error

        if len(head) > self.config.max_header_size:
            raise HTTPParseError("Request header fields too large", status_code=431)

        request = self.parser.parse_head(head)
        request.socket = self.socket
        request.body = await asyncio.wait_for(self._read_body(request), self.config.timeout)
        return request

    async def _read_body(self, request: RawRequest) -> bytes:
        encoding = str(request.headers.get("transfer-encoding", "")).lower()
        if encoding:
            if encoding.split(",")[-1].strip() != "chunked":
                raise HTTPParseError(f"Unsupported Transfer-Encoding: {encoding}", status_code=501)
            return await self._read_chunked()

        length = content_length_of(request)
        if length > self.config.max_request_size:
            raise HTTPParseError(f"Request body too large: {length} bytes", status_code=413)
        if not length:
            return b""
        try:
            return await self.reader.readexactly(length)
        except asyncio.IncompleteReadError as error:
            raise HTTPParseError("Incomplete request body") from error

    async def _read_chunked(self) -> bytes:
        body = bytearray()
        try:
            while True:
                line = await self.reader.readuntil(b"\r\n")
                size_text = line.split(b";", 1)[0].strip()
                try:
                    size = int(size_text, 16)
                except ValueError as error:
                    raise HTTPParseError(f"Invalid chunk size: {size_text!r}") from error

                if size == 0:
                    # Skip trailers up to the blank line.
                    while (await self.reader.readuntil(b"\r\n")) != b"\r\n":
                        pass
                    return bytes(body)

                if len(body) + size > self.config.max_request_size:
                    raise HTTPParseError("Request body too large", status_code=413)
                body += await self.reader.readexactly(size)
                await self.reader.readexactly(2)
        except asyncio.IncompleteReadError as error:
            raise HTTPParseError("Incomplete chunked body") from error

    # =========================================================================
    # HANDLING
    # =========================================================================

    async def _handle(self, request: RawRequest) -> bool:
        """Run the handler for one request. Returns whether to keep the connection."""
        self.state = ConnectionState.PROCESSING

        response = RawResponse(
            sink=self.writer,
            socket=self.socket,
            http_version=request.http_version,
            request_method=request.method,
            server_name=self.config.server_name,
            keep_alive=self.config.keep_alive and request.keep_alive,
        )

        await self.handler(request, response)

        if not response.finished:
            if not self.socket.writable:
                response.destroy(ConnectionResetError("Connection closed by client"))
            else:
                # The handler handed the response to a background task.
                await response.wait_finished()

        await response.drain()
        return response.keep_alive and not response.destroyed

    async def _send_error(self, status: int) -> None:
        """Answer a request that never reached the handler."""
        if not self.socket.writable:
            return
        response = RawResponse(
            sink=self.writer,
            socket=self.socket,
            server_name=self.config.server_name,
            keep_alive=False,
        )
        response.status_code = status
        response.set_header("Content-Type", "text/plain; charset=utf-8")
        response.end(status_message(status) or str(status))
        try:
            await response.drain()
        except (ConnectionResetError, BrokenPipeError):
            pass

    # =========================================================================
    # CLOSING
    # =========================================================================

    async def close(self) -> None:
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as error:
            logger.debug(f"[{self.id}] Error while closing: {error!r}")

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")
