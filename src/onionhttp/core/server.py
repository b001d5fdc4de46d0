"""
=============================================================================
TCP TRANSPORT
=============================================================================

Binds a listening socket with ``asyncio.start_server`` and runs one
Connection task per client.

    ┌───────────────────────┐
    │   Listening Socket    │ ◄── bound once at start()
    └───────────┬───────────┘
                │  accept (inside the event loop)
        ┌───────┼───────────────────────┐
        ▼       ▼                       ▼
    Connection  Connection   ...   Connection     one task each
        │
        └──► handler(req, res) for every request on that connection

Everything runs on one event loop thread. A slow client only holds its
own task; a handler that blocks the thread holds everyone.

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    close()
      ├── stop accepting (server.close())
      ├── close every open connection
      └── wait for the listening socket to be released

=============================================================================
"""

import asyncio
import logging
import ssl as ssl_module
from typing import Optional, Set, Tuple

from ..config import AppConfig
from .connection import Connection, RequestHandler


logger = logging.getLogger(__name__)


class HTTPTransport:
    """
    Serves HTTP/1.x over TCP (optionally TLS) for a request handler.

    Args:
        handler: ``async (req, res)`` callable.
        config: Bind address and connection limits.
        ssl: Optional SSLContext for HTTPS.

    Example:
        transport = HTTPTransport(app.callback(), AppConfig(port=0))
        await transport.start()
        host, port = transport.address
    """

    def __init__(
        self,
        handler: RequestHandler,
        config: Optional[AppConfig] = None,
        ssl: Optional[ssl_module.SSLContext] = None,
    ):
        self.handler = handler
        self.config = config or AppConfig()
        self.ssl = ssl

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[Connection] = set()

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port). With port 0 this is the port the OS picked."""
        if self._server is None or not self._server.sockets:
            return self.config.host, self.config.port
        sockname = self._server.sockets[0].getsockname()
        return sockname[0], sockname[1]

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        """Bind and start accepting connections."""
        try:
            self._server = await asyncio.start_server(
                self._on_connection,
                host=self.config.host,
                port=self.config.port,
                backlog=self.config.backlog,
                ssl=self.ssl,
                limit=self.config.max_header_size,
            )
        except OSError as error:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {error}")
            raise

        host, port = self.address
        scheme = "https" if self.ssl else "http"
        logger.info(f"Server listening on {scheme}://{host}:{port}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            logger.info("Server cancelled, shutting down...")
            raise
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop accepting connections and close the open ones."""
        if self._server is None:
            return
        logger.info("Shutting down transport...")

        server, self._server = self._server, None
        server.close()

        if self._connections:
            logger.info(f"Closing {len(self._connections)} open connections")
            await asyncio.gather(
                *(connection.close() for connection in list(self._connections)),
                return_exceptions=True,
            )

        await server.wait_closed()
        logger.info("Transport stopped")

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        connection = Connection(reader, writer, self.handler, self.config)
        self._connections.add(connection)
        try:
            await connection.serve()
        except Exception:
            logger.exception(f"[{connection.id}] Unhandled error on connection")
        finally:
            self._connections.discard(connection)
