"""
=============================================================================
APPLICATION
=============================================================================

The object users build. It holds the middleware list, the configuration
and the error channel, and hands a request handler to the transport.

    app = Application()

    async def hello(ctx, next):
        ctx.body = "Hello World"

    app.use(timer).use(hello)

    app.run()                       # blocking, or:
    await app.listen(port=8080)     # inside a running loop

=============================================================================
FROM SOCKET TO MIDDLEWARE
=============================================================================

    HTTPTransport ─► Connection ─► app.callback() ─► Dispatcher
                                                        │
                                   create_context(req, res)
                                                        │
                                   compose(app.middleware)(ctx)
                                                        │
                                   respond(ctx)

callback() composes the middleware at the moment it is called. Middleware
added afterwards is not seen by that handler, so register everything
before listening.

=============================================================================
INTERVIEW INSIGHT: ONE PIPELINE, MANY REQUESTS
=============================================================================

Q: "Is it safe to serve concurrent requests with one composed function?"
A: "Yes. The composed function holds no per-request state; each call
   gets its own dispatch cursor and its own Context. What is shared is
   read-only: the middleware list and the app settings."

=============================================================================
"""

import asyncio
import logging
import ssl as ssl_module
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from .config import AppConfig
from .context import Context
from .core.message import RawRequest, RawResponse
from .core.server import HTTPTransport
from .dispatcher import Dispatcher
from .errors import ErrorChannel, ErrorHandler
from .middleware.compose import MiddlewareFunc, compose, middleware_name


logger = logging.getLogger(__name__)


class Application:
    """
    An HTTP application: middleware, settings and an error channel.

    Args:
        config: Settings. Defaults to ``AppConfig()``.
        errors: Error channel. Defaults to a new one that honours
                ``config.silent``.

    Raises:
        ValueError: If the configuration is invalid.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        errors: Optional[ErrorChannel] = None,
    ):
        self.config = config or AppConfig()
        self.config.validate()

        self.middleware: List[MiddlewareFunc] = []
        self.errors = errors if errors is not None else ErrorChannel(silent=self.config.silent)
        self.transport: Optional[HTTPTransport] = None

    # =========================================================================
    # SETTINGS
    # =========================================================================

    @property
    def proxy(self) -> bool:
        return self.config.proxy

    @property
    def subdomain_offset(self) -> int:
        return self.config.subdomain_offset

    @property
    def env(self) -> str:
        return self.config.env

    @property
    def silent(self) -> bool:
        return self.errors.silent

    @silent.setter
    def silent(self, value: bool) -> None:
        self.errors.silent = value

    # =========================================================================
    # MIDDLEWARE & ERRORS
    # =========================================================================

    def use(self, fn: MiddlewareFunc) -> "Application":
        """
        Add a middleware to the end of the stack.

        Returns the app, so calls chain.

        Raises:
            TypeError: If ``fn`` is not callable.
        """
        if not callable(fn):
            raise TypeError("middleware must be a function!")
        logger.debug(f"use {middleware_name(fn)}")
        self.middleware.append(fn)
        return self

    def on(self, event: str, handler: ErrorHandler) -> "Application":
        """
        Subscribe to application events. Only ``"error"`` exists.

        A subscribed handler replaces the default error logging.

            app.on("error", lambda err, ctx: report(err, ctx.path))
        """
        if event != "error":
            raise ValueError(f"Unknown event: {event!r}")
        self.errors.subscribe(handler)
        return self

    def onerror(self, error: Any) -> None:
        """Default error handler: log non-404, non-exposed errors unless silent."""
        self.errors.default_handler(error)

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def callback(self) -> Callable[[RawRequest, RawResponse], Any]:
        """
        Build the request handler for a transport.

        Returns:
            ``async handler(req, res)``.
        """
        return Dispatcher(self.create_context, compose(self.middleware), self.errors)

    def create_context(
        self,
        req: RawRequest,
        res: RawResponse,
        errors: Optional[ErrorChannel] = None,
    ) -> Context:
        """Create a fresh Context (and facades) for one request."""
        return Context(self, req, res, errors=errors)

    async def handle_request(self, ctx: Context, pipeline: Callable[..., Any]) -> None:
        """Run an already built Context through ``pipeline`` and respond."""
        await Dispatcher(self.create_context, pipeline, self.errors).handle(ctx)

    # =========================================================================
    # SERVING
    # =========================================================================

    async def listen(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        ssl: Optional[ssl_module.SSLContext] = None,
    ) -> HTTPTransport:
        """
        Start serving in the running event loop.

        Args:
            host: Bind address, overriding the config.
            port: Bind port, overriding the config. 0 picks a free port.
            ssl: Optional SSLContext for HTTPS.

        Returns:
            The started transport; ``transport.address`` has the bound port.
        """
        config = self.config
        if host is not None or port is not None:
            config = replace(
                config,
                host=config.host if host is None else host,
                port=config.port if port is None else port,
            )
            config.validate()

        self.transport = HTTPTransport(self.callback(), config, ssl=ssl)
        await self.transport.start()
        return self.transport

    async def close(self) -> None:
        if self.transport is not None:
            await self.transport.close()
            self.transport = None

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Serve until interrupted. Configures logging first."""
        self._setup_logging()
        logger.info("=" * 50)
        logger.info("onionhttp application starting")
        logger.info(f"Environment: {self.env}")
        logger.info(f"Middleware: {len(self.middleware)}")
        logger.info(f"Trust proxy: {self.proxy}")
        logger.info("=" * 50)

        async def main():
            transport = await self.listen(host, port)
            await transport.serve_forever()

        try:
            asyncio.run(main())
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")

    def _setup_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.config.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subdomain_offset": self.subdomain_offset,
            "proxy": self.proxy,
            "env": self.env,
        }

    def __repr__(self) -> str:
        return f"Application(env={self.env!r}, middleware={len(self.middleware)})"
