"""
=============================================================================
onionhttp: A SMALL ASYNC HTTP FRAMEWORK BUILT AROUND ONE MIDDLEWARE ONION
=============================================================================

    from onionhttp import Application

    app = Application()

    async def timer(ctx, next):
        start = time.perf_counter()
        await next()
        ctx.set("X-Response-Time", f"{(time.perf_counter() - start) * 1000:.1f}ms")

    async def hello(ctx, next):
        ctx.body = {"hello": ctx.query.get("name", "world")}

    app.use(timer).use(hello)
    app.run()

=============================================================================
PACKAGE LAYOUT
=============================================================================

    onionhttp/
    ├── application.py   Application: use(), callback(), listen(), run()
    ├── context.py       Context: one per request, delegates to facades
    ├── dispatcher.py    Dispatcher + respond() finalizer
    ├── errors.py        HTTPError, create_error, ErrorChannel
    ├── config.py        AppConfig
    ├── middleware/      compose(), Middleware, LoggingMiddleware
    ├── http/            Request/Response facades and protocol helpers
    └── core/            asyncio transport, parser, raw messages

=============================================================================
"""

__version__ = "1.0.0"

from .application import Application
from .config import AppConfig
from .context import Context
from .core.message import RawRequest, RawResponse, RawSocket
from .errors import ErrorChannel, HTTPError, NextCalledMultipleTimesError, create_error
from .http.status_codes import HTTPStatus
from .middleware.compose import Middleware, MiddlewarePipeline, compose
from .middleware.logging import LoggingMiddleware

__all__ = [
    "Application",
    "AppConfig",
    "Context",
    "RawRequest",
    "RawResponse",
    "RawSocket",
    "ErrorChannel",
    "HTTPError",
    "NextCalledMultipleTimesError",
    "create_error",
    "HTTPStatus",
    "Middleware",
    "MiddlewarePipeline",
    "compose",
    "LoggingMiddleware",
    "__version__",
]
