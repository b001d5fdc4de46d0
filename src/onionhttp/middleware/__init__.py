"""
=============================================================================
MIDDLEWARE
=============================================================================

A middleware is ``(ctx, next) -> awaitable``. Code before ``await next()``
runs on the way in, code after it on the way out:

    Request ──► logging ──► auth ──► handler
                                        │
    Response ◄── logging ◄── auth ◄─────┘

compose() turns a list of them into one function; LoggingMiddleware is
the one built-in.

=============================================================================
"""

from .compose import Middleware, MiddlewarePipeline, compose
from .logging import LoggingMiddleware, RequestLog

__all__ = [
    # Composition
    "Middleware",
    "MiddlewarePipeline",
    "compose",

    # Built-in middleware
    "LoggingMiddleware",
    "RequestLog",
]
