"""
=============================================================================
REQUEST DISPATCH AND RESPONSE FINALIZATION
=============================================================================

    RawRequest, RawResponse
            │
            ▼
    ┌────────────────────────────────────────────────────────────────┐
    │ Dispatcher                                                     │
    │   1. ctx = app.create_context(req, res)                        │
    │   2. res.status_code = 404                                     │
    │   3. res.on_finish(ctx.onerror)    abnormal close → onerror    │
    │   4. await pipeline(ctx)           the middleware onion        │
    │   5. await respond(ctx)            bytes go out here           │
    │   any exception in 4 or 5 → ctx.onerror(err)                   │
    └────────────────────────────────────────────────────────────────┘

=============================================================================
WHAT respond() WRITES
=============================================================================

    ctx.respond is False          nothing, middleware owns the raw response
    response not writable         nothing
    status 204 / 205 / 304        head only
    HEAD request                  head only (Content-Length kept / computed)
    no body                       status message as text/plain
    str / bytes                   written in one go
    stream                        piped chunk by chunk, then closed
    anything else                 JSON

=============================================================================
"""

import logging
from typing import Any, Awaitable, Callable

from .errors import ErrorChannel
from .http.body import StreamBody
from .http.status_codes import EMPTY_STATUSES


logger = logging.getLogger(__name__)


async def respond(ctx) -> None:
    """
    Serialize the final response state through the raw response.

    Safe to call on a response that is already finished.
    """
    if ctx.respond is False:
        return
    if not ctx.writable:
        return

    res = ctx.res
    response = ctx.response
    body = response.body_variant
    code = response.status

    if code in EMPTY_STATUSES:
        ctx.body = None
        res.end()
        return

    if ctx.method == "HEAD":
        if not res.headers_sent and body.kind == "json":
            ctx.length = body.byte_length()
        res.end()
        return

    if body.kind == "empty":
        if ctx.req.http_version_major >= 2:
            text = str(code)
        else:
            text = response.message or str(code)
        if not res.headers_sent:
            ctx.type = "text"
            ctx.length = len(text.encode("utf-8"))
        res.end(text)
        return

    if isinstance(body, StreamBody):
        await _pipe(ctx, body)
        return

    payload = body.serialize()
    if body.kind == "json" and not res.headers_sent:
        ctx.length = len(payload)
    res.end(payload)


async def _pipe(ctx, body: StreamBody) -> None:
    res = ctx.res
    try:
        async for chunk in body.iter_chunks():
            if res.finished:
                break
            res.write(chunk)
            await res.drain()
    finally:
        await body.close()
    res.end()


class Dispatcher:
    """
    Runs one request through the pipeline and the finalizer.

    Args:
        create_context: ``(req, res) -> Context`` factory.
        pipeline: Composed middleware, ``(ctx) -> awaitable``.
        errors: Channel that contexts report errors to.
    """

    def __init__(
        self,
        create_context: Callable[..., Any],
        pipeline: Callable[[Any], Awaitable[Any]],
        errors: ErrorChannel,
    ):
        self.create_context = create_context
        self.pipeline = pipeline
        self.errors = errors

    async def __call__(self, req, res) -> None:
        ctx = self.create_context(req, res, errors=self.errors)
        await self.handle(ctx)

    async def handle(self, ctx) -> None:
        res = ctx.res
        res.status_code = 404
        res.on_finish(ctx.onerror)

        try:
            await self.pipeline(ctx)
            await respond(ctx)
        except Exception as error:
            logger.debug(f"Request failed: {ctx.method} {ctx.original_url}: {error!r}")
            ctx.onerror(error)
