"""
=============================================================================
REQUEST CONTEXT
=============================================================================

One Context per request. It owns the Request and Response facades, a
``state`` dict for middleware to share data, and the ``onerror`` entry
point every failure goes through.

Most attributes are shortcuts to one of the two facades:

    ctx.path        →  ctx.request.path
    ctx.body = x    →  ctx.response.body = x

    ┌──────────────────────────────────────────────────────────────────┐
    │                          Context                                 │
    │   app ─────────────► Application (proxy, subdomain_offset, env)  │
    │   req, res ────────► RawRequest, RawResponse                     │
    │   request ─────────► Request ──┐                                 │
    │   response ────────► Response ─┤── both point back at ctx        │
    │   state = {}                   │                                 │
    │   respond = True   (False: finalizer leaves res alone)           │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
INTERVIEW INSIGHT: WHY A CONTEXT OBJECT?
=============================================================================

Q: "Why not pass (request, response) to each middleware like WSGI?"
A: "Middleware constantly needs both: an auth layer reads a header and
   sets a status, a logger reads the path and the final status. One
   object keeps the signature stable (ctx, next) and gives a natural
   home for per-request state shared between layers."

=============================================================================
"""

import logging
from typing import Any, Dict, Optional

from .errors import ErrorChannel, create_error, error_status
from .http.request import Request
from .http.response import Response
from .http.status_codes import is_known_status, status_message


logger = logging.getLogger(__name__)


class _Delegate:
    """Forward an attribute to ``ctx.request`` or ``ctx.response``."""

    def __init__(self, target: str, writable: bool = False):
        self.target = target
        self.writable = writable

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, ctx, owner=None):
        if ctx is None:
            return self
        return getattr(getattr(ctx, self.target), self.name)

    def __set__(self, ctx, value):
        if not self.writable:
            raise AttributeError(f"can't set attribute '{self.name}'")
        setattr(getattr(ctx, self.target), self.name, value)


class Context:
    """
    Per-request context.

    Args:
        app: The owning Application.
        req: RawRequest from the transport.
        res: RawResponse from the transport.
        errors: Error channel to report to. Defaults to the app's.
    """

    def __init__(self, app, req, res, errors: Optional[ErrorChannel] = None):
        self.app = app
        self.req = req
        self.res = res
        self.errors = errors if errors is not None else app.errors

        self.request = Request(self, req, res)
        self.response = Response(self, req, res)

        self.original_url = req.url
        self.state: Dict[str, Any] = {}
        self.respond = True

    # =========================================================================
    # RESPONSE DELEGATES
    # =========================================================================

    attachment = _Delegate("response")
    redirect = _Delegate("response")
    remove = _Delegate("response")
    vary = _Delegate("response")
    has = _Delegate("response")
    set = _Delegate("response")
    append = _Delegate("response")
    flush_headers = _Delegate("response")
    status = _Delegate("response", writable=True)
    message = _Delegate("response", writable=True)
    body = _Delegate("response", writable=True)
    length = _Delegate("response", writable=True)
    type = _Delegate("response", writable=True)
    last_modified = _Delegate("response", writable=True)
    etag = _Delegate("response", writable=True)
    header_sent = _Delegate("response")
    writable = _Delegate("response")

    # =========================================================================
    # REQUEST DELEGATES
    # =========================================================================

    accepts_languages = _Delegate("request")
    accepts_encodings = _Delegate("request")
    accepts_charsets = _Delegate("request")
    accepts = _Delegate("request")
    get = _Delegate("request")
    is_ = _Delegate("request")
    querystring = _Delegate("request", writable=True)
    idempotent = _Delegate("request")
    socket = _Delegate("request")
    search = _Delegate("request", writable=True)
    method = _Delegate("request", writable=True)
    query = _Delegate("request", writable=True)
    path = _Delegate("request", writable=True)
    url = _Delegate("request", writable=True)
    accept = _Delegate("request", writable=True)
    origin = _Delegate("request")
    href = _Delegate("request")
    subdomains = _Delegate("request")
    protocol = _Delegate("request")
    host = _Delegate("request")
    hostname = _Delegate("request")
    parsed_url = _Delegate("request")
    header = _Delegate("request")
    headers = _Delegate("request")
    secure = _Delegate("request")
    stale = _Delegate("request")
    fresh = _Delegate("request")
    ips = _Delegate("request")
    ip = _Delegate("request", writable=True)

    # =========================================================================
    # ERRORS
    # =========================================================================

    def throw(self, *args, **properties) -> None:
        """
        Raise an HTTPError.

            ctx.throw(403)
            ctx.throw(400, "name required")
            ctx.throw(400, "name required", user=user)
        """
        raise create_error(*args, **properties)

    def assert_(self, value: Any, *args, **properties) -> None:
        """
        Raise an HTTPError unless ``value`` is truthy.

            ctx.assert_(ctx.state.get("user"), 401, "Please login!")
        """
        if not value:
            raise create_error(*args, **properties)

    def onerror(self, error: Any) -> None:
        """
        Report an error and, if still possible, answer with an error response.

        Called for anything that escapes the middleware onion, and by the
        raw response when the connection finishes abnormally. None means a
        clean finish and is ignored.
        """
        if error is None:
            return

        if not isinstance(error, BaseException):
            error = TypeError(f"non-error thrown: {error!r}")

        header_sent = self.header_sent or not self.writable
        if header_sent:
            error.header_sent = True

        self.errors.emit(error, self)

        if header_sent:
            # Too late for an error response; drop the half-written one.
            logger.debug(f"Headers already sent for {self.original_url}, destroying response")
            self.res.destroy()
            return

        # Start from a clean slate, keeping only what the error asks for.
        for name in self.res.get_header_names():
            self.res.remove_header(name)
        headers = getattr(error, "headers", None)
        if headers:
            self.set(headers)

        if isinstance(error, FileNotFoundError):
            status = 404
        else:
            status = error_status(error)
        if not isinstance(status, int) or isinstance(status, bool) or not is_known_status(status):
            status = 500

        if getattr(error, "expose", False):
            text = str(getattr(error, "message", None) or error)
        else:
            text = status_message(status)

        self.status = status
        self.type = "text"
        self.length = len(text.encode("utf-8"))
        self.res.end(text)

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "response": self.response.to_dict(),
            "app": self.app.to_dict(),
            "original_url": self.original_url,
            "req": "<original req>",
            "res": "<original res>",
            "socket": "<original socket>",
        }

    def __repr__(self) -> str:
        return f"Context({self.method} {self.url} -> {self.status})"
