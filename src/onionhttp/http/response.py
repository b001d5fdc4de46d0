"""
=============================================================================
RESPONSE FACADE
=============================================================================

Middleware never touches the raw response directly. It sets ``status``,
``body``, ``type`` and headers on this facade, and the finalizer turns
the final state into bytes once the onion has unwound.

=============================================================================
THE STATUS / BODY STATE MACHINE
=============================================================================

    start: status 404 (set by the dispatcher), no body

    ┌──────────────────────────────┬────────────────────────────────────────┐
    │ Assignment                   │ Effect                                 │
    ├──────────────────────────────┼────────────────────────────────────────┤
    │ body = "<p>hi</p>"           │ status 200 (unless set explicitly),    │
    │                              │ type html, length 9                    │
    │ body = b"\\x00\\x01"          │ status 200, type bin, length 2         │
    │ body = {"a": 1}              │ status 200, type json, length dropped  │
    │ body = open("f.bin", "rb")   │ status 200, type bin, length unknown   │
    │ body = None                  │ status 204 (unless already empty-code),│
    │                              │ Content-Type/Length/Transfer-Encoding  │
    │                              │ removed                                │
    │ status = 204 / 205 / 304     │ body dropped, same headers removed     │
    │ anything after head is sent  │ ignored                                │
    └──────────────────────────────┴────────────────────────────────────────┘

Content-Type is only inferred when nothing set it already, so

    ctx.type = "text/xml"
    ctx.body = "<feed/>"

stays text/xml.

=============================================================================
INTERVIEW INSIGHT: WHY DEFAULT TO 404?
=============================================================================

Q: "Why does every response start as 404?"
A: "If no middleware claims the request (sets a body or a status), the
   honest answer is 'nothing here'. Setting a body is what claims it,
   which is why a body assignment promotes the status to 200."

=============================================================================
"""

import html
import logging
import re
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

from . import mime_types
from .body import Body, EmptyBody, StreamBody, wrap_body
from .dates import format_http_date, parse_http_date
from .disposition import content_disposition
from .headers import HeaderFacade
from .negotiation import type_is
from .request import parse_content_length
from .status_codes import EMPTY_STATUSES, REDIRECT_STATUSES, status_message


logger = logging.getLogger(__name__)


_ETAG_PATTERN = re.compile(r'^(W/)?"')
_LONE_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")
_URL_SAFE = "!#$%&'()*+,/:;=?@[\\]^|~"


def encode_url(url: str) -> str:
    """
    Percent-encode a URL for a Location header.

    Reserved characters and existing escapes are kept. Spaces, quotes,
    control characters and non-ASCII text are encoded, and a "%" that does
    not start an escape becomes "%25".

        >>> encode_url("/caf\u00e9 menu?q=100%")
        '/caf%C3%A9%20menu?q=100%25'
    """
    return quote(_LONE_PERCENT.sub("%25", url), safe=_URL_SAFE)


def _release(body: Body) -> None:
    if isinstance(body, StreamBody):
        body.release()


class Response:
    """
    Response facade bound to one Context.

    Args:
        ctx: The owning Context.
        req: The RawRequest of the same exchange.
        res: The RawResponse.
    """

    def __init__(self, ctx, req, res):
        self.ctx = ctx
        self.req = req
        self.res = res
        self.headers_facade = HeaderFacade(res)

        self._body: Body = EmptyBody()
        self._explicit_status = False

    @property
    def app(self):
        return self.ctx.app

    @property
    def request(self):
        return self.ctx.request

    @property
    def socket(self):
        return self.res.socket

    # =========================================================================
    # HEADERS
    # =========================================================================

    @property
    def header(self) -> Dict[str, Any]:
        return self.res.get_headers()

    @property
    def headers(self) -> Dict[str, Any]:
        return self.header

    @property
    def header_sent(self) -> bool:
        return bool(self.res.headers_sent)

    def get(self, field: str) -> Union[str, List[str]]:
        return self.headers_facade.get(field)

    def has(self, field: str) -> bool:
        return self.headers_facade.has(field)

    def set(self, field, value=None) -> None:
        """
        Set a header, or several from a mapping.

            ctx.set("Cache-Control", "no-cache")
            ctx.set("Set-Cookie", ["a=1", "b=2"])
            ctx.set({"X-A": "1", "X-B": "2"})
        """
        self.headers_facade.set(field, value)

    def append(self, field: str, value) -> None:
        self.headers_facade.append(field, value)

    def remove(self, field: str) -> None:
        self.headers_facade.remove(field)

    def vary(self, field: str) -> None:
        """Add a field to the Vary header, once."""
        if self.header_sent:
            return

        current = self.get("Vary")
        if isinstance(current, list):
            current = ", ".join(current)
        existing = [item.strip() for item in current.split(",") if item.strip()]
        if "*" in existing:
            return

        fields = [item.strip() for item in field.split(",") if item.strip()]
        if "*" in fields:
            self.set("Vary", "*")
            return

        lowered = {item.lower() for item in existing}
        for item in fields:
            if item.lower() not in lowered:
                existing.append(item)
                lowered.add(item.lower())
        if existing:
            self.set("Vary", ", ".join(existing))

    def flush_headers(self) -> None:
        self.res.flush_headers()

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def status(self) -> int:
        return self.res.status_code

    @status.setter
    def status(self, code: int) -> None:
        self._set_status(code, explicit=True)

    def _set_status(self, code: int, explicit: bool) -> None:
        if self.header_sent:
            return
        if not isinstance(code, int) or isinstance(code, bool):
            raise TypeError("status code must be a number")
        if not 100 <= code <= 999:
            raise ValueError(f"invalid status code: {code}")

        if explicit:
            self._explicit_status = True
        self.res.status_code = int(code)
        if self.req.http_version_major < 2:
            self.res.status_message = status_message(code)

        if code in EMPTY_STATUSES:
            self._clear_body()

    @property
    def message(self) -> str:
        return self.res.status_message or status_message(self.status)

    @message.setter
    def message(self, value: str) -> None:
        if self.header_sent:
            return
        self.res.status_message = value

    # =========================================================================
    # BODY
    # =========================================================================

    @property
    def body(self) -> Any:
        """The value last assigned as body (None when empty)."""
        return self._body.value

    @property
    def body_variant(self) -> Body:
        """The classified body (EmptyBody, TextBody, BytesBody, StreamBody, JsonBody)."""
        return self._body

    @body.setter
    def body(self, value: Any) -> None:
        if self.header_sent:
            return

        original = self._body
        body = wrap_body(value)
        if isinstance(original, StreamBody) and original.value is value:
            body = original

        if isinstance(body, EmptyBody):
            if self.status not in EMPTY_STATUSES:
                self._set_status(204, explicit=False)
            self._clear_body()
            return

        if not self._explicit_status:
            self._set_status(200, explicit=False)
        elif self.status in EMPTY_STATUSES:
            self._clear_body()
            _release(body)
            return

        if body is not original:
            _release(original)
            if isinstance(body, StreamBody):
                self.res.on_finish(lambda error: body.release())
        self._body = body
        set_type = not self.has("Content-Type")

        if isinstance(body, StreamBody):
            if not isinstance(original, EmptyBody) and original.value is not value:
                self.remove("Content-Length")
            if set_type:
                self.type = body.default_type
            return

        if body.kind == "json":
            self.remove("Content-Length")
            if set_type:
                self.type = body.default_type
            return

        if set_type:
            self.type = body.default_type
        self.length = body.byte_length()

    def _clear_body(self) -> None:
        _release(self._body)
        self._body = EmptyBody()
        self.remove("Content-Type")
        self.remove("Content-Length")
        self.remove("Transfer-Encoding")

    @property
    def length(self) -> Optional[int]:
        """
        Content-Length of the response.

        From the header when set, otherwise computed from the body. None
        for streams and chunked responses.
        """
        value = self.get("Content-Length")
        if value:
            return parse_content_length(value)
        if self.get("Transfer-Encoding"):
            return None
        return self._body.byte_length()

    @length.setter
    def length(self, value: int) -> None:
        self.set("Content-Length", value)

    # =========================================================================
    # CONTENT TYPE
    # =========================================================================

    @property
    def type(self) -> str:
        """Content-Type without parameters, "" if unset."""
        value = self.get("Content-Type")
        if not value:
            return ""
        return value.split(";", 1)[0]

    @type.setter
    def type(self, value: str) -> None:
        resolved = mime_types.content_type(value)
        if resolved:
            self.set("Content-Type", resolved)
        else:
            self.remove("Content-Type")

    def is_(self, *types) -> Union[str, bool]:
        """
        Check the response Content-Type.

            ctx.type = "json"
            ctx.response.is_("json", "html")   # "json"
        """
        content_type = self.type
        if not types:
            return content_type or False
        return type_is(content_type, *types)

    # =========================================================================
    # CACHE VALIDATORS
    # =========================================================================

    @property
    def last_modified(self) -> Optional[datetime]:
        return parse_http_date(self.get("Last-Modified"))

    @last_modified.setter
    def last_modified(self, value: Union[datetime, str]) -> None:
        if isinstance(value, str):
            parsed = parse_http_date(value)
            if parsed is None:
                raise ValueError(f"invalid date: {value!r}")
            value = parsed
        self.set("Last-Modified", format_http_date(value))

    @property
    def etag(self) -> str:
        return self.get("ETag")

    @etag.setter
    def etag(self, value: str) -> None:
        if not _ETAG_PATTERN.match(value):
            value = f'"{value}"'
        self.set("ETag", value)

    # =========================================================================
    # REDIRECTS & DOWNLOADS
    # =========================================================================

    def redirect(self, url: str, alt: Optional[str] = None) -> None:
        """
        Redirect to ``url``.

        ``"back"`` means the Referrer header, falling back to ``alt`` and
        then "/". The status becomes 302 unless a redirect status was set
        already.

            ctx.redirect("back")
            ctx.redirect("back", "/index.html")
            ctx.status = 301
            ctx.redirect("/login")
        """
        if url == "back":
            url = self.ctx.get("Referrer") or alt or "/"
        url = encode_url(url)
        self.set("Location", url)

        if self.status not in REDIRECT_STATUSES:
            self.status = 302

        if self.ctx.accepts("html"):
            escaped = html.escape(url)
            self.type = "text/html; charset=utf-8"
            self.body = f'Redirecting to <a href="{escaped}">{escaped}</a>.'
            return

        self.type = "text/plain; charset=utf-8"
        self.body = f"Redirecting to {url}."

    def attachment(
        self,
        filename: Optional[str] = None,
        fallback: Union[bool, str] = True,
        type: str = "attachment",
    ) -> None:
        """
        Ask the client to download the response.

        Sets Content-Type from the file extension when a filename is
        given, and Content-Disposition.
        """
        if filename:
            self.type = PurePosixPath(filename.replace("\\", "/")).suffix
        self.set("Content-Disposition", content_disposition(filename, type=type, fallback=fallback))

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def writable(self) -> bool:
        """Whether the response can still be written to."""
        if self.res.finished:
            return False
        socket = self.res.socket
        if socket is None:
            return True
        return socket.writable

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message, "header": self.header}

    def __repr__(self) -> str:
        return f"Response({self.status} {self.message})"
