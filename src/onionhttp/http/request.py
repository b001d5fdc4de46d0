"""
=============================================================================
REQUEST FACADE
=============================================================================

A read-mostly view over the raw request with the conveniences middleware
actually wants: parsed path and query, the real client address behind a
proxy, content negotiation, cache freshness.

=============================================================================
WHERE EACH VALUE COMES FROM
=============================================================================

    GET /users/42?tab=posts HTTP/1.1
    Host: api.example.com:8080
    X-Forwarded-For: 203.0.113.7, 10.0.0.2     (only read when proxy=True)
    X-Forwarded-Proto: https                   (only read when proxy=True)

    ┌──────────────┬──────────────────────────────────────────────────────┐
    │ url          │ "/users/42?tab=posts"                                │
    │ path         │ "/users/42"                                          │
    │ querystring  │ "tab=posts"                                          │
    │ search       │ "?tab=posts"                                         │
    │ query        │ {"tab": "posts"}                                     │
    │ host         │ "api.example.com:8080"                               │
    │ hostname     │ "api.example.com"                                    │
    │ protocol     │ "https" (TLS socket, or forwarded proto via proxy)   │
    │ origin       │ "https://api.example.com:8080"                       │
    │ href         │ "https://api.example.com:8080/users/42?tab=posts"    │
    │ ips          │ ["203.0.113.7", "10.0.0.2"]                          │
    │ ip           │ "203.0.113.7"                                        │
    │ subdomains   │ ["api"]                                              │
    └──────────────┴──────────────────────────────────────────────────────┘

=============================================================================
INTERVIEW INSIGHT: TRUSTING X-FORWARDED-*
=============================================================================

Q: "Why is proxy trust off by default?"
A: "Any client can send X-Forwarded-For. If the app trusted it without a
   proxy in front that overwrites it, clients could spoof their IP (and
   defeat rate limits or audit logs). Only turn it on when a reverse
   proxy you control sets these headers."

=============================================================================
"""

import ipaddress
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import SplitResult, parse_qs, quote, urlencode, urlsplit

from .freshness import fresh
from .headers import HeaderFacade
from .negotiation import Accepts, has_body, parse_content_type, type_is
from ..errors import HTTPError


logger = logging.getLogger(__name__)


IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE", "OPTIONS", "TRACE"})

_COMMA_SPLIT = re.compile(r"\s*,\s*")
_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)
_DIGITS = re.compile(r"^\d+$")


def split_target(url: str) -> Tuple[str, str, str, str]:
    """
    Split a request target into (origin, path, query, fragment).

    Only absolute http(s) URLs carry an origin. Anything else is taken as
    origin-form, so "//admin/users" is a path, not a host.

        >>> split_target("//admin/users?x=1#top")
        ('', '//admin/users', 'x=1', '#top')
    """
    origin = ""
    if _ABSOLUTE_URL.match(url):
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}"
        url = url[len(origin):]

    rest, hash_sep, fragment = url.partition("#")
    path, _, query = rest.partition("?")
    return origin, path, query, hash_sep + fragment


def join_target(origin: str, path: str, query: str, fragment: str) -> str:
    return origin + path + (f"?{query}" if query else "") + fragment


QueryDict = Dict[str, Union[str, List[str]]]


def parse_query(querystring: str) -> QueryDict:
    """
    Parse a query string, collapsing single values.

        >>> parse_query("a=1&a=2&b=3&c")
        {'a': ['1', '2'], 'b': '3', 'c': ''}
    """
    parsed = parse_qs(querystring, keep_blank_values=True)
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


def stringify_query(query: Dict[str, Any]) -> str:
    return urlencode(query, doseq=True, quote_via=quote)


def parse_content_length(value: str) -> int:
    """
    Parse a Content-Length value.

    Raises:
        ValueError: If the value is not a non-negative integer.
    """
    value = value.strip()
    if not _DIGITS.match(value):
        raise ValueError(f"Invalid Content-Length: {value!r}")
    return int(value)


class Request:
    """
    Request facade bound to one Context.

    Args:
        ctx: The owning Context.
        req: The RawRequest.
        res: The RawResponse of the same exchange.
    """

    def __init__(self, ctx, req, res):
        self.ctx = ctx
        self.req = req
        self.res = res
        self.original_url = req.url
        self.headers_facade = HeaderFacade(req)

        # Memo fields
        self._query_cache: Dict[str, QueryDict] = {}
        self._accept: Optional[Accepts] = None
        self._ip: Optional[str] = None
        self._memoized_url: Optional[SplitResult] = None
        self._memoized_url_key: Optional[str] = None

    @property
    def app(self):
        return self.ctx.app

    @property
    def response(self):
        return self.ctx.response

    # =========================================================================
    # HEADERS
    # =========================================================================

    @property
    def header(self) -> Dict[str, Any]:
        """The raw header dict (lowercase keys)."""
        return self.req.headers

    @header.setter
    def header(self, value: Dict[str, Any]) -> None:
        self.req.headers = {name.lower(): item for name, item in value.items()}

    headers = header

    def get(self, field: str) -> Union[str, List[str]]:
        """
        Get a request header, case-insensitively.

            ctx.get("Content-Type")   # "text/plain"
            ctx.get("Something")      # ""
        """
        return self.headers_facade.get(field)

    # =========================================================================
    # URL
    # =========================================================================

    @property
    def url(self) -> str:
        return self.req.url

    @url.setter
    def url(self, value: str) -> None:
        self.req.url = value

    @property
    def method(self) -> str:
        return self.req.method

    @method.setter
    def method(self, value: str) -> None:
        self.req.method = value

    @property
    def path(self) -> str:
        return split_target(self.url)[1]

    @path.setter
    def path(self, value: str) -> None:
        origin, path, query, fragment = split_target(self.url)
        if path == value:
            return
        self.url = join_target(origin, value, query, fragment)

    @property
    def querystring(self) -> str:
        return split_target(self.url)[2]

    @querystring.setter
    def querystring(self, value: str) -> None:
        value = value[1:] if value.startswith("?") else value
        origin, path, query, fragment = split_target(self.url)
        if query == value:
            return
        self.url = join_target(origin, path, value, fragment)

    @property
    def search(self) -> str:
        querystring = self.querystring
        return f"?{querystring}" if querystring else ""

    @search.setter
    def search(self, value: str) -> None:
        self.querystring = value

    @property
    def query(self) -> QueryDict:
        """
        Parsed query string.

        Parsed once per distinct query string; repeated reads of an
        unchanged URL return the same dict.
        """
        querystring = self.querystring
        if querystring not in self._query_cache:
            self._query_cache[querystring] = parse_query(querystring)
        return self._query_cache[querystring]

    @query.setter
    def query(self, value: Dict[str, Any]) -> None:
        self.querystring = stringify_query(value)

    @property
    def origin(self) -> str:
        return f"{self.protocol}://{self.host}"

    @property
    def href(self) -> str:
        """Full request URL, including protocol and host."""
        if _ABSOLUTE_URL.match(self.original_url):
            return self.original_url
        return self.origin + self.original_url

    @property
    def parsed_url(self) -> Optional[SplitResult]:
        """
        The full request URL, parsed.

        Rebuilt only when the origin or original URL it came from changes.
        None when the URL can't be parsed (e.g. a malformed IPv6 host).
        """
        key = f"{self.origin}{self.original_url or ''}"
        if self._memoized_url_key != key:
            try:
                parsed = urlsplit(key)
                # Accessing port validates it.
                parsed.port
            except ValueError:
                parsed = None
            self._memoized_url = parsed
            self._memoized_url_key = key
        return self._memoized_url

    # =========================================================================
    # HOST & PROTOCOL
    # =========================================================================

    @property
    def host(self) -> str:
        """
        Host with port.

        X-Forwarded-Host when proxy trust is on, then ``:authority`` on
        HTTP/2, then Host.
        """
        host = self.get("X-Forwarded-Host") if self.app.proxy else ""
        if not host:
            if self.req.http_version_major >= 2:
                host = self.get(":authority")
            if not host:
                host = self.get("Host")
        if not host:
            return ""
        return _COMMA_SPLIT.split(host, 1)[0]

    @property
    def hostname(self) -> str:
        """Host without port. IPv6 literals keep their brackets."""
        host = self.host
        if not host:
            return ""
        if host.startswith("["):
            parsed = self.parsed_url
            if parsed is None or not parsed.hostname:
                return ""
            return f"[{parsed.hostname}]"
        return host.split(":", 1)[0]

    @property
    def protocol(self) -> str:
        socket = self.socket
        if socket is not None and socket.encrypted:
            return "https"
        if not self.app.proxy:
            return "http"
        proto = self.get("X-Forwarded-Proto")
        return _COMMA_SPLIT.split(proto, 1)[0] if proto else "http"

    @property
    def secure(self) -> bool:
        return self.protocol == "https"

    @property
    def socket(self):
        return self.req.socket

    # =========================================================================
    # CLIENT ADDRESS
    # =========================================================================

    @property
    def ips(self) -> List[str]:
        """X-Forwarded-For addresses, client first. Empty unless proxy trust is on."""
        value = self.get("X-Forwarded-For")
        if not self.app.proxy or not value:
            return []
        return _COMMA_SPLIT.split(value.strip())

    @property
    def ip(self) -> str:
        if self._ip is None:
            ips = self.ips
            socket = self.socket
            remote = socket.remote_address if socket is not None else ""
            self._ip = (ips[0] if ips else "") or remote or ""
        return self._ip

    @ip.setter
    def ip(self, value: str) -> None:
        self._ip = value

    @property
    def subdomains(self) -> List[str]:
        """
        Subdomains, most significant first.

        With the default offset of 2, "tobi.ferrets.example.com" gives
        ["ferrets", "tobi"].
        """
        hostname = self.hostname
        try:
            ipaddress.ip_address(hostname.strip("[]"))
            return []
        except ValueError:
            pass
        return list(reversed(hostname.split(".")))[self.app.subdomain_offset:]

    # =========================================================================
    # CACHING
    # =========================================================================

    @property
    def fresh(self) -> bool:
        """
        True when the client's cached copy is still valid.

        Only GET and HEAD with a 2xx or 304 status can be fresh.
        """
        if self.method not in ("GET", "HEAD"):
            return False
        status = self.ctx.status
        if 200 <= status < 300 or status == 304:
            return fresh(self.header, self.response.header)
        return False

    @property
    def stale(self) -> bool:
        return not self.fresh

    @property
    def idempotent(self) -> bool:
        return self.method in IDEMPOTENT_METHODS

    # =========================================================================
    # BODY METADATA
    # =========================================================================

    @property
    def charset(self) -> str:
        _, params = parse_content_type(self.get("Content-Type"))
        return params.get("charset", "")

    @property
    def length(self) -> Optional[int]:
        """
        Content-Length as an int, None when absent.

        Raises:
            HTTPError: 400 for a malformed value.
        """
        value = self.get("Content-Length")
        if not value:
            return None
        try:
            return parse_content_length(value)
        except ValueError:
            logger.debug(f"Rejecting malformed Content-Length {value!r}")
            raise HTTPError(400, "Invalid Content-Length")

    @property
    def type(self) -> str:
        """Content-Type without parameters."""
        value = self.get("Content-Type")
        if not value:
            return ""
        return value.split(";", 1)[0]

    # =========================================================================
    # NEGOTIATION
    # =========================================================================

    @property
    def accept(self) -> Accepts:
        if self._accept is None:
            self._accept = Accepts(self.req.headers)
        return self._accept

    @accept.setter
    def accept(self, value: Accepts) -> None:
        self._accept = value

    def accepts(self, *types):
        """
        Pick the best of the offered types for the Accept header.

            # Accept: text/html
            ctx.accepts("html")             # "html"
            ctx.accepts("json", "html")     # "html"
            ctx.accepts("png")              # False
        """
        return self.accept.types(*types)

    def accepts_encodings(self, *encodings):
        return self.accept.encodings(*encodings)

    def accepts_charsets(self, *charsets):
        return self.accept.charsets(*charsets)

    def accepts_languages(self, *languages):
        return self.accept.languages(*languages)

    def is_(self, *types) -> Union[str, bool, None]:
        """
        Check the request body's Content-Type.

        Returns:
            None if the request has no body, False if nothing matches,
            otherwise the matching type.

            # Content-Type: application/json; charset=utf-8
            ctx.is_("json")           # "json"
            ctx.is_("text/*")         # False
            ctx.is_()                 # "application/json"
        """
        if not has_body(self.req.headers):
            return None
        return type_is(self.get("Content-Type"), *types)

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "url": self.url, "header": dict(self.header)}

    def __repr__(self) -> str:
        return f"Request({self.method} {self.url})"
