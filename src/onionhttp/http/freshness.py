"""
=============================================================================
CONDITIONAL REQUEST FRESHNESS
=============================================================================

Decides whether the client's cached copy is still good, i.e. whether a
304 Not Modified would be a correct answer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Request: If-None-Match: "abc123"     Response: ETag: "abc123"     │
    │            If-Modified-Since: <date>             Last-Modified: ... │
    │                                                                     │
    │   fresh  ⇔  at least one conditional header is present              │
    │          ∧  no "Cache-Control: no-cache" on the request             │
    │          ∧  If-None-Match (unless "*") lists the response ETag      │
    │          ∧  If-Modified-Since ≥ Last-Modified                       │
    └─────────────────────────────────────────────────────────────────────┘

Weak and strong ETags compare equal here (W/"x" matches "x"), which is
the weak comparison RFC 7232 prescribes for If-None-Match.

=============================================================================
"""

import re
from typing import Dict, List, Union

from .dates import parse_http_date


_NO_CACHE = re.compile(r"(?:^|,)\s*?no-cache\s*?(?:,|$)")

Headers = Dict[str, Union[str, List[str]]]


def _single(headers: Headers, name: str) -> str:
    value = headers.get(name)
    if isinstance(value, list):
        return ", ".join(value)
    return value or ""


def parse_token_list(value: str) -> List[str]:
    """Split a comma-separated header into trimmed, non-empty tokens."""
    return [token.strip() for token in value.split(",") if token.strip()]


def fresh(request_headers: Headers, response_headers: Headers) -> bool:
    """
    Check whether a response is fresh for a conditional request.

    Args:
        request_headers: Request headers, lowercase keys.
        response_headers: Response headers, lowercase keys.

    Returns:
        True when the client's cached representation can be reused.
    """
    modified_since = _single(request_headers, "if-modified-since")
    none_match = _single(request_headers, "if-none-match")

    if not modified_since and not none_match:
        return False

    cache_control = _single(request_headers, "cache-control")
    if cache_control and _NO_CACHE.search(cache_control):
        return False

    if none_match and none_match != "*":
        etag = _single(response_headers, "etag")
        if not etag:
            return False
        matches = any(
            token == etag or token == f"W/{etag}" or f"W/{token}" == etag
            for token in parse_token_list(none_match)
        )
        if not matches:
            return False

    if modified_since:
        last_modified = parse_http_date(_single(response_headers, "last-modified"))
        since = parse_http_date(modified_since)
        if last_modified is None or since is None or last_modified > since:
            return False

    return True
