"""
=============================================================================
HTTP/1.x REQUEST HEAD PARSER
=============================================================================

Turns the bytes up to and including the blank line into a RawRequest.
The body is read separately by the connection, because only the head
says how long it is.

    GET /api/users?page=1 HTTP/1.1\\r\\n        ← request line
    Host: localhost:8080\\r\\n                  ← header fields
    Accept: application/json\\r\\n
    \\r\\n                                      ← end of head

The request target is kept exactly as sent. Splitting it into path and
query is the Request facade's job, so a middleware that rewrites
``ctx.path`` works on the same string the client sent.

=============================================================================
"""

import re
from typing import Dict, List, Optional

from .message import HeaderValue, RawRequest


class HTTPParseError(Exception):
    """
    Raised when a request can't be parsed.

    Carries the status the connection should answer with:
    400 malformed, 405 unknown method, 413/431 too large,
    501 unsupported transfer coding, 505 unsupported version.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class RequestParser:
    """Parses request heads into RawRequest objects."""

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) HTTP/(\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*)$")

    # Headers whose repeats must stay separate values.
    LIST_HEADERS = {"set-cookie"}

    def parse_head(self, data: bytes) -> RawRequest:
        """
        Parse a request head.

        Args:
            data: Bytes of the head, with or without the final blank line.

        Returns:
            A RawRequest with an empty body.

        Raises:
            HTTPParseError: If the head is malformed.
        """
        text = data.decode("latin-1").rstrip("\r\n")
        lines = text.split("\r\n")
        if not lines or not lines[0]:
            raise HTTPParseError("Empty request")

        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        return RawRequest(method=method, url=target, headers=headers, http_version=version)

    def _parse_request_line(self, line: str):
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()
        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)
        if version not in ("1.0", "1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        return method, target, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, HeaderValue]:
        headers: Dict[str, HeaderValue] = {}
        current: Optional[str] = None

        for line in lines:
            if not line:
                continue

            # Obsolete line folding continues the previous field.
            if line[0] in (" ", "\t"):
                if current is not None and isinstance(headers[current], str):
                    headers[current] = f"{headers[current]} {line.strip()}"
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name = match.group(1).lower()
            value = match.group(2).strip()
            current = name

            if name in self.LIST_HEADERS:
                existing = headers.get(name)
                headers[name] = (existing if isinstance(existing, list) else []) + [value]
            elif name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value

        return headers


def content_length_of(request: RawRequest) -> int:
    """
    Body length announced by a request head.

    Raises:
        HTTPParseError: For a malformed or conflicting Content-Length.
    """
    value = request.headers.get("content-length")
    if value is None:
        return 0
    if isinstance(value, list) or not value.isdigit():
        # Repeated lengths arrive comma-joined; anything but digits is bogus.
        values = {item.strip() for item in str(value).split(",")}
        if len(values) != 1 or not next(iter(values)).isdigit():
            raise HTTPParseError(f"Invalid Content-Length: {value!r}")
        value = values.pop()
    return int(value)
