"""
=============================================================================
HEADER FACADE
=============================================================================

Case-insensitive get/set/append/remove over a raw message's headers.

Both RawRequest and RawResponse expose the same small header API
(get_header / set_header / remove_header / has_header / get_headers and
a ``headers_sent`` flag), so one facade serves both sides.

Rules:

    get("X-Missing")          → ""       (never None)
    get("Referer")            → Referrer or Referer, whichever is present
    set("X-Num", 5)           → "5"      (values are always strings)
    set("Set-Cookie", [a, b]) → ["a", "b"]
    set({"A": 1, "B": 2})     → sets both
    anything, after the head was sent → silently ignored

=============================================================================
"""

from collections.abc import Mapping
from typing import Any, Dict, List, Union


HeaderValue = Union[str, List[str]]

_REFERRER_NAMES = ("referrer", "referer")


def _coerce(value: Any) -> HeaderValue:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return str(value)


class HeaderFacade:
    """
    Header accessor bound to one raw request or response.

    Args:
        raw: The RawRequest or RawResponse whose headers are exposed.
    """

    def __init__(self, raw):
        self._raw = raw

    @property
    def sent(self) -> bool:
        return bool(self._raw.headers_sent)

    def get(self, field: str) -> HeaderValue:
        """
        Get a header value.

        Args:
            field: Header name, any case. Referer and Referrer are treated
                   as the same header, Referrer winning when both exist.

        Returns:
            The value (a list for multi-valued headers), or "" if absent.
        """
        name = field.lower()
        if name in _REFERRER_NAMES:
            for alias in _REFERRER_NAMES:
                value = self._raw.get_header(alias)
                if value:
                    return value
            return ""

        value = self._raw.get_header(name)
        return value if value else ""

    def has(self, field: str) -> bool:
        return self._raw.has_header(field)

    def set(self, field: Union[str, Mapping], value: Any = None) -> None:
        """
        Set one header, or many from a mapping.

            headers.set("Cache-Control", "no-cache")
            headers.set({"X-A": "1", "X-B": "2"})
        """
        if self.sent:
            return

        if isinstance(field, Mapping):
            for name, item in field.items():
                self.set(name, item)
            return

        self._raw.set_header(field, _coerce(value))

    def append(self, field: str, value: Any) -> None:
        """
        Add a value to a header, keeping what is already there.

            headers.append("Link", "<http://a/>")
            headers.append("Link", "<http://b/>")
            # Link: ["<http://a/>", "<http://b/>"]
        """
        previous = self.get(field)
        if previous:
            head = previous if isinstance(previous, list) else [previous]
            tail = list(value) if isinstance(value, (list, tuple)) else [value]
            value = head + tail
        self.set(field, value)

    def remove(self, field: str) -> None:
        if self.sent:
            return
        self._raw.remove_header(field)

    def to_dict(self) -> Dict[str, HeaderValue]:
        """Snapshot of all headers, keyed by lowercase name."""
        return self._raw.get_headers()
