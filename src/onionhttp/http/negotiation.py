"""
=============================================================================
CONTENT NEGOTIATION
=============================================================================

Answers two kinds of question about a request:

1. "Which of these can the client take?"  (Accept, Accept-Encoding,
   Accept-Charset, Accept-Language)
2. "Is the body one of these types?"        (Content-Type)

=============================================================================
HOW A PREFERENCE IS PICKED
=============================================================================

    Accept: text/html;q=0.9, application/json, */*;q=0.1

    offered: ["text/html", "application/json", "image/png"]

    ┌──────────────────┬──────────────────────┬─────┬─────────────┐
    │ offered          │ best matching range  │  q  │ specificity │
    ├──────────────────┼──────────────────────┼─────┼─────────────┤
    │ text/html        │ text/html            │ 0.9 │ type+sub    │
    │ application/json │ application/json     │ 1.0 │ type+sub    │
    │ image/png        │ */*                  │ 0.1 │ wildcard    │
    └──────────────────┴──────────────────────┴─────┴─────────────┘

    result: application/json, text/html, image/png

Each offered value is scored against every range in the header. The
range with the highest specificity wins (then higher q, then the later
entry). The offered values are then sorted by q, specificity, the
header position of their winning range and finally the order they were
offered in. Anything with q=0 is dropped.

=============================================================================
INTERVIEW INSIGHT
=============================================================================

Q: "What if there's no Accept header at all?"
A: "Then the client accepts anything (*/*). An Accept header that is
   present but empty is different: it accepts nothing. Accept-Encoding is
   the odd one out: with no header only 'identity' is acceptable."

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from . import mime_types


# =============================================================================
# HEADER PARSING
# =============================================================================

def split_quoted(value: str, delimiter: str) -> List[str]:
    """Split on a delimiter, ignoring delimiters inside double quotes."""
    parts = []
    start = 0
    in_quotes = False
    for index, char in enumerate(value):
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            parts.append(value[start:index])
            start = index + 1
    parts.append(value[start:])
    return parts


def parse_params(segments: Iterable[str]) -> Dict[str, str]:
    """Parse ``key=value`` segments into a dict, unquoting values."""
    params = {}
    for segment in segments:
        if "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        params[key.strip().lower()] = value
    return params


def _quality(params: Dict[str, str]) -> float:
    raw = params.pop("q", None)
    if raw is None:
        return 1.0
    try:
        return float(raw)
    except ValueError:
        return 0.0


@dataclass
class AcceptEntry:
    """One comma-separated entry of an Accept-* header."""
    value: str
    q: float = 1.0
    index: int = 0
    params: Dict[str, str] = field(default_factory=dict)

    # Media ranges only
    type: str = ""
    subtype: str = ""

    # Languages only
    prefix: str = ""


@dataclass
class _Priority:
    q: float
    s: int
    o: int
    i: int


def _parse_entries(header: str) -> List[Tuple[str, Dict[str, str], float]]:
    entries = []
    for raw in split_quoted(header, ","):
        raw = raw.strip()
        if not raw:
            continue
        segments = split_quoted(raw, ";")
        params = parse_params(segments[1:])
        q = _quality(params)
        entries.append((segments[0].strip(), params, q))
    return entries


def parse_accept(header: str) -> List[AcceptEntry]:
    """Parse an Accept header into media ranges."""
    ranges = []
    for value, params, q in _parse_entries(header):
        if "/" not in value:
            continue
        type_, subtype = value.split("/", 1)
        ranges.append(AcceptEntry(
            value=value, q=q, index=len(ranges), params=params,
            type=type_.strip(), subtype=subtype.strip(),
        ))
    return ranges


def parse_accept_simple(header: str) -> List[AcceptEntry]:
    """Parse Accept-Charset / Accept-Encoding style headers."""
    return [
        AcceptEntry(value=value, q=q, index=index, params=params)
        for index, (value, params, q) in enumerate(_parse_entries(header))
    ]


def parse_accept_encoding(header: str) -> List[AcceptEntry]:
    """
    Parse Accept-Encoding.

    ``identity`` is acceptable unless the header says otherwise, at the
    lowest quality the header mentions.
    """
    entries = parse_accept_simple(header)
    has_identity = any(entry.value.lower() == "identity" for entry in entries)
    if not has_identity:
        min_quality = min([entry.q or 1.0 for entry in entries] + [1.0])
        entries.append(AcceptEntry(value="identity", q=min_quality, index=len(entries)))
    return entries


def parse_accept_language(header: str) -> List[AcceptEntry]:
    entries = parse_accept_simple(header)
    for entry in entries:
        entry.prefix = entry.value.split("-", 1)[0]
    return entries


# =============================================================================
# MATCHING
# =============================================================================

def _specify_media(offered: str, spec: AcceptEntry) -> Optional[int]:
    parsed = parse_accept(offered)
    if not parsed:
        return None
    provided = parsed[0]

    s = 0
    if spec.type.lower() == provided.type.lower():
        s |= 4
    elif spec.type != "*":
        return None

    if spec.subtype.lower() == provided.subtype.lower():
        s |= 2
    elif spec.subtype != "*":
        return None

    if spec.params:
        for key, value in spec.params.items():
            if value != "*" and value.lower() != provided.params.get(key, "").lower():
                return None
        s |= 1

    return s


def _specify_simple(offered: str, spec: AcceptEntry) -> Optional[int]:
    if spec.value.lower() == offered.lower():
        return 1
    if spec.value != "*":
        return None
    return 0


def _specify_language(offered: str, spec: AcceptEntry) -> Optional[int]:
    full = offered.lower()
    prefix = full.split("-", 1)[0]
    if spec.value.lower() == full:
        return 4
    if spec.prefix.lower() == full:
        return 2
    if spec.value.lower() == prefix:
        return 1
    if spec.value != "*":
        return None
    return 0


def _preferred(
    accepted: List[AcceptEntry],
    offered: Optional[List[str]],
    specify: Callable[[str, AcceptEntry], Optional[int]],
) -> List[str]:
    if offered is None:
        ranked = sorted(
            (entry for entry in accepted if entry.q > 0),
            key=lambda entry: (-entry.q, entry.index),
        )
        return [entry.value for entry in ranked]

    priorities = []
    for index, value in enumerate(offered):
        best = _Priority(q=0.0, s=0, o=-1, i=index)
        for spec in accepted:
            s = specify(value, spec)
            if s is None:
                continue
            if (s, spec.q, spec.index) > (best.s, best.q, best.o):
                best = _Priority(q=spec.q, s=s, o=spec.index, i=index)
        priorities.append(best)

    ranked = sorted(
        (p for p in priorities if p.q > 0),
        key=lambda p: (-p.q, -p.s, p.o, p.i),
    )
    return [offered[p.i] for p in ranked]


def _valid_mime(value: Optional[str]) -> bool:
    return isinstance(value, str) and re.match(r"^[^/\s]+/[^/\s]+$", value) is not None


class Negotiator:
    """
    Ranks offered values against a request's Accept-* headers.

    Args:
        headers: Request headers keyed by lowercase name.
    """

    def __init__(self, headers: Dict[str, Union[str, List[str]]]):
        self.headers = headers

    def _header(self, name: str, default: str) -> str:
        value = self.headers.get(name)
        if value is None:
            return default
        return ", ".join(value) if isinstance(value, list) else value

    def media_types(self, offered: Optional[List[str]] = None) -> List[str]:
        accepted = parse_accept(self._header("accept", "*/*"))
        return _preferred(accepted, offered, _specify_media)

    def encodings(self, offered: Optional[List[str]] = None) -> List[str]:
        accepted = parse_accept_encoding(self._header("accept-encoding", ""))
        return _preferred(accepted, offered, _specify_simple)

    def charsets(self, offered: Optional[List[str]] = None) -> List[str]:
        accepted = parse_accept_simple(self._header("accept-charset", "*"))
        return _preferred(accepted, offered, _specify_simple)

    def languages(self, offered: Optional[List[str]] = None) -> List[str]:
        accepted = parse_accept_language(self._header("accept-language", "*"))
        return _preferred(accepted, offered, _specify_language)


def _flatten(values: tuple) -> List[str]:
    if len(values) == 1 and isinstance(values[0], (list, tuple)):
        return list(values[0])
    return list(values)


class Accepts:
    """
    Request-facing negotiation helpers.

    Every method takes the offered values either as arguments or as one
    list. With nothing offered it returns the full ranked list from the
    header. Otherwise it returns the best offered value, or False when
    none is acceptable.

        accepts = Accepts({"accept": "application/json"})
        accepts.types("html", "json")   # "json"
        accepts.types("html")           # False
    """

    def __init__(self, headers: Dict[str, Union[str, List[str]]]):
        self.headers = headers
        self.negotiator = Negotiator(headers)

    def types(self, *types) -> Union[str, List[str], bool]:
        offered = _flatten(types)
        if not offered:
            return self.negotiator.media_types()

        if not self.headers.get("accept"):
            return offered[0]

        mimes = [mime_types.extension_to_mime(value) for value in offered]
        ranked = self.negotiator.media_types([m for m in mimes if _valid_mime(m)])
        if not ranked:
            return False
        return offered[mimes.index(ranked[0])]

    def encodings(self, *encodings) -> Union[str, List[str], bool]:
        offered = _flatten(encodings)
        if not offered:
            return self.negotiator.encodings()
        ranked = self.negotiator.encodings(offered)
        return ranked[0] if ranked else False

    def charsets(self, *charsets) -> Union[str, List[str], bool]:
        offered = _flatten(charsets)
        if not offered:
            return self.negotiator.charsets()
        if not self.headers.get("accept-charset"):
            return offered[0]
        ranked = self.negotiator.charsets(offered)
        return ranked[0] if ranked else False

    def languages(self, *languages) -> Union[str, List[str], bool]:
        offered = _flatten(languages)
        if not offered:
            return self.negotiator.languages()
        if not self.headers.get("accept-language"):
            return offered[0]
        ranked = self.negotiator.languages(offered)
        return ranked[0] if ranked else False


# =============================================================================
# CONTENT-TYPE MATCHING
# =============================================================================

def parse_content_type(value: str) -> Tuple[str, Dict[str, str]]:
    """
    Split a Content-Type into its lowercase MIME type and parameters.

        >>> parse_content_type('text/html; Charset="UTF-8"')
        ('text/html', {'charset': 'UTF-8'})
    """
    if not value:
        return "", {}
    segments = split_quoted(value, ";")
    return segments[0].strip().lower(), parse_params(segments[1:])


def normalize_type(value: str) -> Optional[str]:
    """Expand the shorthand accepted by type_is() into a MIME pattern."""
    if value == "urlencoded":
        return "application/x-www-form-urlencoded"
    if value == "multipart":
        return "multipart/*"
    if value.startswith("+"):
        return "*/*" + value
    return value if "/" in value else mime_types.lookup(value)


def mime_match(expected: Optional[str], actual: str) -> bool:
    """
    Check a MIME type against a pattern with ``*`` and ``*+suffix`` wildcards.

        mime_match("application/*", "application/json")    # True
        mime_match("*/*+json", "application/vnd.api+json")  # True
    """
    if not expected:
        return False

    expected_parts = expected.split("/")
    actual_parts = actual.split("/")
    if len(expected_parts) != 2 or len(actual_parts) != 2:
        return False

    if expected_parts[0] != "*" and expected_parts[0] != actual_parts[0]:
        return False

    if expected_parts[1].startswith("*+"):
        suffix = expected_parts[1][1:]
        return len(expected_parts[1]) <= len(actual_parts[1]) + 1 and actual_parts[1].endswith(suffix)

    if expected_parts[1] != "*" and expected_parts[1] != actual_parts[1]:
        return False

    return True


def type_is(value: Optional[str], *types) -> Union[str, bool]:
    """
    Match a Content-Type value against type names.

    Args:
        value: Raw Content-Type header value.
        types: Extensions, MIME types or patterns (``"json"``,
               ``"text/*"``, ``"+json"``, ``"urlencoded"``).

    Returns:
        The matching entry from ``types`` (or the actual MIME type for
        wildcard patterns), the MIME type itself when no types are given,
        or False.
    """
    mime, _ = parse_content_type(value or "")
    if not _valid_mime(mime):
        return False

    offered = _flatten(types)
    if not offered:
        return mime

    for candidate in offered:
        if mime_match(normalize_type(candidate), mime):
            if candidate.startswith("+") or "*" in candidate:
                return mime
            return candidate
    return False


def has_body(headers: Dict[str, Union[str, List[str]]]) -> bool:
    """A request has a body if it declares Transfer-Encoding or a numeric Content-Length."""
    if headers.get("transfer-encoding") is not None:
        return True
    length = headers.get("content-length")
    if length is None or isinstance(length, list):
        return False
    try:
        float(length)
    except ValueError:
        return False
    return True
