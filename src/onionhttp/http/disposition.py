"""
=============================================================================
CONTENT-DISPOSITION (RFC 6266)
=============================================================================

Builds the header that tells a browser to download a response:

    Content-Disposition: attachment; filename="report.pdf"

Names outside ISO-8859-1 need two parameters because older clients only
understand the quoted ``filename``:

    Content-Disposition: attachment; filename="? rates.pdf";
                         filename*=UTF-8''%E2%82%AC%20rates.pdf

=============================================================================
"""

import re
from pathlib import PurePath
from typing import Dict, Optional, Union
from urllib.parse import quote


_TEXT = re.compile(r"^[\x20-\x7e\x80-\xff]+$")
_NON_LATIN1 = re.compile(r"[^\x20-\x7e\xa0-\xff]")
_HEX_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")
_QUOTE = re.compile(r'([\\"])')


def _basename(path: str) -> str:
    # Handle both separators regardless of platform.
    return PurePath(path.replace("\\", "/")).name


def _qstring(value: str) -> str:
    return '"' + _QUOTE.sub(r"\\\1", value) + '"'


def _ustring(value: str) -> str:
    return "UTF-8''" + quote(value, safe="!")


def _params(filename: Optional[str], fallback: Union[bool, str]) -> Dict[str, str]:
    if filename is None:
        return {}

    if isinstance(fallback, str) and _NON_LATIN1.search(fallback):
        raise TypeError("fallback must be ISO-8859-1 string")

    name = _basename(filename)
    is_quoted_string = _TEXT.match(name) is not None

    if isinstance(fallback, str):
        fallback_name = _basename(fallback)
    elif fallback:
        fallback_name = _NON_LATIN1.sub("?", name)
    else:
        fallback_name = None
    has_fallback = fallback_name is not None and fallback_name != name

    params = {}
    if has_fallback or not is_quoted_string or _HEX_ESCAPE.search(name):
        params["filename*"] = name
    if is_quoted_string or has_fallback:
        params["filename"] = fallback_name if has_fallback else name
    return params


def content_disposition(
    filename: Optional[str] = None,
    type: str = "attachment",
    fallback: Union[bool, str] = True,
) -> str:
    """
    Build a Content-Disposition header value.

    Args:
        filename: File name offered to the client. Directory parts are
                  dropped.
        type: Disposition type, usually ``attachment`` or ``inline``.
        fallback: True to derive an ISO-8859-1 ``filename`` from a
                  Unicode name, a string to use as that fallback, or
                  False to skip it.

    Returns:
        The header value.
    """
    value = type.lower()
    params = _params(filename, fallback)
    for key in sorted(params):
        encoded = _ustring(params[key]) if key.endswith("*") else _qstring(params[key])
        value += f"; {key}={encoded}"
    return value
