"""
=============================================================================
HTTP BUILDING BLOCKS
=============================================================================

Protocol helpers the facades are made of:

    status_codes   status enum, reason phrases, empty/redirect sets
    mime_types     extension → Content-Type table
    headers        case-insensitive header access over raw messages
    negotiation    Accept* parsing and matching, Content-Type checks
    freshness      conditional GET (ETag / Last-Modified)
    disposition    Content-Disposition (RFC 6266)
    dates          IMF-fixdate formatting and parsing
    body           response body variants
    request        Request facade
    response       Response facade

Only the leaf modules are re-exported here; import the facades from their
own modules.

=============================================================================
"""

from .status_codes import HTTPStatus, EMPTY_STATUSES, REDIRECT_STATUSES, status_message
from .mime_types import content_type, lookup

__all__ = [
    "HTTPStatus",
    "EMPTY_STATUSES",
    "REDIRECT_STATUSES",
    "status_message",
    "content_type",
    "lookup",
]
