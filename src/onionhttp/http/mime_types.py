"""
=============================================================================
MIME TYPE LOOKUP
=============================================================================

Maps the shorthand people actually type (``"json"``, ``".png"``,
``"report.pdf"``) to the MIME types that go on the wire.

=============================================================================
THREE FORMS OF A TYPE
=============================================================================

    ┌───────────────────┬──────────────────────────────────────────────┐
    │ Input             │ content_type(input)                          │
    ├───────────────────┼──────────────────────────────────────────────┤
    │ "html"            │ "text/html; charset=utf-8"                   │
    │ ".png"            │ "image/png"                                  │
    │ "file.json"       │ "application/json; charset=utf-8"            │
    │ "text/plain"      │ "text/plain; charset=utf-8"                  │
    │ "image/x-custom"  │ "image/x-custom"   (kept verbatim)           │
    │ "nope"            │ None                                         │
    └───────────────────┴──────────────────────────────────────────────┘

Anything containing a "/" is already a MIME type and is trusted as given.
Everything else is treated as a file extension.

=============================================================================
INTERVIEW INSIGHT: CHARSET PARAMETERS
=============================================================================

Q: "Why add charset=utf-8 to text/html but not to image/png?"
A: "Charset only means something for textual formats. Without it,
   HTTP/1.1 historically defaulted text/* to ISO-8859-1, which mangles
   any non-ASCII character. JSON is defined as UTF-8, but adding the
   parameter keeps older clients honest."

=============================================================================
"""

from pathlib import PurePosixPath
from typing import Optional


# =============================================================================
# EXTENSION TABLE
# =============================================================================

MIME_TYPES = {
    # Text & markup
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "mjs": "application/javascript",
    "json": "application/json",
    "map": "application/json",
    "xml": "application/xml",
    "txt": "text/plain",
    "text": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "yaml": "text/yaml",
    "yml": "text/yaml",

    # Images
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    "webp": "image/webp",
    "avif": "image/avif",
    "bmp": "image/bmp",

    # Fonts
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
    "otf": "font/otf",

    # Audio / video
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "mp4": "video/mp4",
    "webm": "video/webm",

    # Documents & archives
    "pdf": "application/pdf",
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "wasm": "application/wasm",

    # Generic binary
    "bin": "application/octet-stream",
    "exe": "application/octet-stream",
    "dll": "application/octet-stream",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# Non-text types that are still UTF-8 by definition.
_UTF8_APPLICATION_TYPES = frozenset({
    "application/json",
    "application/javascript",
})


def lookup(name: str) -> Optional[str]:
    """
    Look up a MIME type by extension or file name.

    Accepts ``"json"``, ``".json"`` and ``"data/file.json"`` alike.

    Args:
        name: Extension (with or without the dot) or a path.

    Returns:
        The MIME type, or None when the extension is unknown.
    """
    if not name or not isinstance(name, str):
        return None

    # Prefixing "x." turns a bare extension into a file name.
    suffix = PurePosixPath("x." + name).suffix
    return MIME_TYPES.get(suffix[1:].lower())


def charset(mime_type: str) -> Optional[str]:
    """Get the default charset for a MIME type, or None."""
    essence = mime_type.split(";", 1)[0].strip().lower()
    if essence.startswith("text/") or essence in _UTF8_APPLICATION_TYPES:
        return "utf-8"
    return None


def content_type(value: str) -> Optional[str]:
    """
    Resolve a short name, extension or MIME type to a full Content-Type.

    Args:
        value: ``"json"``, ``".png"``, ``"text/html"`` ...

    Returns:
        A Content-Type header value, or None when it cannot be resolved.
    """
    if not value or not isinstance(value, str):
        return None

    mime = value if "/" in value else lookup(value)
    if not mime:
        return None

    if "charset" not in mime:
        cs = charset(mime)
        if cs:
            mime = f"{mime}; charset={cs}"
    return mime


def extension_to_mime(value: str) -> Optional[str]:
    """Map an extension to its MIME type, passing full MIME types through."""
    return value if "/" in value else lookup(value)
