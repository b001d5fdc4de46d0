"""
=============================================================================
RESPONSE BODY VARIANTS
=============================================================================

Whatever middleware assigns to ``ctx.body`` is classified once, at
assignment time, into one of five shapes. The shape decides the default
Content-Type, whether a Content-Length can be known up front, and how the
finalizer writes it out.

    ┌──────────────┬────────────────────────┬──────────┬──────────────────┐
    │ Variant      │ Assigned value         │ Type     │ Length           │
    ├──────────────┼────────────────────────┼──────────┼──────────────────┤
    │ EmptyBody    │ None                   │ (none)   │ (none)           │
    │ TextBody     │ str                    │ html or  │ UTF-8 byte count │
    │              │                        │ text     │                  │
    │ BytesBody    │ bytes / bytearray /    │ bin      │ len(value)       │
    │              │ memoryview             │          │                  │
    │ StreamBody   │ file-like, generator,  │ bin      │ unknown          │
    │              │ async iterable         │          │                  │
    │ JsonBody     │ anything else          │ json     │ serialized size  │
    └──────────────┴────────────────────────┴──────────┴──────────────────┘

A string is HTML when its first non-whitespace character is "<".

=============================================================================
"""

import asyncio
import inspect
import io
import json
import logging
import re
from typing import Any, AsyncIterator, Optional


logger = logging.getLogger(__name__)


HTML_PATTERN = re.compile(r"^\s*<")

STREAM_CHUNK_SIZE = 64 * 1024

# Close tasks scheduled by StreamBody.release(), held until they finish
_pending_closes: set = set()


class Body:
    """Base variant. ``kind`` is the tag; ``value`` is what was assigned."""

    kind = "empty"
    default_type: Optional[str] = None

    def __init__(self, value: Any = None):
        self.value = value

    def byte_length(self) -> Optional[int]:
        return None

    def serialize(self) -> bytes:
        return b""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"


class EmptyBody(Body):
    kind = "empty"


class TextBody(Body):
    kind = "text"

    @property
    def default_type(self) -> str:
        return "html" if HTML_PATTERN.match(self.value) else "text"

    def byte_length(self) -> int:
        return len(self.serialize())

    def serialize(self) -> bytes:
        return self.value.encode("utf-8")


class BytesBody(Body):
    kind = "bytes"
    default_type = "bin"

    def byte_length(self) -> int:
        return len(self.value)

    def serialize(self) -> bytes:
        return bytes(self.value)


class JsonBody(Body):
    kind = "json"
    default_type = "json"

    def byte_length(self) -> int:
        return len(self.serialize())

    def serialize(self) -> bytes:
        return json.dumps(self.value, ensure_ascii=False).encode("utf-8")


class StreamBody(Body):
    """
    A body produced incrementally.

    Accepts binary or text file objects, sync iterators/generators and
    async iterables. Blocking ``read()`` calls run in a worker thread so
    the event loop keeps serving other connections.
    """

    kind = "stream"
    default_type = "bin"

    def __init__(self, value: Any = None):
        super().__init__(value)
        self.closed = False

    async def iter_chunks(self, chunk_size: int = STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
        source = self.value

        if hasattr(source, "__aiter__"):
            async for chunk in source:
                yield _to_bytes(chunk)
        elif callable(getattr(source, "read", None)):
            read = source.read
            while True:
                if inspect.iscoroutinefunction(read):
                    chunk = await read(chunk_size)
                else:
                    chunk = await asyncio.to_thread(read, chunk_size)
                if not chunk:
                    break
                yield _to_bytes(chunk)
        else:
            for chunk in source:
                yield _to_bytes(chunk)

    async def close(self) -> None:
        """Release the underlying source. Later calls do nothing."""
        if self.closed:
            return
        self.closed = True
        source = self.value
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
            return
        close = getattr(source, "close", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result

    def release(self) -> None:
        """
        Close the source without awaiting.

        Used from finish callbacks and when the body is replaced, where the
        stream was never piped. Sync ``close()`` runs inline; anything
        awaitable is scheduled on the running loop.
        """
        if self.closed:
            return
        source = self.value
        close = getattr(source, "close", None)
        if getattr(source, "aclose", None) is None and not inspect.iscoroutinefunction(close):
            self.closed = True
            if close is not None:
                close()
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, leaving {type(source).__name__} open")
            return
        task = loop.create_task(self.close())
        _pending_closes.add(task)
        task.add_done_callback(_close_done)


def _close_done(task: "asyncio.Task") -> None:
    _pending_closes.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Stream close failed: {task.exception()!r}")


def _to_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


def is_stream(value: Any) -> bool:
    """Check whether a value should be sent as a stream."""
    if isinstance(value, (str, bytes, bytearray, memoryview, dict, list, tuple)):
        return False
    if isinstance(value, io.IOBase):
        return True
    if inspect.isgenerator(value) or inspect.isasyncgen(value):
        return True
    if hasattr(value, "__aiter__"):
        return True
    return callable(getattr(value, "read", None))


def wrap_body(value: Any) -> Body:
    """Classify an assigned value into its body variant."""
    if value is None:
        return EmptyBody()
    if isinstance(value, str):
        return TextBody(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BytesBody(value)
    if is_stream(value):
        return StreamBody(value)
    return JsonBody(value)
