"""
=============================================================================
ERRORS AND THE ERROR CHANNEL
=============================================================================

Every failure that escapes the middleware onion ends up in one place:
``ctx.onerror(err)``. That method answers the client and then reports the
error on the application's ErrorChannel.

    middleware raises ──► onion unwinds ──► ctx.onerror(err)
                                              │
                             ┌────────────────┴────────────────┐
                             ▼                                 ▼
                    error response to client          ErrorChannel.emit()
                    (status + safe message)           (subscribers, or the
                                                       default logger)

=============================================================================
EXPOSED VS. INTERNAL ERRORS
=============================================================================

An HTTPError carries an ``expose`` flag. Exposed errors (4xx by default)
are the client's fault, so their message is written to the response body
and they are not logged. Everything else is a server bug: the client only
sees the status phrase ("Internal Server Error") and the full traceback
goes to the log.

=============================================================================
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .http.status_codes import is_known_status, status_message


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class NextCalledMultipleTimesError(RuntimeError):
    """A middleware called ``next()`` more than once."""

    def __init__(self, message: str = "next() called multiple times"):
        super().__init__(message)


class HTTPError(Exception):
    """
    An error that maps to an HTTP status.

    Attributes:
        status: HTTP status code for the response.
        expose: Whether ``message`` may be shown to the client.
        headers: Extra response headers to send with the error.
    """

    def __init__(
        self,
        status: int = 500,
        message: Optional[str] = None,
        expose: Optional[bool] = None,
        headers: Optional[Dict[str, Any]] = None,
        **properties,
    ):
        self.status = status
        self.message = message or status_message(status) or "Error"
        self.expose = expose if expose is not None else status < 500
        self.headers = headers
        for name, value in properties.items():
            setattr(self, name, value)
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.status

    def __repr__(self) -> str:
        return f"HTTPError({self.status}, {self.message!r})"


def create_error(*args, **properties) -> HTTPError:
    """
    Build an HTTPError from loosely ordered arguments.

        create_error(404)
        create_error(400, "name required")
        create_error("boom")                     # 500
        create_error(403, err)                   # wraps an exception
        create_error(401, "login", user="bob")   # extra attributes

    Args:
        args: Any of a status code, a message string or an exception.
        properties: Extra attributes (``expose``, ``headers``, ...).

    Returns:
        The new error.
    """
    status = 500
    message = None
    cause = None
    for arg in args:
        if isinstance(arg, bool):
            continue
        if isinstance(arg, int):
            status = arg
        elif isinstance(arg, str):
            message = arg
        elif isinstance(arg, BaseException):
            cause = arg
            message = message or str(arg)

    if not 400 <= status < 600 or not is_known_status(status):
        status = 500

    error = HTTPError(status, message, **properties)
    if cause is not None:
        error.__cause__ = cause
    return error


def error_status(error: BaseException) -> Optional[int]:
    """The status an error asks for: ``status``, else ``status_code``."""
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)
    return status


# =============================================================================
# ERROR CHANNEL
# =============================================================================

ErrorHandler = Callable[[BaseException, Any], Any]


class ErrorChannel:
    """
    Where request errors are reported.

    With no subscribers, the default handler logs the error. Subscribing
    a handler replaces that default completely.

    Args:
        silent: Suppress the default handler's logging.
    """

    def __init__(self, silent: bool = False):
        self.silent = silent
        self._handlers: List[ErrorHandler] = []

    def subscribe(self, handler: ErrorHandler) -> None:
        if not callable(handler):
            raise TypeError("error handler must be callable")
        self._handlers.append(handler)

    def unsubscribe(self, handler: ErrorHandler) -> None:
        self._handlers.remove(handler)

    @property
    def listener_count(self) -> int:
        return len(self._handlers)

    def emit(self, error: BaseException, ctx: Any = None) -> None:
        """Deliver an error to the subscribers, or to the default handler."""
        if not self._handlers:
            self.default_handler(error)
            return
        for handler in list(self._handlers):
            handler(error, ctx)

    def default_handler(self, error: Any) -> None:
        """
        Log an error unless it is a 404, marked exposable, or we're silent.

        Raises:
            TypeError: If ``error`` is not an exception.
        """
        if not isinstance(error, BaseException):
            raise TypeError(f"non-error thrown: {error!r}")

        if error_status(error) == 404 or getattr(error, "expose", False):
            return
        if self.silent:
            return

        logger.error(f"Unhandled error: {error!r}", exc_info=error)
