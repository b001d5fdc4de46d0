"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

One log line per request, written once the onion has unwound and the
final status is known.

    203.0.113.7 - - [19/Oct/2026:10:00:00 +0000] "GET /users" 200 512 3.21ms

=============================================================================
WHERE IT GOES IN THE STACK
=============================================================================

First. Everything registered after it runs inside its ``await next()``,
so the timing covers all of them and requests rejected further in are
still logged.

    app.use(LoggingMiddleware())      # outermost
    app.use(auth)
    app.use(handler)

=============================================================================
INTERVIEW QUESTIONS ABOUT LOGGING
=============================================================================

Q: "How would you correlate one request across several services?"
A: "Accept an incoming X-Request-ID or mint one, put it on the response
   and on every log line, and forward it on outbound calls."

Q: "What should you NOT log?"
A: "Credentials, tokens, personal data. Log an allow-list of fields,
   which is why the entry below is a fixed dataclass and not a dump of
   the request headers."

=============================================================================
"""

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

from .compose import Middleware, Next


# Namespaced so deployments can route access logs separately:
#   logging.getLogger("onionhttp.access").addHandler(file_handler)
logger = logging.getLogger("onionhttp.access")

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestLog:
    """
    Structured log entry for one request.

    Fields:
        request_id:     correlation id, also sent as X-Request-ID
        method, path:   what was asked for
        query:          raw query string, "" when absent
        client_ip:      ctx.ip (honours proxy trust)
        user_agent:     "-" when absent
        status_code:    final response status
        content_length: response length if known, else 0
        duration_ms:    time spent inside the middleware
        timestamp:      Apache-style local time
    """
    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        """Apache combined-style line."""
        target = f"{self.path}?{self.query}" if self.query else self.path
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {target}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging middleware.

    Args:
        log_format: "text" (Apache style) or "json".
        include_request_id: Set X-Request-ID on the response and
                            ``ctx.state["request_id"]``. An id sent by the
                            client is reused.
        log_level: Level for access lines.
        skip_paths: Paths that are never logged, e.g. health checks.

    Usage:
        app.use(LoggingMiddleware(log_format="json", skip_paths=["/health"]))
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        if log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {log_format!r}")
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    async def __call__(self, ctx, next: Next) -> Any:
        request_id = ctx.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        if self.include_request_id:
            ctx.state["request_id"] = request_id
            ctx.set(REQUEST_ID_HEADER, request_id)

        start_time = time.perf_counter()

        try:
            await next()
        except Exception as error:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {ctx.method} {ctx.path} "
                f"- {type(error).__name__}: {error} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        if ctx.path in self.skip_paths:
            return

        entry = RequestLog(
            request_id=request_id,
            method=ctx.method,
            path=ctx.path,
            query=ctx.querystring,
            client_ip=ctx.ip,
            user_agent=ctx.get("User-Agent") or "-",
            status_code=ctx.status,
            content_length=ctx.length or 0,
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())
