"""
=============================================================================
MIDDLEWARE COMPOSITION
=============================================================================

Turns a list of middleware into one awaitable function. Each middleware
gets the request context and a ``next`` function; awaiting ``next()``
runs everything further in, and the code after it runs on the way out.

=============================================================================
THE ONION
=============================================================================

    app.use(a)      # outermost
    app.use(b)
    app.use(c)      # innermost

    ┌─────────────────────────────────────────────────────────────┐
    │  a: before                                                  │
    │  ┌───────────────────────────────────────────────────────┐  │
    │  │  b: before                                            │  │
    │  │  ┌─────────────────────────────────────────────────┐  │  │
    │  │  │  c: before                                      │  │  │
    │  │  │        (next after c → terminal next or None)   │  │  │
    │  │  │  c: after                                       │  │  │
    │  │  └─────────────────────────────────────────────────┘  │  │
    │  │  b: after                                             │  │
    │  └───────────────────────────────────────────────────────┘  │
    │  a: after                                                   │
    └─────────────────────────────────────────────────────────────┘

    order: a-before, b-before, c-before, c-after, b-after, a-after

    async def timer(ctx, next):
        start = time.perf_counter()
        await next()                              # everything inside runs here
        ctx.set("X-Response-Time", f"{time.perf_counter() - start:.3f}s")

Unlike a wrap-at-startup pipeline, dispatch is driven by an index
cursor that lives in one invocation of the composed function, so the
same composed function can serve many requests concurrently.

=============================================================================
INTERVIEW INSIGHT: WHY FORBID A SECOND next()?
=============================================================================

Q: "What's wrong with calling next() twice?"
A: "Everything downstream would run twice for one request: handlers
   would write the body twice, counters double-count, and a later
   middleware could observe a half-finished response. The cursor makes
   this a loud error instead of a subtle bug."

Q: "Why accept non-async middleware at all?"
A: "A plain function that returns a value (or returns the awaitable
   from next()) composes just fine. We await whatever it returns if
   it is awaitable and pass it through otherwise."

=============================================================================
"""

import inspect
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from ..errors import NextCalledMultipleTimesError


logger = logging.getLogger(__name__)


# =============================================================================
# TYPE ALIASES
# =============================================================================

Next = Callable[[], Awaitable[Any]]
MiddlewareFunc = Callable[[Any, Next], Any]
ComposedMiddleware = Callable[..., Awaitable[Any]]


class Middleware(ABC):
    """
    Base class for class-based middleware.

    Subclasses implement the same contract as plain middleware
    functions:

        class PoweredBy(Middleware):
            async def __call__(self, ctx, next):
                await next()
                ctx.set("X-Powered-By", "onionhttp")
    """

    @abstractmethod
    async def __call__(self, ctx, next: Next) -> Any:
        """
        Process one request.

        Args:
            ctx: The request context.
            next: Awaitable continuation into the rest of the onion.
        """

    @property
    def name(self) -> str:
        """Middleware name for logging."""
        return self.__class__.__name__


def middleware_name(fn: Callable) -> str:
    """Best-effort readable name for a middleware callable."""
    name = getattr(fn, "name", None)
    if isinstance(name, str):
        return name
    return getattr(fn, "__name__", type(fn).__name__)


async def _invoke(fn: Optional[Callable], context: Any, next_: Next) -> Any:
    if fn is None:
        return None
    result = fn(context, next_)
    if inspect.isawaitable(result):
        result = await result
    return result


def compose(middleware: Sequence[MiddlewareFunc]) -> ComposedMiddleware:
    """
    Compose middleware into a single function.

    Args:
        middleware: List (or tuple) of ``(ctx, next)`` callables, outermost
                    first.

    Returns:
        ``composed(ctx, next=None)``, returning an awaitable that resolves
        once the whole onion has unwound. ``next`` is called after the
        innermost middleware, if given.

    Raises:
        TypeError: If ``middleware`` is not a list/tuple or holds anything
                   that is not callable.
    """
    if not isinstance(middleware, (list, tuple)):
        raise TypeError("Middleware stack must be a list")
    for fn in middleware:
        if not callable(fn):
            raise TypeError("Middleware must be composed of functions")

    # Later changes to the caller's list don't affect this composition.
    stack: List[MiddlewareFunc] = list(middleware)

    def composed(context: Any, next: Optional[MiddlewareFunc] = None) -> Awaitable[Any]:
        index = -1

        def dispatch(i: int) -> Awaitable[Any]:
            nonlocal index
            if i <= index:
                raise NextCalledMultipleTimesError()
            index = i

            fn = stack[i] if i < len(stack) else None
            if i == len(stack):
                fn = next
            return _invoke(fn, context, partial(dispatch, i + 1))

        return dispatch(0)

    return composed


class MiddlewarePipeline:
    """
    An ordered, growable list of middleware.

        pipeline = MiddlewarePipeline()
        pipeline.add(LoggingMiddleware()).add(auth)
        handler = pipeline.compose()
        await handler(ctx)
    """

    def __init__(self, middleware: Optional[Sequence[MiddlewareFunc]] = None):
        self._middleware: List[MiddlewareFunc] = []
        for fn in middleware or ():
            self.add(fn)

    def add(self, fn: MiddlewareFunc) -> "MiddlewarePipeline":
        """
        Append a middleware. First added is outermost.

        Raises:
            TypeError: If ``fn`` is not callable.
        """
        if not callable(fn):
            raise TypeError("middleware must be a function")
        self._middleware.append(fn)
        logger.debug(f"Added middleware: {middleware_name(fn)}")
        return self

    def use(self, *middleware: MiddlewareFunc) -> "MiddlewarePipeline":
        for fn in middleware:
            self.add(fn)
        return self

    def compose(self) -> ComposedMiddleware:
        return compose(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self):
        return iter(self._middleware)
