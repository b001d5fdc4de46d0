"""
Unit tests for middleware composition.
"""

import asyncio

import pytest

from onionhttp.errors import NextCalledMultipleTimesError
from onionhttp.middleware.compose import (
    Middleware,
    MiddlewarePipeline,
    compose,
    middleware_name,
)


class TestComposeOrdering:
    """Tests for the onion execution order."""

    @pytest.mark.asyncio
    async def test_onion_order(self):
        """Test middleware run in order on the way in and reverse on the way out."""
        calls = []

        def recorder(name):
            async def middleware(ctx, next):
                calls.append(f"{name}-before")
                await next()
                calls.append(f"{name}-after")
            return middleware

        await compose([recorder("a"), recorder("b"), recorder("c")])({})

        assert calls == [
            "a-before", "b-before", "c-before",
            "c-after", "b-after", "a-after",
        ]

    @pytest.mark.asyncio
    async def test_context_is_shared(self):
        """Test every middleware sees the same context object."""
        async def first(ctx, next):
            ctx["seen"] = ["first"]
            await next()

        async def second(ctx, next):
            ctx["seen"].append("second")

        ctx = {}
        await compose([first, second])(ctx)

        assert ctx["seen"] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_terminal_next_runs_after_last(self):
        """Test the terminal next runs after the innermost middleware."""
        calls = []

        async def inner(ctx, next):
            calls.append("inner")
            await next()
            calls.append("inner-after")

        async def terminal(ctx, next):
            calls.append("terminal")

        await compose([inner])({}, terminal)

        assert calls == ["inner", "terminal", "inner-after"]

    @pytest.mark.asyncio
    async def test_empty_stack_resolves_to_none(self):
        """Test composing nothing resolves to None."""
        assert await compose([])({}) is None

    @pytest.mark.asyncio
    async def test_empty_stack_calls_terminal(self):
        """Test composing nothing still calls the terminal next."""
        called = []

        async def terminal(ctx, next):
            called.append(True)

        await compose([])({}, terminal)

        assert called == [True]

    @pytest.mark.asyncio
    async def test_next_after_last_resolves_to_none(self):
        """Test next() past the end without a terminal resolves to None."""
        results = []

        async def last(ctx, next):
            results.append(await next())

        await compose([last])({})

        assert results == [None]


class TestComposeValues:
    """Tests for return values and plain callables."""

    @pytest.mark.asyncio
    async def test_sync_middleware(self):
        """Test plain functions compose alongside async ones."""
        calls = []

        def sync(ctx, next):
            calls.append("sync")
            return next()

        async def handler(ctx, next):
            calls.append("handler")

        await compose([sync, handler])({})

        assert calls == ["sync", "handler"]

    @pytest.mark.asyncio
    async def test_non_awaitable_result_passes_through(self):
        """Test a plain return value becomes the composed result."""
        def answer(ctx, next):
            return 42

        assert await compose([answer])({}) == 42

    @pytest.mark.asyncio
    async def test_result_of_next_is_returned(self):
        """Test an outer middleware receives what the inner one returned."""
        async def outer(ctx, next):
            return await next()

        async def inner(ctx, next):
            return "inner-value"

        assert await compose([outer, inner])({}) == "inner-value"

    @pytest.mark.asyncio
    async def test_list_is_snapshotted(self):
        """Test later changes to the list don't affect the composition."""
        calls = []

        async def first(ctx, next):
            calls.append("first")
            await next()

        stack = [first]
        composed = compose(stack)

        async def late(ctx, next):
            calls.append("late")

        stack.append(late)
        await composed({})

        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_reentrant_across_requests(self):
        """Test one composed function serves concurrent invocations."""
        async def slow(ctx, next):
            ctx["before"] = True
            await asyncio.sleep(0.01)
            await next()

        async def mark(ctx, next):
            ctx["done"] = True

        composed = compose([slow, mark])
        first, second = {}, {}
        await asyncio.gather(composed(first), composed(second))

        assert first == {"before": True, "done": True}
        assert second == {"before": True, "done": True}


class TestComposeErrors:
    """Tests for error propagation and misuse."""

    def test_rejects_non_list(self):
        """Test a non-list stack is rejected at construction."""
        with pytest.raises(TypeError, match="must be a list"):
            compose("not a list")

    def test_rejects_non_callable(self):
        """Test a non-callable element is rejected at construction."""
        with pytest.raises(TypeError, match="composed of functions"):
            compose([lambda ctx, next: None, "nope"])

    @pytest.mark.asyncio
    async def test_next_called_twice(self):
        """Test calling next() twice fails."""
        async def twice(ctx, next):
            await next()
            await next()

        with pytest.raises(NextCalledMultipleTimesError, match="next\\(\\) called multiple times"):
            await compose([twice])({})

    @pytest.mark.asyncio
    async def test_next_called_twice_fails_at_call_time(self):
        """Test the second next() raises when called, before it is awaited."""
        caught = []

        async def twice(ctx, next):
            first = next()
            try:
                next()
            except NextCalledMultipleTimesError as error:
                caught.append(error)
            await first

        await compose([twice])({})

        assert len(caught) == 1

    @pytest.mark.asyncio
    async def test_error_propagates(self):
        """Test an exception in an inner middleware reaches the caller."""
        async def outer(ctx, next):
            await next()

        async def failing(ctx, next):
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await compose([outer, failing])({})

    @pytest.mark.asyncio
    async def test_error_short_circuits(self):
        """Test middleware after a failing one never runs."""
        calls = []

        async def failing(ctx, next):
            raise RuntimeError("stop")

        async def never(ctx, next):
            calls.append("never")

        with pytest.raises(RuntimeError):
            await compose([failing, never])({})

        assert calls == []

    @pytest.mark.asyncio
    async def test_outer_can_catch(self):
        """Test an outer middleware can catch and transform an inner error."""
        async def catcher(ctx, next):
            try:
                await next()
            except KeyError:
                ctx["handled"] = True

        async def failing(ctx, next):
            raise KeyError("missing")

        ctx = {}
        await compose([catcher, failing])(ctx)

        assert ctx == {"handled": True}

    @pytest.mark.asyncio
    async def test_sync_error_propagates(self):
        """Test an exception raised by a plain function propagates."""
        def failing(ctx, next):
            raise LookupError("sync")

        with pytest.raises(LookupError):
            await compose([failing])({})


class TestMiddlewareClasses:
    """Tests for class-based middleware and the pipeline."""

    @pytest.mark.asyncio
    async def test_class_middleware(self):
        """Test a Middleware subclass composes like a function."""
        class PoweredBy(Middleware):
            async def __call__(self, ctx, next):
                await next()
                ctx["powered_by"] = "onionhttp"

        ctx = {}
        await compose([PoweredBy()])(ctx)

        assert ctx["powered_by"] == "onionhttp"

    def test_middleware_is_abstract(self):
        """Test the base class can't be instantiated."""
        with pytest.raises(TypeError):
            Middleware()

    def test_middleware_name(self):
        """Test readable names for functions and classes."""
        class Auth(Middleware):
            async def __call__(self, ctx, next):
                await next()

        async def timer(ctx, next):
            await next()

        assert middleware_name(Auth()) == "Auth"
        assert middleware_name(timer) == "timer"

    @pytest.mark.asyncio
    async def test_pipeline(self):
        """Test the pipeline composes what was added, in order."""
        calls = []

        async def a(ctx, next):
            calls.append("a")
            await next()

        async def b(ctx, next):
            calls.append("b")

        pipeline = MiddlewarePipeline().add(a).add(b)
        await pipeline.compose()({})

        assert len(pipeline) == 2
        assert list(pipeline) == [a, b]
        assert calls == ["a", "b"]

    def test_pipeline_rejects_non_callable(self):
        """Test the pipeline refuses non-callables."""
        with pytest.raises(TypeError):
            MiddlewarePipeline().add(42)
