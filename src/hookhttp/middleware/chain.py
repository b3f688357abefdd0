"""Onion-style middleware composition.

A middleware is an async callable::

    async def middleware(ctx: ExecutionContext, request: Request, next: NextFn) -> Response

where ``next`` is already bound to the rest of the chain. A middleware may
mutate the request, call ``next``, then inspect or replace the response --
or short-circuit by returning a response without calling ``next``. The
request leg runs in registration order, the response leg in reverse.
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hookhttp.context import ExecutionContext
    from hookhttp.models import Request, Response

NextFn = Callable[["Request"], Awaitable["Response"]]
Middleware = Callable[["ExecutionContext", "Request", NextFn], Awaitable["Response"]]
Terminal = Callable[["ExecutionContext", "Request"], Awaitable["Response"]]


class MiddlewareChain:
    """Ordered list of middleware wrapped around a terminal call."""

    def __init__(self, middlewares: list[Middleware] | None = None) -> None:
        self._lock = threading.Lock()
        self._middlewares: tuple[Middleware, ...] = tuple(middlewares or ())

    def use(self, middleware: Middleware) -> MiddlewareChain:
        """Append *middleware* (ignored if it is already in the chain)."""
        with self._lock:
            if middleware not in self._middlewares:
                self._middlewares = self._middlewares + (middleware,)
        return self

    def remove(self, middleware: Middleware) -> bool:
        with self._lock:
            kept = tuple(m for m in self._middlewares if m is not middleware)
            removed = len(kept) != len(self._middlewares)
            self._middlewares = kept
        return removed

    def __len__(self) -> int:
        return len(self._middlewares)

    @property
    def middlewares(self) -> list[Middleware]:
        return list(self._middlewares)

    async def process(
        self, ctx: ExecutionContext, request: Request, terminal: Terminal
    ) -> Response:
        """Run *request* through every middleware and finally *terminal*."""
        middlewares = self._middlewares

        async def call(index: int, req: Request) -> Response:
            if index >= len(middlewares):
                return await terminal(ctx, req)

            async def next_fn(next_req: Request) -> Response:
                return await call(index + 1, next_req)

            return await middlewares[index](ctx, req, next_fn)

        return await call(0, request)
