"""Client composition root.

This module provides :class:`Client`, which wires a
:class:`~hookhttp.hooks.manager.HookManager`, a
:class:`~hookhttp.middleware.chain.MiddlewareChain` and a
:class:`~hookhttp.compression.Compressor` around a
:class:`~hookhttp.providers.base.Provider`, and :class:`ClientBuilder`,
the fluent way to assemble one.

Control flow of a single call::

    middleware (outer -> inner)
      -> BEFORE_REQUEST hooks -> compress -> provider.do
      -> AFTER_RESPONSE hooks -> decompress
    middleware (inner -> outer)

Each provider attempt compresses its own copy of the request, so the
caller's request (and a retry of it) is never left half-encoded. A
context returned by a hook replaces the one later lifecycle points see.
ON_ERROR hooks run once for any failure leaving the pipeline. Streams,
uploads and batches reuse the same hook manager, compressor and provider.

Example::

    client = (
        ClientBuilder()
        .with_base_url("https://api.example.com")
        .with_hook(HookPoint.BEFORE_REQUEST, logging_hook())
        .with_retry()
        .build()
    )
    async with client:
        response = await client.get("/users")
"""

from __future__ import annotations

import logging
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
)
from functools import partial
from typing import IO, Any, Optional, Union

import httpx

from hookhttp.batch import Batch
from hookhttp.compression import Compressor, Statistics
from hookhttp.context import CancelToken, ExecutionContext
from hookhttp.exceptions import (
    HookAbortError,
    HookHttpError,
    MiddlewareError,
    TransportError,
)
from hookhttp.hooks.base import Hook, HookPoint, HookResult, PointLike
from hookhttp.hooks.manager import HookManager
from hookhttp.middleware.builtin import retry_middleware
from hookhttp.middleware.chain import Middleware, MiddlewareChain
from hookhttp.models import (
    BatchStrategy,
    ClientConfig,
    CompressionConfig,
    Request,
    Response,
    RetryConfig,
    merge_headers,
)
from hookhttp.providers.base import Provider
from hookhttp.providers.httpx_provider import HttpxProvider
from hookhttp.streaming.engine import StreamEngine, StreamResult
from hookhttp.streaming.handlers import StreamHandler

logger = logging.getLogger(__name__)

_UPLOAD_CHUNK_SIZE = 64 * 1024

UploadSource = Union[AsyncIterable[bytes], Iterable[bytes], IO[bytes]]


class _CallScope:
    """Holds the context that the remaining lifecycle points of a call receive."""

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def adopt(self, verdict: HookResult) -> ExecutionContext:
        if verdict.context is not None:
            self.ctx = verdict.context
        return self.ctx


async def _upload_chunks(source: UploadSource, chunk_size: int) -> AsyncIterator[bytes]:
    if hasattr(source, "read"):
        while True:
            chunk = source.read(chunk_size)
            if not chunk:
                return
            yield chunk
    elif isinstance(source, AsyncIterable):
        async for chunk in source:
            yield bytes(chunk)
    else:
        for chunk in source:
            yield bytes(chunk)


class Client:
    """Extensible asynchronous HTTP client.

    Every collaborator is owned by the instance; nothing is shared through
    module-level state. Prefer :class:`ClientBuilder` over calling the
    constructor directly.

    Args:
        config: Client configuration. Defaults to :class:`ClientConfig()`.
        provider: Transport performing network I/O. Defaults to an
            :class:`~hookhttp.providers.httpx_provider.HttpxProvider`
            built from *config*.
        hooks: Hook manager. A fresh one is created when omitted.
        compressor: Compressor. Built from ``config.compression`` when
            omitted.
        middleware: Initial middleware, outermost first. When
            ``config.retry`` is set, a retry middleware is placed in
            front of them.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        provider: Optional[Provider] = None,
        hooks: Optional[HookManager] = None,
        compressor: Optional[Compressor] = None,
        middleware: Optional[list[Middleware]] = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._provider = provider or HttpxProvider(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            chunk_size=self._config.stream.chunk_size,
        )
        self._hooks = hooks or HookManager()
        self._compressor = compressor or Compressor(self._config.compression)
        self._chain = MiddlewareChain()
        if self._config.retry is not None:
            self._chain.use(retry_middleware(self._config.retry))
        for item in middleware or ():
            self._chain.use(item)

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the provider's resources."""
        await self._provider.close()

    # ------------------------------------------------------------------ #
    # Configuration surface
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> ClientConfig:
        return self._config

    def set_timeout(self, timeout: float) -> Client:
        """Set the per-request timeout in seconds for subsequent calls."""
        self._config = self._config.model_copy(update={"timeout": timeout})
        return self

    def set_headers(self, headers: Mapping[str, str]) -> Client:
        """Merge *headers* into the default headers sent with every call."""
        merged = dict(merge_headers(self._config.headers, headers).items())
        self._config = self._config.model_copy(update={"headers": merged})
        return self

    @property
    def hook_manager(self) -> HookManager:
        return self._hooks

    def get_hook_manager(self) -> HookManager:
        return self._hooks

    def register_hook(self, point: PointLike, handler: Hook) -> Client:
        self._hooks.register_hook(point, handler)
        return self

    def register_custom_hook(self, point: int, name: str, handler: Hook) -> Client:
        self._hooks.register_custom_hook(point, name, handler)
        return self

    def add_middleware(self, middleware: Middleware) -> Client:
        self._chain.use(middleware)
        return self

    @property
    def middleware(self) -> MiddlewareChain:
        return self._chain

    @property
    def compressor(self) -> Compressor:
        return self._compressor

    @property
    def statistics(self) -> Statistics:
        """Snapshot of the compressor's cumulative statistics."""
        return self._compressor.statistics

    @property
    def provider(self) -> Provider:
        return self._provider

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        target: str,
        *,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        token: Optional[CancelToken] = None,
        timeout: Optional[float] = None,
    ) -> Response:
        """Send one request through the full pipeline.

        Args:
            method: HTTP method.
            target: Path (joined to ``base_url`` by the provider) or
                absolute URL.
            body: Raw bytes, text, or a JSON-serialisable value.
            headers: Per-call headers, merged over the default headers.
            token: Cancellation/deadline token for the call.
            timeout: Per-call timeout overriding the client timeout.

        Returns:
            The decoded :class:`~hookhttp.models.Response`. HTTP error
            statuses are returned, not raised.

        Raises:
            HookAbortError: A BEFORE_REQUEST hook vetoed the call, or an
                AFTER_RESPONSE hook rejected the response with an error.
            TransportError: The provider failed.
            CancellationError: *token* fired before the call finished.
            EncodingError: A body could not be encoded or decoded.
            MiddlewareError: A middleware raised a non-hookhttp exception.
        """
        token = token or CancelToken()
        request = Request(
            method=method,
            url=target,
            headers=merge_headers(self._config.headers, headers),
            body=body,
            timeout=timeout if timeout is not None else self._config.timeout,
        )
        ctx = ExecutionContext(
            operation="request",
            method=request.method,
            target=target,
            args={"body": body} if body is not None else {},
            token=token,
        )
        scope = _CallScope(ctx)
        return await self._run(
            scope, request, partial(self._chain.process, ctx, request, partial(self._send, scope))
        )

    async def upload(
        self,
        method: str,
        target: str,
        source: UploadSource,
        *,
        content_type: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        token: Optional[CancelToken] = None,
        chunk_size: int = _UPLOAD_CHUNK_SIZE,
    ) -> Response:
        """Send a request whose body is streamed from *source*.

        The body is produced chunk by chunk while the request is on the
        wire, so arbitrarily large payloads are never held in memory. Hooks
        run as for :meth:`request`; middleware is bypassed because a
        consumed stream cannot be replayed, and the body is not compressed.

        Args:
            method: HTTP method.
            target: Path or absolute URL.
            source: Async iterable of bytes, iterable of bytes, or a binary
                file object (read *chunk_size* bytes at a time).
            content_type: Optional ``Content-Type`` header value.
            headers: Per-call headers, merged over the default headers.
            token: Cancellation/deadline token for the call.
            chunk_size: Read size for file objects.

        Returns:
            The decoded :class:`~hookhttp.models.Response`.

        Raises:
            HookAbortError: A hook vetoed the upload or rejected the response.
            TransportError: The provider failed or *source* raised.
            CancellationError: *token* fired before the upload finished.
        """
        token = token or CancelToken()
        call_headers = merge_headers(self._config.headers, headers)
        if content_type is not None:
            call_headers["Content-Type"] = content_type
        request = Request(
            method=method,
            url=target,
            headers=call_headers,
            body=_upload_chunks(source, chunk_size),
            timeout=self._config.timeout,
        )
        ctx = ExecutionContext(
            operation="upload", method=request.method, target=target, token=token
        )
        scope = _CallScope(ctx)
        return await self._run(scope, request, partial(self._send, scope, ctx, request))

    async def get(self, target: str, **kwargs: Any) -> Response:
        return await self.request("GET", target, **kwargs)

    async def post(self, target: str, **kwargs: Any) -> Response:
        return await self.request("POST", target, **kwargs)

    async def put(self, target: str, **kwargs: Any) -> Response:
        return await self.request("PUT", target, **kwargs)

    async def patch(self, target: str, **kwargs: Any) -> Response:
        return await self.request("PATCH", target, **kwargs)

    async def delete(self, target: str, **kwargs: Any) -> Response:
        return await self.request("DELETE", target, **kwargs)

    async def head(self, target: str, **kwargs: Any) -> Response:
        return await self.request("HEAD", target, **kwargs)

    async def options(self, target: str, **kwargs: Any) -> Response:
        return await self.request("OPTIONS", target, **kwargs)

    async def stream(
        self,
        method: str,
        target: str,
        handler: StreamHandler,
        *,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        token: Optional[CancelToken] = None,
    ) -> StreamResult:
        """Stream a response into *handler*.

        Failures are reported through ``handler.on_error`` and in the
        returned :class:`~hookhttp.streaming.engine.StreamResult`, not
        raised. Middleware does not wrap streams.
        """
        engine = StreamEngine(
            self._provider,
            hooks=self._hooks,
            compressor=self._compressor,
            default_headers=self._config.headers,
            timeout=self._config.timeout,
        )
        return await engine.stream(
            method, target, handler, token=token, headers=headers, body=body
        )

    def batch(
        self,
        concurrency_limit: Optional[int] = None,
        *,
        strategy: Optional[BatchStrategy] = None,
    ) -> Batch:
        """Start an empty :class:`~hookhttp.batch.Batch` bound to this client.

        Args:
            concurrency_limit: Items in flight at once; defaults to
                ``config.batch.concurrency_limit``. ``0`` means unbounded.
            strategy: Execution strategy; defaults to
                ``config.batch.strategy``.
        """
        changes: dict[str, Any] = {}
        if concurrency_limit is not None:
            changes["concurrency_limit"] = concurrency_limit
        if strategy is not None:
            changes["strategy"] = BatchStrategy(strategy)
        return Batch(self, self._config.batch.model_copy(update=changes))

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    async def _run(
        self, scope: _CallScope, request: Request, call: Callable[[], Awaitable[Response]]
    ) -> Response:
        """Run *call*, reporting any failure once through ON_ERROR hooks."""
        target = scope.ctx.target
        try:
            scope.ctx.token.check()
            return await call()
        except HookHttpError as exc:
            scope.ctx.error = exc.with_operation(request.method, target)
            self._hooks.dispatch_all(HookPoint.ON_ERROR, scope.ctx)
            logger.debug("%s", exc)
            raise
        except Exception as exc:
            error = MiddlewareError(
                f"{type(exc).__name__}: {exc}", method=request.method, target=target
            )
            scope.ctx.error = error
            self._hooks.dispatch_all(HookPoint.ON_ERROR, scope.ctx)
            logger.debug("%s", error)
            raise error from exc

    async def _send(
        self, scope: _CallScope, chain_ctx: ExecutionContext, request: Request
    ) -> Response:
        """Terminal step of the middleware chain; runs once per attempt."""
        ctx = scope.ctx
        token = ctx.token or chain_ctx.token or CancelToken()
        attempt = request.copy()
        ctx.request = attempt

        verdict = self._hooks.dispatch(HookPoint.BEFORE_REQUEST, ctx)
        ctx = scope.adopt(verdict)
        if not verdict.proceed:
            raise HookAbortError(
                "request vetoed by hook", hook_error=verdict.error
            ) from verdict.error

        self._compressor.prepare_request(attempt)

        try:
            response = await token.guard(self._provider.do(attempt))
        except HookHttpError:
            raise
        except Exception as exc:
            raise TransportError(f"provider call failed: {exc}") from exc
        finally:
            ctx.mark_finished()

        ctx.response = response
        verdict = self._hooks.dispatch(HookPoint.AFTER_RESPONSE, ctx)
        ctx = scope.adopt(verdict)
        if not verdict.proceed and verdict.error is not None:
            raise HookAbortError(
                "response rejected by hook", hook_error=verdict.error
            ) from verdict.error

        self._compressor.decompress_response(response)
        return response


class ClientBuilder:
    """Fluent builder for :class:`Client`.

    Example::

        client = (
            ClientBuilder(resolve_config())
            .with_timeout(10)
            .with_middleware(logging_middleware())
            .build()
        )
    """

    def __init__(self, config: Optional[ClientConfig] = None) -> None:
        self._config = config or ClientConfig()
        self._provider: Optional[Provider] = None
        self._transport: Optional[httpx.AsyncBaseTransport] = None
        self._hook_manager: Optional[HookManager] = None
        self._compressor: Optional[Compressor] = None
        self._middleware: list[Middleware] = []
        self._hooks: list[tuple[PointLike, Hook]] = []
        self._custom_hooks: list[tuple[int, str, Hook]] = []

    def _update(self, **changes: Any) -> ClientBuilder:
        self._config = self._config.model_copy(update=changes)
        return self

    def with_config(self, config: ClientConfig) -> ClientBuilder:
        self._config = config
        return self

    def with_base_url(self, base_url: str) -> ClientBuilder:
        return self._update(base_url=base_url)

    def with_timeout(self, timeout: float) -> ClientBuilder:
        return self._update(timeout=timeout)

    def with_headers(self, headers: Mapping[str, str]) -> ClientBuilder:
        return self._update(headers=dict(merge_headers(self._config.headers, headers).items()))

    def with_compression(self, compression: CompressionConfig) -> ClientBuilder:
        return self._update(compression=compression)

    def with_batch_concurrency(self, limit: int) -> ClientBuilder:
        return self._update(batch=self._config.batch.model_copy(update={"concurrency_limit": limit}))

    def with_retry(self, retry: Optional[RetryConfig] = None) -> ClientBuilder:
        return self._update(retry=retry or RetryConfig())

    def with_provider(self, provider: Provider) -> ClientBuilder:
        self._provider = provider
        return self

    def with_transport(self, transport: httpx.AsyncBaseTransport) -> ClientBuilder:
        """Use the default httpx provider over *transport* (e.g. ``httpx.MockTransport``)."""
        self._transport = transport
        return self

    def with_hook_manager(self, manager: HookManager) -> ClientBuilder:
        self._hook_manager = manager
        return self

    def with_compressor(self, compressor: Compressor) -> ClientBuilder:
        self._compressor = compressor
        return self

    def with_middleware(self, middleware: Middleware) -> ClientBuilder:
        self._middleware.append(middleware)
        return self

    def with_hook(self, point: PointLike, handler: Hook) -> ClientBuilder:
        self._hooks.append((point, handler))
        return self

    def with_custom_hook(self, point: int, name: str, handler: Hook) -> ClientBuilder:
        self._custom_hooks.append((point, name, handler))
        return self

    def build(self) -> Client:
        """Create the client.

        Raises:
            ValidationError: If a queued hook registration is invalid.
        """
        config = self._config
        provider = self._provider
        if provider is None and self._transport is not None:
            provider = HttpxProvider(
                base_url=config.base_url,
                timeout=config.timeout,
                verify=config.verify_ssl,
                transport=self._transport,
                chunk_size=config.stream.chunk_size,
            )

        manager = self._hook_manager or HookManager()
        for point, handler in self._hooks:
            manager.register_hook(point, handler)
        for point, name, handler in self._custom_hooks:
            manager.register_custom_hook(point, name, handler)

        return Client(
            config,
            provider=provider,
            hooks=manager,
            compressor=self._compressor,
            middleware=list(self._middleware),
        )
