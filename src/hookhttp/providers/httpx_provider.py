"""Default provider backed by :class:`httpx.AsyncClient`.

Bodies are read with :meth:`httpx.Response.aiter_raw` so that httpx does
not decode ``Content-Encoding`` behind the pipeline's back; the client's
:class:`~hookhttp.compression.Compressor` owns content coding. For the same
reason the underlying client sends ``Accept-Encoding: identity`` unless a
request advertises something else.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx

from hookhttp.exceptions import TransportError
from hookhttp.models import Request, Response
from hookhttp.providers.base import Provider, StreamResponse


def _transport_error(exc: httpx.HTTPError, request: Request) -> TransportError:
    if isinstance(exc, httpx.TimeoutException):
        message = f"request timed out: {exc}"
    elif isinstance(exc, httpx.ConnectError):
        message = f"connection failed: {exc}"
    else:
        message = f"{type(exc).__name__}: {exc}"
    return TransportError(message, method=request.method, target=request.url)


class HttpxProvider(Provider):
    """Provider that performs I/O with :mod:`httpx`.

    Args:
        client: Pre-built :class:`httpx.AsyncClient` to use. When omitted,
            one is created lazily from the remaining arguments.
        base_url: Base URL for relative request targets.
        timeout: Default timeout in seconds (per-request ``timeout`` wins).
        verify: Verify TLS certificates.
        transport: Optional custom transport (e.g. :class:`httpx.MockTransport`).
        chunk_size: Read size for streaming; ``None`` yields chunks as
            they arrive from the transport.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        chunk_size: Optional[int] = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._base_url = base_url or ""
        self._timeout = timeout
        self._verify = verify
        self._transport = transport
        self._chunk_size = chunk_size

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: dict[str, Any] = {
                "base_url": self._base_url,
                "timeout": self._timeout,
                "verify": self._verify,
                "follow_redirects": True,
                "headers": {"Accept-Encoding": "identity"},
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    def _request_kwargs(self, request: Request) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "method": request.method,
            "url": request.url,
            "headers": request.headers,
        }
        if request.is_streaming:
            kwargs["content"] = request.body
        else:
            content = request.body_bytes()
            if content:
                kwargs["content"] = content
        if request.timeout is not None:
            kwargs["timeout"] = request.timeout
        return kwargs

    async def do(self, request: Request) -> Response:
        client = self._ensure_client()
        start = time.monotonic()
        try:
            async with client.stream(**self._request_kwargs(request)) as http_response:
                body = b"".join([chunk async for chunk in http_response.aiter_raw()])
        except httpx.HTTPError as exc:
            raise _transport_error(exc, request) from exc

        return Response(
            status_code=http_response.status_code,
            headers=httpx.Headers(http_response.headers),
            body=body,
            elapsed=time.monotonic() - start,
            request=request,
        )

    @asynccontextmanager
    async def open_stream(self, request: Request) -> AsyncIterator[StreamResponse]:
        client = self._ensure_client()
        kwargs = self._request_kwargs(request)
        # No read timeout between chunks of a long-lived stream.
        kwargs["timeout"] = httpx.Timeout(request.timeout or self._timeout, read=None)
        try:
            async with client.stream(**kwargs) as http_response:
                yield StreamResponse(
                    status_code=http_response.status_code,
                    headers=httpx.Headers(http_response.headers),
                    chunk_iter=self._iter_raw(http_response, request),
                )
        except httpx.HTTPError as exc:
            raise _transport_error(exc, request) from exc

    async def _iter_raw(
        self, http_response: httpx.Response, request: Request
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in http_response.aiter_raw(self._chunk_size):
                yield chunk
        except httpx.HTTPError as exc:
            raise _transport_error(exc, request) from exc

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
