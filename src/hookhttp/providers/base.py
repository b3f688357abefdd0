"""Provider boundary -- the transport collaborator that performs network I/O.

The pipeline never opens sockets itself. A :class:`Provider` receives a
fully prepared :class:`~hookhttp.models.Request` (headers merged, body
already compressed) and returns the raw, still content-encoded response.
Decoding is the :class:`~hookhttp.compression.Compressor`'s job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field

import httpx

from hookhttp.models import Request, Response


@dataclass
class StreamResponse:
    """Status line, headers and chunk iterator of an open streaming response."""

    status_code: int
    chunk_iter: AsyncIterator[bytes]
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    def chunks(self) -> AsyncIterator[bytes]:
        return self.chunk_iter


class Provider(ABC):
    """Transport capability set consumed by the client.

    Implementations must raise :class:`~hookhttp.exceptions.TransportError`
    for I/O failures. Other exception types are wrapped by the caller.
    """

    @abstractmethod
    async def do(self, request: Request) -> Response:
        """Send *request* and return the complete (raw) response.

        ``request.body`` may be an async iterable of bytes
        (:attr:`~hookhttp.models.Request.is_streaming`); such bodies must be
        sent as they are produced, without buffering.
        """

    @abstractmethod
    def open_stream(self, request: Request) -> AbstractAsyncContextManager[StreamResponse]:
        """Open a streaming response; chunks are delivered in wire order."""

    async def close(self) -> None:
        """Release transport resources."""
