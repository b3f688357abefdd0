"""Shared test fixtures for hookhttp.

Provides in-memory providers, httpx mock transports, and isolation for
configuration and logging state. These fixtures are discovered by pytest
automatically.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from hookhttp.client import Client
from hookhttp.context import ExecutionContext
from hookhttp.exceptions import TransportError
from hookhttp.hooks.manager import HookManager
from hookhttp.log import reset_logging
from hookhttp.models import ClientConfig, CompressionConfig, Request, Response
from hookhttp.providers.base import Provider, StreamResponse


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider(Provider):
    """In-memory provider recording every request it receives.

    ``responder`` maps a request to a :class:`Response` (or raises);
    ``chunks`` / ``fail_after`` drive :meth:`open_stream`. Streaming request
    bodies are drained into ``uploads``.
    """

    def __init__(
        self,
        responder: Optional[Callable[[Request], Response]] = None,
        *,
        chunks: Optional[list[bytes]] = None,
        stream_status: int = 200,
        stream_headers: Optional[dict[str, str]] = None,
        fail_after: Optional[int] = None,
        delay: float = 0.0,
    ) -> None:
        self.responder = responder or (lambda request: Response(200, body=b"ok", request=request))
        self.chunks = chunks or []
        self.stream_status = stream_status
        self.stream_headers = stream_headers or {}
        self.fail_after = fail_after
        self.delay = delay
        self.requests: list[Request] = []
        self.uploads: list[bytes] = []
        self.closed = False

    async def do(self, request: Request) -> Response:
        self.requests.append(request)
        if request.is_streaming:
            self.uploads.append(b"".join([chunk async for chunk in request.body]))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.responder(request)

    @asynccontextmanager
    async def open_stream(self, request: Request) -> AsyncIterator[StreamResponse]:
        self.requests.append(request)
        yield StreamResponse(
            status_code=self.stream_status,
            headers=httpx.Headers(self.stream_headers),
            chunk_iter=self._iter(),
        )

    async def _iter(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise TransportError("connection reset by peer")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    """The FakeProvider class, for tests that need custom chunks or responders."""
    return FakeProvider


@pytest.fixture
def make_client() -> Callable[..., Client]:
    """Factory building a :class:`Client` over a provider with compression off by default."""

    def _make(provider: Optional[Provider] = None, **config: Any) -> Client:
        config.setdefault("compression", CompressionConfig(enabled_types=[]))
        return Client(ClientConfig(**config), provider=provider or FakeProvider())

    return _make


@pytest.fixture
def ctx() -> ExecutionContext:
    return ExecutionContext(method="GET", target="/users")


@pytest.fixture
def hook_manager() -> HookManager:
    return HookManager()


# ---------------------------------------------------------------------------
# httpx helpers
# ---------------------------------------------------------------------------


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    """Create an httpx.MockTransport from a handler function."""
    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging_between_tests() -> None:
    """Remove rich handlers installed by configure_logging during a test."""
    yield
    reset_logging()


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME into tmp_path, clears HOOKHTTP_* environment
    variables, and changes the working directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setattr("hookhttp.config._uses_xdg", lambda: True)
    for var in [
        "HOOKHTTP_BASE_URL",
        "HOOKHTTP_TIMEOUT",
        "HOOKHTTP_COMPRESSION_THRESHOLD",
        "HOOKHTTP_BATCH_CONCURRENCY",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
