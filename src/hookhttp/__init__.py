"""hookhttp -- an extensible asynchronous HTTP client pipeline.

A :class:`~hookhttp.client.Client` wraps every outbound call with typed
lifecycle hooks, an onion-style middleware chain, transparent request and
response compression, chunked streaming into caller handlers, and
concurrent batch execution with per-item error isolation. Network I/O is
delegated to a pluggable provider (httpx by default).

Typical usage::

    from hookhttp import ClientBuilder, HookPoint
    from hookhttp.hooks.builtin import logging_hook

    client = (
        ClientBuilder()
        .with_base_url("https://api.example.com")
        .with_hook(HookPoint.BEFORE_REQUEST, logging_hook())
        .build()
    )
    async with client:
        response = await client.get("/users")

Modules:
    client: Client and ClientBuilder (composition root).
    hooks: Hook points, the hook manager, built-in hooks, error classifier.
    middleware: Middleware chain and built-in middleware.
    compression: gzip/deflate compressor and statistics.
    streaming: Stream engine and stream handlers.
    batch: Concurrent batch executor.
    providers: Transport abstraction and the httpx provider.
    config: XDG-aware configuration loading and precedence resolution.
    log: Optional rich logging setup.
"""

from hookhttp.batch import Batch, BatchItem, BatchResult, BatchSummary
from hookhttp.client import Client, ClientBuilder
from hookhttp.compression import Compressor, Statistics
from hookhttp.context import CancelToken, ExecutionContext
from hookhttp.exceptions import (
    BatchAbortedError,
    CancellationError,
    ConfigError,
    DuplicateHookNameError,
    EncodingError,
    HookAbortError,
    HookHttpError,
    InvalidHookPointError,
    MiddlewareError,
    TransportError,
    ValidationError,
)
from hookhttp.hooks import CUSTOM_HOOK_BASE, HookManager, HookPoint, HookResult
from hookhttp.models import (
    BatchConfig,
    BatchStrategy,
    ClientConfig,
    CompressionConfig,
    CompressionType,
    Request,
    Response,
    RetryConfig,
    StreamConfig,
)
from hookhttp.streaming import StreamEngine, StreamHandler, StreamResult

__version__ = "0.1.0"

__all__ = [
    "CUSTOM_HOOK_BASE",
    "Batch",
    "BatchAbortedError",
    "BatchConfig",
    "BatchItem",
    "BatchResult",
    "BatchSummary",
    "BatchStrategy",
    "CancelToken",
    "CancellationError",
    "Client",
    "ClientBuilder",
    "ClientConfig",
    "CompressionConfig",
    "CompressionType",
    "Compressor",
    "ConfigError",
    "DuplicateHookNameError",
    "EncodingError",
    "ExecutionContext",
    "HookAbortError",
    "HookHttpError",
    "HookManager",
    "HookPoint",
    "HookResult",
    "InvalidHookPointError",
    "MiddlewareError",
    "Request",
    "Response",
    "RetryConfig",
    "StreamConfig",
    "StreamEngine",
    "StreamHandler",
    "StreamResult",
    "Statistics",
    "TransportError",
    "ValidationError",
    "__version__",
]
