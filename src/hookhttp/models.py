"""Canonical models shared across all hookhttp modules.

The models fall into two groups:

**Configuration models** -- Pydantic v2 models that can be loaded from and
saved to JSON (see :mod:`hookhttp.config`):
    :class:`CompressionType`, :class:`CompressionConfig`, :class:`BatchStrategy`,
    :class:`BatchConfig`, :class:`StreamConfig`, :class:`RetryConfig`, and
    :class:`ClientConfig`.

**Message models** -- mutable dataclasses created per call and discarded
once the pipeline returns:
    :class:`Request` and :class:`Response`.

Headers on both messages are :class:`httpx.Headers` instances, which keep
insertion order and compare keys case-insensitively.
"""

from __future__ import annotations

import enum
import json
from collections.abc import AsyncIterable
from dataclasses import dataclass, field, replace
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field, field_validator


# --- Configuration models ---


class CompressionType(str, enum.Enum):
    """Content codings the :class:`~hookhttp.compression.Compressor` can produce."""

    GZIP = "gzip"
    DEFLATE = "deflate"


class CompressionConfig(BaseModel):
    """Request/response compression policy.

    ``enabled_types`` is an ordered set: the first entry is used to encode
    outbound bodies and the whole list is advertised in ``Accept-Encoding``.
    Bodies shorter than ``threshold`` bytes are sent untouched.
    """

    enabled_types: list[CompressionType] = Field(
        default_factory=lambda: [CompressionType.GZIP, CompressionType.DEFLATE],
        description="Enabled encodings in order of preference",
    )
    level: int = Field(default=6, ge=1, le=9, description="Codec compression level")
    threshold: int = Field(
        default=1024, ge=0, description="Minimum body size in bytes to compress"
    )

    @field_validator("enabled_types")
    @classmethod
    def _dedupe(cls, value: list[CompressionType]) -> list[CompressionType]:
        seen: list[CompressionType] = []
        for item in value:
            if item not in seen:
                seen.append(item)
        return seen


class BatchStrategy(str, enum.Enum):
    """How :meth:`~hookhttp.batch.Batch.execute` schedules items.

    * ``SEQUENTIAL`` -- one item at a time, in item order.
    * ``PARALLEL`` -- up to ``concurrency_limit`` items at once.
    * ``FAIL_FAST`` -- one at a time; the first error or HTTP status >= 400
      skips every remaining item.
    """

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    FAIL_FAST = "fail_fast"


class BatchConfig(BaseModel):
    """Batch execution settings.

    Items are split into sub-batches of at most ``max_batch_size`` that
    run one after another. ``batch_timeout`` bounds each sub-batch and
    ``failure_threshold`` stops the batch once the failure rate of the
    items run so far exceeds it.
    """

    concurrency_limit: int = Field(
        default=10, ge=0, description="Max in-flight batch items (0 = unbounded)"
    )
    strategy: BatchStrategy = Field(
        default=BatchStrategy.PARALLEL, description="Default execution strategy"
    )
    max_batch_size: int = Field(default=100, ge=1, description="Items per sub-batch")
    batch_timeout: Optional[float] = Field(
        default=None, gt=0, description="Deadline in seconds per sub-batch (None = none)"
    )
    failure_threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Stop once the failure rate exceeds this fraction (None = never stop)",
    )


class StreamConfig(BaseModel):
    """Streaming transfer settings."""

    chunk_size: Optional[int] = Field(
        default=None,
        gt=0,
        description="Provider read size in bytes (None = provider-determined)",
    )


class RetryConfig(BaseModel):
    """Settings for :func:`~hookhttp.middleware.builtin.retry_middleware`."""

    max_retries: int = Field(default=3, ge=0)
    initial_interval: float = Field(default=0.1, ge=0, description="Seconds")
    multiplier: float = Field(default=2.0, ge=1.0)
    max_interval: float = Field(default=5.0, ge=0, description="Seconds")
    retry_statuses: list[int] = Field(default_factory=lambda: [502, 503, 504])


class ClientConfig(BaseModel):
    """Top-level client configuration.

    Loaded by :func:`~hookhttp.config.resolve_config` or built directly in
    code and passed to :class:`~hookhttp.client.ClientBuilder`.
    """

    base_url: Optional[str] = Field(default=None, description="Prefix for relative targets")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = True
    headers: dict[str, str] = Field(default_factory=dict, description="Default headers")
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    retry: Optional[RetryConfig] = None


# --- Message models ---


@dataclass
class Request:
    """An outbound call description.

    ``body`` is raw bytes, a ``str`` (sent as UTF-8), or any other
    JSON-serialisable value. :meth:`body_bytes` produces the wire form.
    An async iterable of bytes is sent as a streaming body and is never
    buffered or compressed.
    """

    method: str
    url: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Any = None
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @property
    def is_streaming(self) -> bool:
        return isinstance(self.body, AsyncIterable)

    def copy(self) -> Request:
        """Return a copy with its own header map; the body object is shared."""
        return replace(self, headers=httpx.Headers(self.headers))

    def body_bytes(self) -> bytes:
        """Return the body encoded as bytes (empty for ``None``).

        Raises:
            TypeError: If the body is not bytes-like, text, or JSON-serialisable.
        """
        body = self.body
        if body is None:
            return b""
        if self.is_streaming:
            raise TypeError("a streaming body has no in-memory byte form")
        if isinstance(body, bytes):
            return body
        if isinstance(body, (bytearray, memoryview)):
            return bytes(body)
        if isinstance(body, str):
            return body.encode("utf-8")
        return json.dumps(body).encode("utf-8")


@dataclass
class Response:
    """An inbound result."""

    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    elapsed: float = 0.0
    request: Optional[Request] = None

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


def merge_headers(*sources: Optional[Any]) -> httpx.Headers:
    """Merge header mappings left to right; later keys replace earlier ones case-insensitively."""
    merged = httpx.Headers()
    for source in sources:
        if source:
            merged.update(source)
    return merged
