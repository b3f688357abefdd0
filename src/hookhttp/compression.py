"""Transparent request/response compression.

:class:`Compressor` encodes outbound bodies and decodes inbound bodies
according to a :class:`~hookhttp.models.CompressionConfig`. Negotiation is
purely threshold + enabled-set based: the first enabled coding is used for
requests, and every enabled coding is advertised in ``Accept-Encoding``.

Supported codings:

* ``gzip`` (also accepted as ``x-gzip`` when decoding)
* ``deflate`` -- the zlib format (RFC 1950). Decoding also accepts raw
  deflate streams sent by servers that ignore the RFC.

Aggregate savings are tracked in a :class:`Statistics` instance that lives
as long as the compressor.
"""

from __future__ import annotations

import gzip
import logging
import threading
import zlib
from dataclasses import dataclass
from typing import Optional

from hookhttp.exceptions import EncodingError
from hookhttp.models import CompressionConfig, CompressionType, Request, Response

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"

# wbits for zlib.decompressobj per coding
_GZIP_WBITS = 16 + zlib.MAX_WBITS
_ZLIB_WBITS = zlib.MAX_WBITS
_RAW_WBITS = -zlib.MAX_WBITS

_DECODABLE = {
    "gzip": CompressionType.GZIP,
    "x-gzip": CompressionType.GZIP,
    "deflate": CompressionType.DEFLATE,
}


def compression_ratio(original: bytes, compressed: bytes) -> float:
    """Return ``len(compressed) / len(original)`` (``0.0`` for empty input).

    Ratios above ``1.0`` are reported as-is: compressing tiny inputs can
    expand them.
    """
    if not original:
        return 0.0
    return len(compressed) / len(original)


def savings(original: bytes, compressed: bytes) -> float:
    """Return the space saved as a percentage: ``(1 - ratio) * 100``."""
    return (1.0 - compression_ratio(original, compressed)) * 100.0


def is_compressed(data: bytes) -> bool:
    """Sniff gzip (``1F 8B``) or zlib headers at the start of *data*.

    A zlib header is a ``0x78`` CMF byte (deflate, 32K window) followed by
    an FLG byte that makes the 16-bit header a multiple of 31. Inputs
    shorter than two bytes are never classified as compressed.
    """
    if len(data) < 2:
        return False
    if data[:2] == _GZIP_MAGIC:
        return True
    return data[0] == 0x78 and ((data[0] << 8) | data[1]) % 31 == 0


def _normalise(encoding: Optional[str]) -> str:
    return (encoding or "").strip().lower()


@dataclass
class Statistics:
    """Cumulative compression metrics.

    ``compression_ratio`` is the running mean of per-operation ratios, not a
    global byte ratio.
    """

    requests_compressed: int = 0
    responses_decompressed: int = 0
    bytes_saved_request: int = 0
    bytes_saved_response: int = 0
    compression_ratio: float = 0.0

    def add_request_compression(self, original_size: int, compressed_size: int) -> None:
        self.requests_compressed += 1
        self.bytes_saved_request += original_size - compressed_size
        self._update_ratio(original_size, compressed_size)

    def add_response_decompression(self, compressed_size: int, decompressed_size: int) -> None:
        self.responses_decompressed += 1
        self.bytes_saved_response += decompressed_size - compressed_size
        self._update_ratio(decompressed_size, compressed_size)

    def savings_percentage(self) -> float:
        return (1.0 - self.compression_ratio) * 100.0

    def _update_ratio(self, original_size: int, compressed_size: int) -> None:
        if original_size == 0:
            return
        ratio = compressed_size / original_size
        total = self.requests_compressed + self.responses_decompressed
        if total <= 1:
            self.compression_ratio = ratio
        else:
            self.compression_ratio = (self.compression_ratio * (total - 1) + ratio) / total


class StreamDecoder:
    """Incremental decoder for one compressed stream."""

    def __init__(self, coding: CompressionType) -> None:
        self._coding = coding
        self._decoder: Optional[zlib._Decompress] = None
        self._first = True

    def decode(self, chunk: bytes) -> bytes:
        """Decode *chunk*, returning whatever output is available so far."""
        try:
            if self._decoder is None:
                self._decoder = zlib.decompressobj(self._wbits_for(chunk))
            return self._decoder.decompress(chunk)
        except zlib.error as exc:
            raise EncodingError(f"failed to decode {self._coding.value} stream: {exc}") from exc

    def flush(self) -> bytes:
        if self._decoder is None:
            return b""
        try:
            return self._decoder.flush()
        except zlib.error as exc:
            raise EncodingError(f"failed to flush {self._coding.value} stream: {exc}") from exc

    def _wbits_for(self, first_chunk: bytes) -> int:
        if self._coding is CompressionType.GZIP:
            return _GZIP_WBITS
        return _ZLIB_WBITS if is_compressed(first_chunk) else _RAW_WBITS


class Compressor:
    """Encode request bodies and decode response bodies.

    Args:
        config: Compression policy. Defaults to gzip + deflate, level 6,
            1 KiB threshold.

    Example::

        compressor = Compressor(CompressionConfig(threshold=256))
        compressor.compress_request(request)
        ...
        compressor.decompress_response(response)
    """

    def __init__(self, config: Optional[CompressionConfig] = None) -> None:
        self._config = config or CompressionConfig()
        self._stats = Statistics()
        self._stats_lock = threading.Lock()

    @property
    def config(self) -> CompressionConfig:
        return self._config

    @property
    def statistics(self) -> Statistics:
        """A snapshot copy of the cumulative statistics."""
        with self._stats_lock:
            return Statistics(**vars(self._stats))

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self._stats = Statistics()

    def accept_encoding(self) -> str:
        """Value for an ``Accept-Encoding`` header advertising the enabled codings."""
        return ", ".join(t.value for t in self._config.enabled_types)

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def prepare_request(self, request: Request) -> None:
        """Advertise enabled codings (if the caller did not) and compress the body."""
        if self._config.enabled_types and "accept-encoding" not in request.headers:
            request.headers["Accept-Encoding"] = self.accept_encoding()
        self.compress_request(request)

    def compress_request(self, request: Request) -> None:
        """Compress ``request.body`` in place when it reaches the threshold.

        No-op for empty or streaming bodies, bodies below the threshold,
        requests that already carry ``Content-Encoding``, and when no coding
        is enabled. The compressed body is only used when it is smaller.

        Raises:
            EncodingError: If the body cannot be converted to bytes or the
                codec fails.
        """
        if request.body is None or request.is_streaming:
            return
        if "content-encoding" in request.headers:
            return
        if not self._config.enabled_types:
            return
        try:
            original = request.body_bytes()
        except (TypeError, ValueError) as exc:
            raise EncodingError(
                f"unsupported body type {type(request.body).__name__}: {exc}"
            ) from exc
        if not original or len(original) < self._config.threshold:
            return

        coding = self._config.enabled_types[0]
        compressed = self.encode(original, coding)
        if len(compressed) >= len(original):
            logger.debug(
                "Skipping %s for %s %s: no size reduction", coding.value, request.method, request.url
            )
            return

        request.body = compressed
        request.headers["Content-Encoding"] = coding.value
        request.headers["Content-Length"] = str(len(compressed))
        with self._stats_lock:
            self._stats.add_request_compression(len(original), len(compressed))
        logger.debug(
            "Compressed %s %s body with %s: %d -> %d bytes",
            request.method, request.url, coding.value, len(original), len(compressed),
        )

    # ------------------------------------------------------------------ #
    # Responses
    # ------------------------------------------------------------------ #

    def decompress_response(self, response: Response) -> None:
        """Decode ``response.body`` in place according to ``Content-Encoding``.

        Absent or unrecognised codings leave the response untouched.

        Raises:
            EncodingError: If the codec fails.
        """
        coding = self.recognise(response.headers.get("content-encoding"))
        if coding is None or not response.body:
            return
        compressed = response.body
        decoded = self.decode(compressed, coding)
        response.body = decoded
        del response.headers["content-encoding"]
        response.headers["Content-Length"] = str(len(decoded))
        with self._stats_lock:
            self._stats.add_response_decompression(len(compressed), len(decoded))

    def stream_decoder(self, encoding: Optional[str]) -> Optional[StreamDecoder]:
        """Return an incremental decoder for *encoding*, or ``None`` if unrecognised."""
        coding = self.recognise(encoding)
        return StreamDecoder(coding) if coding is not None else None

    @staticmethod
    def recognise(encoding: Optional[str]) -> Optional[CompressionType]:
        return _DECODABLE.get(_normalise(encoding))

    # ------------------------------------------------------------------ #
    # Codecs
    # ------------------------------------------------------------------ #

    def encode(self, data: bytes, coding: CompressionType) -> bytes:
        level = self._config.level
        try:
            if coding is CompressionType.GZIP:
                return gzip.compress(data, compresslevel=level)
            if coding is CompressionType.DEFLATE:
                return zlib.compress(data, level)
        except (zlib.error, OSError) as exc:
            raise EncodingError(f"{coding.value} compression failed: {exc}") from exc
        raise EncodingError(f"unsupported compression type: {coding}")

    @staticmethod
    def decode(data: bytes, coding: CompressionType) -> bytes:
        try:
            if coding is CompressionType.GZIP:
                return gzip.decompress(data)
            if coding is CompressionType.DEFLATE:
                wbits = _ZLIB_WBITS if is_compressed(data) else _RAW_WBITS
                return zlib.decompress(data, wbits)
        except (zlib.error, OSError, EOFError) as exc:
            raise EncodingError(f"{coding.value} decompression failed: {exc}") from exc
        raise EncodingError(f"unsupported compression type: {coding}")

    def compression_ratio(self, original: bytes, compressed: bytes) -> float:
        return compression_ratio(original, compressed)

    def savings(self, original: bytes, compressed: bytes) -> float:
        return savings(original, compressed)
