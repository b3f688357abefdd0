"""Stream handler contract and ready-made handlers.

A :class:`StreamHandler` receives ``on_data`` once per chunk in arrival
order and then exactly one terminal callback: ``on_complete`` after a
clean end, or ``on_error`` after a failure. Raising from ``on_data``
aborts the transfer and the raised error is delivered to ``on_error``.
"""

from __future__ import annotations

import codecs
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import BinaryIO, Optional


class StreamHandler(ABC):
    """Caller callback set driven by :class:`~hookhttp.streaming.engine.StreamEngine`."""

    @abstractmethod
    def on_data(self, chunk: bytes) -> None:
        """Handle one chunk. Raise to abort the transfer."""

    def on_error(self, error: BaseException) -> None:
        """Called once when the transfer fails."""

    def on_complete(self) -> None:
        """Called once when the transfer ends cleanly."""


class CallbackHandler(StreamHandler):
    """Adapt plain functions to the :class:`StreamHandler` contract."""

    def __init__(
        self,
        on_data: Callable[[bytes], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        self._on_data = on_data
        self._on_error = on_error
        self._on_complete = on_complete

    def on_data(self, chunk: bytes) -> None:
        self._on_data(chunk)

    def on_error(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def on_complete(self) -> None:
        if self._on_complete is not None:
            self._on_complete()


class ChunkedHandler(StreamHandler):
    """Collect every chunk; ``data`` joins them once the stream completes."""

    def __init__(self, on_error: Optional[Callable[[BaseException], None]] = None) -> None:
        self.chunks: list[bytes] = []
        self.error: Optional[BaseException] = None
        self.completed = False
        self._on_error = on_error

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)

    def on_data(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def on_error(self, error: BaseException) -> None:
        self.error = error
        if self._on_error is not None:
            self._on_error(error)

    def on_complete(self) -> None:
        self.completed = True


@dataclass
class SSEEvent:
    """One Server-Sent Event."""

    data: str = ""
    event: str = ""
    id: str = ""
    retry: Optional[int] = None


class ServerSentEventsHandler(StreamHandler):
    """Parse a ``text/event-stream`` body into :class:`SSEEvent` objects.

    Lines may be split across chunks; incomplete lines are kept until the
    next chunk arrives. A trailing event without a blank line is emitted on
    completion.
    """

    def __init__(
        self,
        on_event: Callable[[SSEEvent], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._on_event = on_event
        self._on_error = on_error
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._current: Optional[SSEEvent] = None

    def on_data(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._feed_line(line.rstrip("\r"))

    def on_error(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def on_complete(self) -> None:
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer:
            self._feed_line(self._buffer.rstrip("\r"))
            self._buffer = ""
        self._dispatch()

    def _feed_line(self, line: str) -> None:
        if not line:
            self._dispatch()
            return
        if line.startswith(":"):
            return

        name, sep, value = line.partition(":")
        if not sep:
            value = ""
        elif value.startswith(" "):
            value = value[1:]

        if self._current is None:
            self._current = SSEEvent()
        event = self._current
        if name == "data":
            event.data = f"{event.data}\n{value}" if event.data else value
        elif name == "event":
            event.event = value
        elif name == "id":
            event.id = value
        elif name == "retry" and value.isdigit():
            event.retry = int(value)

    def _dispatch(self) -> None:
        if self._current is not None:
            event, self._current = self._current, None
            self._on_event(event)


class ProgressHandler(StreamHandler):
    """Report ``(processed, total, percentage)`` after every chunk.

    ``total`` may be ``0`` when unknown, in which case percentage stays
    ``0.0`` until completion reports ``100.0``.
    """

    def __init__(
        self,
        total_size: int,
        on_progress: Callable[[int, int, float], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self.total_size = total_size
        self.processed = 0
        self._on_progress = on_progress
        self._on_error = on_error

    def on_data(self, chunk: bytes) -> None:
        self.processed += len(chunk)
        percentage = self.processed / self.total_size * 100 if self.total_size > 0 else 0.0
        self._on_progress(self.processed, self.total_size, percentage)

    def on_error(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def on_complete(self) -> None:
        self._on_progress(self.processed, self.total_size, 100.0)


class FileHandler(StreamHandler):
    """Write every chunk to a binary file object."""

    def __init__(
        self,
        writer: BinaryIO,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._writer = writer
        self._on_error = on_error
        self.bytes_written = 0

    def on_data(self, chunk: bytes) -> None:
        self.bytes_written += self._writer.write(chunk) or 0

    def on_error(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def on_complete(self) -> None:
        self._writer.flush()


class CompositeHandler(StreamHandler):
    """Fan each callback out to several handlers, in order.

    ``on_data`` stops at the first handler that raises.
    """

    def __init__(self, *handlers: StreamHandler) -> None:
        self._handlers = handlers

    def on_data(self, chunk: bytes) -> None:
        for handler in self._handlers:
            handler.on_data(chunk)

    def on_error(self, error: BaseException) -> None:
        for handler in self._handlers:
            handler.on_error(error)

    def on_complete(self) -> None:
        for handler in self._handlers:
            handler.on_complete()


class BufferedHandler(StreamHandler):
    """Coalesce small chunks into blocks of at least ``buffer_size`` bytes.

    Remaining bytes are flushed to the wrapped handler on completion.
    """

    def __init__(self, buffer_size: int, handler: StreamHandler) -> None:
        self._buffer = bytearray()
        self._buffer_size = buffer_size
        self._handler = handler

    def on_data(self, chunk: bytes) -> None:
        self._buffer += chunk
        if len(self._buffer) >= self._buffer_size:
            self._flush()

    def on_error(self, error: BaseException) -> None:
        self._handler.on_error(error)

    def on_complete(self) -> None:
        if self._buffer:
            self._flush()
        self._handler.on_complete()

    def _flush(self) -> None:
        block = bytes(self._buffer)
        self._buffer.clear()
        self._handler.on_data(block)
