"""Chunked streaming transfer."""

from hookhttp.streaming.engine import StreamEngine, StreamResult
from hookhttp.streaming.handlers import (
    BufferedHandler,
    CallbackHandler,
    ChunkedHandler,
    CompositeHandler,
    FileHandler,
    ProgressHandler,
    ServerSentEventsHandler,
    SSEEvent,
    StreamHandler,
)

__all__ = [
    "BufferedHandler",
    "CallbackHandler",
    "ChunkedHandler",
    "CompositeHandler",
    "FileHandler",
    "ProgressHandler",
    "SSEEvent",
    "ServerSentEventsHandler",
    "StreamEngine",
    "StreamHandler",
    "StreamResult",
]
