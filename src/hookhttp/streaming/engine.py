"""Stream transfer engine -- drives a provider read loop into a handler.

:class:`StreamEngine` opens a provider stream, decodes content coding
incrementally, and hands each chunk to a
:class:`~hookhttp.streaming.handlers.StreamHandler` in arrival order. The
whole read loop runs under the caller's
:class:`~hookhttp.context.CancelToken`, so cancelling the token abandons
the pending read immediately.

A handler receives exactly one terminal callback. Every transfer failure
-- hook veto, provider error, HTTP error status, handler error,
cancellation -- is delivered once through ``handler.on_error``. A failure
raised by ``on_complete`` is recorded in the result and passed to ON_ERROR
hooks only; one raised by ``on_error`` is logged. :meth:`StreamEngine.stream`
only raises for programming errors, and returns a :class:`StreamResult`
summary.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from hookhttp.compression import Compressor
from hookhttp.context import CancelToken, ExecutionContext
from hookhttp.exceptions import (
    HookAbortError,
    HookHttpError,
    TransportError,
    ValidationError,
)
from hookhttp.hooks.base import HookPoint
from hookhttp.hooks.manager import HookManager
from hookhttp.models import Request, merge_headers
from hookhttp.providers.base import Provider
from hookhttp.streaming.handlers import StreamHandler

logger = logging.getLogger(__name__)


@dataclass
class StreamResult:
    """Summary of one streaming transfer."""

    chunks: int = 0
    bytes_received: int = 0
    status_code: Optional[int] = None
    completed: bool = False
    error: Optional[BaseException] = None


class _HandlerFailure(Exception):
    """Carries an error raised by ``handler.on_data`` out of the read loop."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


class StreamEngine:
    """Run streaming transfers against a provider.

    Args:
        provider: Transport used to open the stream.
        hooks: Hook manager dispatched at ``BEFORE_STREAM``,
            ``AFTER_STREAM`` and ``ON_ERROR``.
        compressor: Optional compressor used to advertise and decode
            content coding.
        default_headers: Headers merged under per-call headers.
        timeout: Connect/write timeout handed to the provider.
    """

    def __init__(
        self,
        provider: Provider,
        hooks: Optional[HookManager] = None,
        compressor: Optional[Compressor] = None,
        default_headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._provider = provider
        self._hooks = hooks or HookManager()
        self._compressor = compressor
        self._default_headers = dict(default_headers or {})
        self._timeout = timeout

    async def stream(
        self,
        method: str,
        target: str,
        handler: StreamHandler,
        *,
        token: Optional[CancelToken] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ) -> StreamResult:
        """Stream ``method target`` into *handler*.

        Raises:
            ValidationError: If *handler* is ``None``.
        """
        if handler is None:
            raise ValidationError("stream handler cannot be None", method=method, target=target)

        token = token or CancelToken()
        request = Request(
            method=method,
            url=target,
            headers=merge_headers(self._default_headers, headers),
            body=body,
            timeout=self._timeout,
        )
        ctx = ExecutionContext(
            operation="stream",
            method=request.method,
            target=target,
            request=request,
            token=token,
        )
        result = StreamResult()

        error: Optional[BaseException] = None
        try:
            token.check()
            verdict = self._hooks.dispatch(HookPoint.BEFORE_STREAM, ctx)
            ctx = verdict.context or ctx
            if not verdict.proceed:
                raise HookAbortError(
                    "stream vetoed by hook", hook_error=verdict.error
                ) from verdict.error
            if self._compressor is not None:
                self._compressor.prepare_request(request)
            await token.guard(self._transfer(request, handler, result))
        except _HandlerFailure as failure:
            error = failure.error
        except HookHttpError as exc:
            error = exc.with_operation(request.method, target)
        except Exception as exc:
            error = TransportError(
                f"stream failed: {exc}", method=request.method, target=target
            )
            error.__cause__ = exc

        ctx.mark_finished()
        ctx.args.update(chunks=result.chunks, bytes_received=result.bytes_received)

        completion_failed = False
        if error is None:
            try:
                handler.on_complete()
            except Exception as exc:
                error = exc
                completion_failed = True

        if error is None:
            result.completed = True
            ctx = self._hooks.dispatch(HookPoint.AFTER_STREAM, ctx).context or ctx
            logger.debug(
                "Stream %s %s completed: %d chunks, %d bytes",
                request.method, target, result.chunks, result.bytes_received,
            )
        else:
            result.error = error
            ctx.error = error
            self._hooks.dispatch_all(HookPoint.ON_ERROR, ctx)
            logger.debug("Stream %s %s failed: %s", request.method, target, error)
            if not completion_failed:
                self._notify_error(handler, error)
        return result

    async def _transfer(
        self, request: Request, handler: StreamHandler, result: StreamResult
    ) -> None:
        async with self._provider.open_stream(request) as stream:
            result.status_code = stream.status_code
            if stream.status_code >= 400:
                raise TransportError(
                    f"HTTP error: {stream.status_code}", status_code=stream.status_code
                )

            decoder = None
            if self._compressor is not None:
                decoder = self._compressor.stream_decoder(stream.headers.get("content-encoding"))

            async for chunk in stream.chunks():
                result.bytes_received += len(chunk)
                if decoder is not None:
                    chunk = decoder.decode(chunk)
                    if not chunk:
                        continue
                self._deliver(handler, chunk, result)

            if decoder is not None:
                tail = decoder.flush()
                if tail:
                    self._deliver(handler, tail, result)

    @staticmethod
    def _notify_error(handler: StreamHandler, error: BaseException) -> None:
        try:
            handler.on_error(error)
        except Exception as exc:
            logger.warning("Stream handler on_error raised %r while handling %r", exc, error)

    @staticmethod
    def _deliver(handler: StreamHandler, chunk: bytes, result: StreamResult) -> None:
        result.chunks += 1
        try:
            handler.on_data(chunk)
        except Exception as exc:
            raise _HandlerFailure(exc) from exc
