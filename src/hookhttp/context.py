"""Per-operation execution context and the cancellation token.

This module provides two core components:

* :class:`CancelToken` -- a cancellation/deadline token threaded through
  the middleware chain, hook dispatch, provider calls, stream read loops
  and batch units. Awaiting through :meth:`CancelToken.guard` makes any
  pending await return promptly once the token fires.
* :class:`ExecutionContext` -- a mutable dataclass describing one operation.
  Fields are progressively populated as the call advances and the same
  instance is handed to every hook registered for the operation.
"""

from __future__ import annotations

import asyncio
import time
import weakref
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, Optional, TypeVar

from hookhttp.exceptions import CancellationError
from hookhttp.models import Request, Response

T = TypeVar("T")


class CancelToken:
    """Cancellation and deadline token for asyncio code.

    A token is cancelled explicitly with :meth:`cancel` or implicitly when
    its deadline passes. Child tokens created with :meth:`child` are
    cancelled together with their parent and never outlive its deadline.

    Args:
        timeout: Optional number of seconds from now after which the token
            counts as cancelled (deadline exceeded).

    Example::

        token = CancelToken(timeout=5)
        response = await client.get("/users", token=token)
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = asyncio.Event()
        self._deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )
        self._reason: Optional[str] = None
        self._children: weakref.WeakSet[CancelToken] = weakref.WeakSet()

    @property
    def deadline(self) -> Optional[float]:
        """Deadline on the :func:`time.monotonic` clock, or ``None``."""
        return self._deadline

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """Whether the token was cancelled or its deadline has passed."""
        return self._event.is_set() or self.deadline_exceeded

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline (never negative), or ``None``."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Cancel this token and every child token."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def child(self, timeout: Optional[float] = None) -> CancelToken:
        """Create a token that is cancelled with this one.

        The child's deadline is the earlier of this token's deadline and
        ``timeout`` seconds from now.
        """
        token = CancelToken(timeout)
        if self._deadline is not None and (
            token._deadline is None or self._deadline < token._deadline
        ):
            token._deadline = self._deadline
        self._children.add(token)
        if self._event.is_set():
            token.cancel(self._reason or "operation cancelled")
        return token

    def error(self) -> CancellationError:
        """Build the :class:`CancellationError` describing why the token fired."""
        if self._event.is_set():
            return CancellationError(self._reason or "operation cancelled")
        return CancellationError("deadline exceeded", deadline_exceeded=True)

    def check(self) -> None:
        """Raise :class:`CancellationError` if the token has fired."""
        if self.cancelled:
            raise self.error()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        When the token is cancelled or the deadline passes while waiting,
        the inner task is cancelled and :class:`CancellationError` is
        raised without waiting for the inner operation to finish.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self.error()

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds, raising early if the token fires."""
        await self.guard(asyncio.sleep(delay))


@dataclass
class ExecutionContext:
    """Mutable per-operation telemetry and control surface.

    * **Creation**: ``operation``, ``method``, ``target``, ``token`` and
      ``started_at`` are set when the call starts.
    * **Provider call**: ``request`` is attached before dispatch;
      ``duration`` is set only once the provider call returns, whether it
      succeeded or failed.
    * **Completion**: ``response`` on success, ``error`` on failure
      (``error`` stays ``None`` on success).

    Hooks may mutate the context to influence hooks that run after them.
    ``hook_point`` is updated by the hook manager to the lifecycle point
    currently being dispatched.

    Attributes:
        operation: Operation kind: ``"request"``, ``"upload"``, ``"stream"``
            or ``"batch"``.
        method: HTTP method.
        target: URL or path as given by the caller.
        args: Operation arguments (e.g. batch size, chunk counts).
        metadata: Free-form data shared between hooks.
    """

    operation: str = "request"
    method: str = ""
    target: str = ""
    args: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)
    duration: Optional[float] = None
    error: Optional[BaseException] = None
    request: Optional[Request] = None
    response: Optional[Response] = None
    token: Optional[CancelToken] = None
    hook_point: Optional[int] = None

    def mark_finished(self) -> float:
        """Record ``duration`` relative to ``started_at`` and return it."""
        self.duration = time.monotonic() - self.started_at
        return self.duration
