"""Ready-made hooks for common cross-cutting concerns.

Each factory returns a plain :data:`~hookhttp.hooks.base.Hook` callable
that can be registered at any point; hooks that behave differently per
point read ``ctx.hook_point``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Optional

from hookhttp.exceptions import HookHttpError
from hookhttp.hooks.base import Hook, HookPoint, HookResult
from hookhttp.hooks.classifier import ErrorClassifier

if TYPE_CHECKING:
    from hookhttp.context import ExecutionContext
    from hookhttp.hooks.manager import HookManager

_BEFORE_POINTS = frozenset(
    {HookPoint.BEFORE_REQUEST, HookPoint.BEFORE_STREAM, HookPoint.BEFORE_BATCH}
)


def _is_before(ctx: ExecutionContext) -> bool:
    return ctx.hook_point in _BEFORE_POINTS


def logging_hook(logger: Optional[logging.Logger] = None) -> Hook:
    """Log the start, completion, or failure of an operation."""
    log = logger or logging.getLogger("hookhttp.requests")

    def hook(ctx: ExecutionContext) -> None:
        if ctx.hook_point == HookPoint.ON_ERROR:
            log.error("%s %s failed: %s", ctx.method, ctx.target, ctx.error)
        elif _is_before(ctx):
            log.info("Starting %s: %s %s", ctx.operation, ctx.method, ctx.target)
        else:
            status = ctx.response.status_code if ctx.response is not None else "-"
            log.info(
                "Completed %s: %s %s status=%s duration=%.3fs",
                ctx.operation, ctx.method, ctx.target, status, ctx.duration or 0.0,
            )

    return hook


def timing_hook(callback: Callable[[str, str, float], None]) -> Hook:
    """Report ``(method, target, duration_seconds)`` once ``duration`` is known."""

    def hook(ctx: ExecutionContext) -> None:
        if ctx.duration is not None:
            callback(ctx.method, ctx.target, ctx.duration)

    return hook


def metrics_hook(collector: Callable[[str, dict[str, Any]], None]) -> Hook:
    """Emit ``request_started`` / ``request_completed`` / ``request_failed`` events."""

    def hook(ctx: ExecutionContext) -> None:
        data: dict[str, Any] = {
            "operation": ctx.operation,
            "method": ctx.method,
            "target": ctx.target,
        }
        if ctx.hook_point == HookPoint.ON_ERROR:
            data["error"] = str(ctx.error)
            data["duration"] = ctx.duration
            collector("request_failed", data)
        elif _is_before(ctx):
            collector("request_started", data)
        else:
            response = ctx.response
            data["duration"] = ctx.duration
            data["status_code"] = response.status_code if response is not None else None
            data["success"] = response is not None and response.ok
            collector("request_completed", data)

    return hook


def validation_hook(validator: Callable[[ExecutionContext], Optional[BaseException]]) -> Hook:
    """Veto the operation when *validator* returns or raises an error."""

    def hook(ctx: ExecutionContext) -> HookResult:
        try:
            problem = validator(ctx)
        except Exception as exc:
            problem = exc
        if problem is not None:
            return HookResult.abort(problem)
        return HookResult.ok()

    return hook


def classification_hook(
    classifier: Optional[ErrorClassifier] = None, key: str = "error_category"
) -> Hook:
    """Store the category of ``ctx.error`` in ``ctx.metadata[key]`` (for ``ON_ERROR``)."""
    active = classifier or ErrorClassifier()

    def hook(ctx: ExecutionContext) -> None:
        if ctx.error is not None:
            ctx.metadata[key] = active.classify(ctx.error)

    return hook


class CircuitOpenError(HookHttpError):
    """Reported by :class:`CircuitBreaker` while the circuit is open."""

    code = "circuit_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker built from three hooks.

    After ``max_failures`` consecutive failures (provider errors or 5xx
    responses) the circuit opens and every ``BEFORE_REQUEST`` dispatch is
    vetoed with :class:`CircuitOpenError` until a success or :meth:`reset`.
    """

    def __init__(self, max_failures: int = 5) -> None:
        self._max_failures = max_failures
        self._failures = 0
        self._open = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._open

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._open = False

    def install(self, manager: HookManager) -> CircuitBreaker:
        manager.register_hook(HookPoint.BEFORE_REQUEST, self.before_request)
        manager.register_hook(HookPoint.AFTER_RESPONSE, self.after_response)
        manager.register_hook(HookPoint.ON_ERROR, self.on_error)
        return self

    def before_request(self, ctx: ExecutionContext) -> HookResult:
        if self.is_open:
            return HookResult.abort(CircuitOpenError("circuit breaker is open"))
        return HookResult.ok()

    def after_response(self, ctx: ExecutionContext) -> None:
        response = ctx.response
        if response is not None and response.status_code >= 500:
            self._record_failure()
        else:
            self.reset()

    def on_error(self, ctx: ExecutionContext) -> None:
        if isinstance(ctx.error, HookHttpError) and ctx.error.root_code == "circuit_open":
            return
        self._record_failure()

    def _record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._failures >= self._max_failures:
                self._open = True
