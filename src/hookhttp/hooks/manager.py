"""Hook manager -- registration, introspection, and ordered dispatch.

:class:`HookManager` owns the ordered hook lists of one
:class:`~hookhttp.client.Client`. Registration replaces the per-point
tuple under a lock (copy-on-write), so dispatch reads a consistent
snapshot without locking and concurrent dispatches never block each other.

Dispatch is synchronous and strictly ordered: later hooks (e.g. metrics)
can rely on earlier hooks (e.g. timing) having populated the context, and
a security hook can veto the operation before it reaches the provider.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from hookhttp.exceptions import (
    DuplicateHookNameError,
    InvalidHookPointError,
    ValidationError,
)
from hookhttp.hooks.base import (
    CUSTOM_HOOK_BASE,
    Hook,
    HookDescriptor,
    HookPoint,
    HookResult,
    PointLike,
)

if TYPE_CHECKING:
    from hookhttp.context import ExecutionContext

logger = logging.getLogger(__name__)


def _point_label(point: int) -> str:
    try:
        return HookPoint(point).name
    except ValueError:
        return f"custom:{point}"


class HookManager:
    """Registry and synchronous dispatcher for lifecycle hooks.

    Example::

        manager = HookManager()
        manager.register_hook(HookPoint.BEFORE_REQUEST, audit)
        manager.register_custom_hook(CUSTOM_HOOK_BASE + 1, "cache-warm", warm)
        result = manager.dispatch(HookPoint.BEFORE_REQUEST, ctx)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hooks: dict[int, tuple[HookDescriptor, ...]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_hook(self, point: PointLike, handler: Hook) -> None:
        """Append *handler* to the ordered list for a built-in *point*.

        Raises:
            InvalidHookPointError: If *point* is in the custom range or is
                not a known :class:`HookPoint`.
            ValidationError: If *handler* is not callable.
        """
        if point >= CUSTOM_HOOK_BASE:
            raise InvalidHookPointError(
                f"hook point {point} is in the custom range; use register_custom_hook"
            )
        try:
            builtin = HookPoint(point)
        except ValueError:
            raise InvalidHookPointError(f"unknown hook point {point}") from None
        self._check_handler(handler)
        self._append(HookDescriptor(point=int(builtin), handler=handler))

    def register_custom_hook(self, point: int, name: str, handler: Hook) -> None:
        """Append a named *handler* for an application-defined *point*.

        Raises:
            InvalidHookPointError: If ``point < CUSTOM_HOOK_BASE``.
            ValidationError: If *name* is empty or *handler* is not callable.
            DuplicateHookNameError: If *name* is already registered at *point*.
        """
        if point < CUSTOM_HOOK_BASE:
            raise InvalidHookPointError(
                f"custom hook point must be >= {CUSTOM_HOOK_BASE}, got {point}"
            )
        if not name:
            raise ValidationError("custom hook name cannot be empty")
        self._check_handler(handler)

        with self._lock:
            existing = self._hooks.get(point, ())
            if any(d.name == name for d in existing):
                raise DuplicateHookNameError(
                    f"custom hook '{name}' already registered at point {point}"
                )
            self._hooks[point] = existing + (
                HookDescriptor(point=point, handler=handler, name=name),
            )
        logger.debug("Registered custom hook '%s' at %s", name, _point_label(point))

    def unregister_hook(self, point: PointLike) -> int:
        """Remove every hook registered at *point* and return how many were removed."""
        with self._lock:
            removed = self._hooks.pop(int(point), ())
        return len(removed)

    def unregister_custom_hook(self, point: int, name: str) -> bool:
        """Remove the custom hook *name* at *point*. Returns ``True`` if found."""
        with self._lock:
            existing = self._hooks.get(point, ())
            kept = tuple(d for d in existing if d.name != name)
            if len(kept) == len(existing):
                return False
            if kept:
                self._hooks[point] = kept
            else:
                del self._hooks[point]
        return True

    def clear(self) -> None:
        """Remove all registered hooks."""
        with self._lock:
            self._hooks = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def list_hooks(self) -> dict[int, list[HookDescriptor]]:
        """Return a copy of the registrations, keyed by point, in registration order."""
        snapshot = self._hooks
        return {point: list(descs) for point, descs in snapshot.items()}

    def hook_count(self, point: PointLike) -> int:
        return len(self._hooks.get(int(point), ()))

    def has_hooks(self, point: PointLike) -> bool:
        return self.hook_count(point) > 0

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, point: PointLike, ctx: ExecutionContext) -> HookResult:
        """Run the hooks for *point* in order, stopping at the first abort.

        The context returned by a hook (``HookResult.context``) replaces
        the one handed to the next hook. A hook that raises is treated as
        if it had returned ``HookResult.abort(exc)``.

        Returns:
            The aborting hook's result (``proceed=False``) or a final
            ``HookResult(proceed=True)`` carrying the last context.
        """
        descriptors = self._hooks.get(int(point), ())
        for index, descriptor in enumerate(descriptors):
            ctx.hook_point = int(point)
            try:
                result = descriptor.handler(ctx)
            except Exception as exc:
                logger.debug(
                    "Hook %d at %s raised %r; aborting dispatch",
                    index, _point_label(point), exc,
                )
                return HookResult(proceed=False, error=exc, context=ctx)
            if result is None:
                continue
            if result.context is not None:
                ctx = result.context
            if not result.proceed:
                logger.debug("Hook %d at %s aborted dispatch", index, _point_label(point))
                return HookResult(proceed=False, error=result.error, context=ctx)
        return HookResult(proceed=True, context=ctx)

    def dispatch_all(self, point: PointLike, ctx: ExecutionContext) -> list[BaseException]:
        """Run every hook for *point* to completion (``ON_ERROR`` semantics).

        Failures -- a hook raising, or returning an error -- are logged and
        collected but never raised, so they cannot mask the error that
        triggered the dispatch.

        Returns:
            The errors reported or raised by hooks, in order.
        """
        failures: list[BaseException] = []
        for descriptor in self._hooks.get(int(point), ()):
            ctx.hook_point = int(point)
            try:
                result = descriptor.handler(ctx)
            except Exception as exc:
                logger.warning("Error hook at %s failed: %s", _point_label(point), exc)
                failures.append(exc)
                continue
            if result is None:
                continue
            if result.context is not None:
                ctx = result.context
            if result.error is not None:
                logger.warning(
                    "Error hook at %s reported: %s", _point_label(point), result.error
                )
                failures.append(result.error)
        return failures

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append(self, descriptor: HookDescriptor) -> None:
        with self._lock:
            self._hooks[descriptor.point] = self._hooks.get(descriptor.point, ()) + (
                descriptor,
            )
        logger.debug("Registered hook at %s", _point_label(descriptor.point))

    @staticmethod
    def _check_handler(handler: Hook) -> None:
        if handler is None or not callable(handler):
            raise ValidationError("hook handler must be callable")
