"""Hook lifecycle points, results, and registration descriptors.

A hook is a single callable type::

    def hook(ctx: ExecutionContext) -> HookResult | None: ...

keyed by a lifecycle point. Built-in points are members of
:class:`HookPoint`; applications may define their own points as plain
integers greater than or equal to :data:`CUSTOM_HOOK_BASE` and register
them with :meth:`~hookhttp.hooks.manager.HookManager.register_custom_hook`.

Returning ``None`` is equivalent to returning :meth:`HookResult.ok`.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from hookhttp.context import ExecutionContext


CUSTOM_HOOK_BASE = 1000
"""First integer available for application-defined hook points."""


class HookPoint(enum.IntEnum):
    """Built-in lifecycle points at which hooks may run."""

    BEFORE_REQUEST = 0
    AFTER_RESPONSE = 1
    BEFORE_STREAM = 2
    AFTER_STREAM = 3
    BEFORE_BATCH = 4
    AFTER_BATCH = 5
    ON_ERROR = 6


@dataclass
class HookResult:
    """Outcome of one hook invocation.

    Attributes:
        proceed: ``False`` stops dispatch for the current point; at a
            ``BEFORE_*`` point it also aborts the operation.
        error: Optional error reported by the hook (surfaced to the caller
            as the cause of :class:`~hookhttp.exceptions.HookAbortError`).
        context: Optional replacement context handed to subsequent hooks.
    """

    proceed: bool = True
    error: Optional[BaseException] = None
    context: Optional[ExecutionContext] = None

    @classmethod
    def ok(cls, context: Optional[ExecutionContext] = None) -> HookResult:
        return cls(proceed=True, context=context)

    @classmethod
    def abort(cls, error: Optional[BaseException] = None) -> HookResult:
        return cls(proceed=False, error=error)


Hook = Callable[["ExecutionContext"], Optional[HookResult]]
"""Signature shared by every hook, built-in or custom."""

PointLike = Union[HookPoint, int]


@dataclass(frozen=True)
class HookDescriptor:
    """Introspection record for one registered hook.

    ``name`` is only set for custom hooks.
    """

    point: int
    handler: Hook
    name: Optional[str] = None

    @property
    def is_custom(self) -> bool:
        return self.point >= CUSTOM_HOOK_BASE
