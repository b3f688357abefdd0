"""Typed lifecycle hooks.

Hooks are plain callables ``(ExecutionContext) -> HookResult | None``
registered on a :class:`HookManager` at a :class:`HookPoint` or at a custom
integer point ``>= CUSTOM_HOOK_BASE``.
"""

from hookhttp.hooks.base import (
    CUSTOM_HOOK_BASE,
    Hook,
    HookDescriptor,
    HookPoint,
    HookResult,
)
from hookhttp.hooks.classifier import ClassifierRule, ErrorCategory, ErrorClassifier
from hookhttp.hooks.manager import HookManager

__all__ = [
    "CUSTOM_HOOK_BASE",
    "ClassifierRule",
    "ErrorCategory",
    "ErrorClassifier",
    "Hook",
    "HookDescriptor",
    "HookManager",
    "HookPoint",
    "HookResult",
]
