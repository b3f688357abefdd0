"""Exception hierarchy for hookhttp.

All exceptions inherit from :class:`HookHttpError`, which carries a stable
``code`` string plus the ``method`` and ``target`` of the operation that
failed. Callers (and tests) should branch on the exception *type* or on
``code`` rather than on message text.

Subclass hierarchy::

    HookHttpError            (code "error")
    +-- ValidationError      (code "validation")
    |   +-- InvalidHookPointError
    |   +-- DuplicateHookNameError
    +-- EncodingError        (code "encoding")
    +-- TransportError       (code "transport")
    +-- CancellationError    (code "cancelled")
    +-- HookAbortError       (code "hook_aborted")
    +-- MiddlewareError      (code "middleware")
    +-- BatchAbortedError    (code "batch_aborted")
    +-- ConfigError          (code "config")

Wrapped causes are attached with ``raise ... from cause`` so that
:attr:`HookHttpError.root_code` can walk the ``__cause__`` chain and report
the deepest known code.
"""

from __future__ import annotations

from typing import Optional


class HookHttpError(Exception):
    """Base exception for all hookhttp errors.

    Args:
        message: Human-readable error description.
        method: HTTP method of the failed operation, if known.
        target: URL or path of the failed operation, if known.
    """

    code: str = "error"

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.method = method
        self.target = target

    def __str__(self) -> str:
        if self.method and self.target:
            return f"{self.method} {self.target}: {self.message}"
        if self.target:
            return f"{self.target}: {self.message}"
        return self.message

    def with_operation(self, method: str, target: str) -> HookHttpError:
        """Fill in ``method``/``target`` if they are not set yet and return *self*."""
        if self.method is None:
            self.method = method
        if self.target is None:
            self.target = target
        return self

    @property
    def root_code(self) -> str:
        """Code of the deepest :class:`HookHttpError` in the ``__cause__`` chain."""
        code = self.code
        seen: set[int] = {id(self)}
        cause = self.__cause__
        while cause is not None and id(cause) not in seen:
            seen.add(id(cause))
            if isinstance(cause, HookHttpError):
                code = cause.code
            cause = cause.__cause__
        return code


class ValidationError(HookHttpError):
    """Raised for malformed registrations or arguments."""

    code = "validation"


class InvalidHookPointError(ValidationError):
    """Raised when a hook point is unknown or used with the wrong registration call."""


class DuplicateHookNameError(ValidationError):
    """Raised when a custom hook name is already registered at the same point."""


class EncodingError(HookHttpError):
    """Raised when a compression or decompression codec fails."""

    code = "encoding"


class TransportError(HookHttpError):
    """Raised when the provider fails to perform I/O.

    ``status_code`` is set when the failure is an HTTP error status
    reported during a streaming transfer.
    """

    code = "transport"

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        target: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, method=method, target=target)
        self.status_code = status_code


class CancellationError(HookHttpError):
    """Raised when a :class:`~hookhttp.context.CancelToken` is cancelled or its deadline passes."""

    code = "cancelled"

    def __init__(
        self,
        message: str = "operation cancelled",
        *,
        method: Optional[str] = None,
        target: Optional[str] = None,
        deadline_exceeded: bool = False,
    ) -> None:
        super().__init__(message, method=method, target=target)
        self.deadline_exceeded = deadline_exceeded


class HookAbortError(HookHttpError):
    """Raised when a hook vetoes an operation.

    The error reported by the hook (if any) is available as ``hook_error``
    and is also chained as ``__cause__``.
    """

    code = "hook_aborted"

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        target: Optional[str] = None,
        hook_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, method=method, target=target)
        self.hook_error = hook_error


class MiddlewareError(HookHttpError):
    """Wraps a non-hookhttp exception raised from inside a middleware."""

    code = "middleware"


class BatchAbortedError(HookHttpError):
    """Set on batch items skipped because the batch stopped early.

    Raised into a slot by the fail-fast strategy or when the failure
    threshold is exceeded; the item was never sent.
    """

    code = "batch_aborted"


class ConfigError(HookHttpError):
    """Raised for configuration problems (invalid JSON, failed validation)."""

    code = "config"
