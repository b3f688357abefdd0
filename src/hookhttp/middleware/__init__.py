"""Request/response middleware."""

from hookhttp.middleware.builtin import (
    headers_middleware,
    logging_middleware,
    retry_middleware,
    timeout_middleware,
)
from hookhttp.middleware.chain import Middleware, MiddlewareChain, NextFn

__all__ = [
    "Middleware",
    "MiddlewareChain",
    "NextFn",
    "headers_middleware",
    "logging_middleware",
    "retry_middleware",
    "timeout_middleware",
]
