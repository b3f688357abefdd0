"""Built-in middleware factories.

Each factory returns a middleware for
:class:`~hookhttp.middleware.chain.MiddlewareChain`:

* :func:`retry_middleware` -- exponential backoff on transport errors and
  retryable statuses.
* :func:`timeout_middleware` -- per-request timeout override.
* :func:`headers_middleware` -- fixed headers on every request.
* :func:`logging_middleware` -- one log line per request and response.
"""

from __future__ import annotations

import logging
from typing import Optional

from hookhttp.context import CancelToken, ExecutionContext
from hookhttp.exceptions import TransportError
from hookhttp.middleware.chain import Middleware, NextFn
from hookhttp.models import Request, Response, RetryConfig


def retry_middleware(config: Optional[RetryConfig] = None) -> Middleware:
    """Retry on :class:`TransportError` and on the configured status codes.

    Delays grow from ``initial_interval`` by ``multiplier`` up to
    ``max_interval`` and are interrupted by the call's cancel token. Every
    attempt hands the same request to the rest of the chain; the client
    compresses a per-attempt copy, so retries never see a body encoded by
    an earlier attempt.

    Args:
        config: Retry policy. Defaults to :class:`RetryConfig()`.

    Returns:
        A middleware that records the number of retries in
        ``ctx.metadata["retries"]``.
    """
    cfg = config or RetryConfig()
    retry_on = frozenset(cfg.retry_statuses)
    log = logging.getLogger(__name__)

    async def middleware(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
        token = ctx.token or CancelToken()
        delay = cfg.initial_interval
        for attempt in range(cfg.max_retries + 1):
            last_attempt = attempt == cfg.max_retries
            try:
                response = await next(request)
            except TransportError as exc:
                if last_attempt:
                    raise
                log.debug(
                    "%s %s failed (%s), retrying in %.2fs (attempt %d/%d)",
                    request.method, request.url, exc, delay, attempt + 1, cfg.max_retries,
                )
            else:
                if response.status_code not in retry_on or last_attempt:
                    return response
                log.debug(
                    "%s %s returned %d, retrying in %.2fs (attempt %d/%d)",
                    request.method, request.url, response.status_code, delay,
                    attempt + 1, cfg.max_retries,
                )
            ctx.metadata["retries"] = attempt + 1
            await token.sleep(delay)
            delay = min(delay * cfg.multiplier, cfg.max_interval)
        raise AssertionError("unreachable")  # pragma: no cover

    return middleware


def timeout_middleware(timeout: float) -> Middleware:
    """Override the request timeout with *timeout* seconds.

    The inner chain receives a copy of the request with its own header
    map; the caller's request is left untouched.
    """

    async def middleware(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
        bounded = request.copy()
        bounded.timeout = timeout
        return await next(bounded)

    return middleware


def headers_middleware(**headers: str) -> Middleware:
    """Add *headers* to every request.

    Keyword underscores become dashes, so ``X_Tenant="acme"`` sends
    ``X-Tenant: acme``. Existing values for the same names are replaced.
    """
    extra = {name.replace("_", "-"): value for name, value in headers.items()}

    async def middleware(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
        for name, value in extra.items():
            request.headers[name] = value
        return await next(request)

    return middleware


def logging_middleware(logger: Optional[logging.Logger] = None) -> Middleware:
    """Log ``-> METHOD url`` before and ``<- status (ms)`` after each call.

    Args:
        logger: Logger to write to at INFO level. Defaults to this
            module's logger.
    """
    log = logger or logging.getLogger(__name__)

    async def middleware(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
        log.info("-> %s %s", request.method, request.url)
        response = await next(request)
        log.info("<- %d (%.0fms)", response.status_code, response.elapsed * 1000)
        return response

    return middleware
