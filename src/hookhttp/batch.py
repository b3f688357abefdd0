"""Concurrent batch execution with per-item result isolation.

:class:`Batch` collects independent requests and runs them through the
owning client's full pipeline (middleware, hooks, compression, provider).
Results come back in item order regardless of completion order, and a
failing item only affects its own :class:`BatchResult` slot.

Items are executed in sub-batches of at most ``max_batch_size`` using one of
the :class:`~hookhttp.models.BatchStrategy` values. A batch stops early when
the fail-fast strategy sees a failure or when the failure rate exceeds
``failure_threshold``; the items it never sent carry a
:class:`~hookhttp.exceptions.BatchAbortedError`.

Example::

    results = await (
        client.batch()
        .add("GET", "/users/1")
        .add("GET", "/users/2")
        .execute()
    )
    for result in results:
        if result.error is not None:
            ...
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from hookhttp.context import CancelToken, ExecutionContext
from hookhttp.exceptions import BatchAbortedError, HookAbortError, HookHttpError
from hookhttp.hooks.base import HookPoint
from hookhttp.models import BatchConfig, BatchStrategy, Response

if TYPE_CHECKING:
    from hookhttp.client import Client

logger = logging.getLogger(__name__)

_BATCH_METHOD = "BATCH"


@dataclass
class BatchItem:
    """One unit of batch work."""

    method: str
    target: str
    body: Any = None
    headers: Optional[Mapping[str, str]] = None


@dataclass
class BatchResult:
    """Outcome of one :class:`BatchItem`.

    Exactly one of ``response`` and ``error`` is set.
    """

    index: int
    item: BatchItem
    response: Optional[Response] = None
    error: Optional[HookHttpError] = None

    @property
    def ok(self) -> bool:
        """``True`` when the call succeeded and the status is below 400."""
        return self.error is None and self.response is not None and self.response.ok


@dataclass
class BatchSummary:
    """Aggregate counts over a list of :class:`BatchResult`.

    An item counts as failed when it carries an error or its response has
    an HTTP status of 400 or above. ``skipped`` counts the failed items that
    were never sent because the batch stopped early.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    @classmethod
    def from_results(cls, results: list[BatchResult]) -> BatchSummary:
        succeeded = sum(1 for r in results if r.ok)
        skipped = sum(1 for r in results if isinstance(r.error, BatchAbortedError))
        return cls(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            skipped=skipped,
        )

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.total if self.total else 0.0

    @property
    def failure_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0

    @property
    def is_success(self) -> bool:
        return self.failed == 0


class Batch:
    """Pending set of requests bound to a :class:`~hookhttp.client.Client`.

    :meth:`add` is not thread-safe; build the batch from one task, then
    call :meth:`execute`.

    Args:
        client: Client whose pipeline executes every item.
        config: Scheduling settings. Defaults to :class:`BatchConfig()`.
    """

    def __init__(self, client: Client, config: Optional[BatchConfig] = None) -> None:
        self._client = client
        self._config = config or BatchConfig()
        self._items: list[BatchItem] = []

    @property
    def config(self) -> BatchConfig:
        return self._config

    def add(
        self,
        method: str,
        target: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Batch:
        """Append one item and return the batch for chaining."""
        self._items.append(BatchItem(method=method.upper(), target=target, body=body, headers=headers))
        return self

    def add_item(self, item: BatchItem) -> Batch:
        self._items.append(item)
        return self

    @property
    def items(self) -> list[BatchItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> Batch:
        self._items.clear()
        return self

    async def execute(
        self,
        token: Optional[CancelToken] = None,
        *,
        strategy: Optional[BatchStrategy] = None,
    ) -> list[BatchResult]:
        """Run every item and return one result per item, in item order.

        Individual failures are reported in their own result slot. Items
        that were still waiting or in flight when *token* (or a sub-batch
        deadline) fired carry a :class:`~hookhttp.exceptions.CancellationError`;
        items skipped after the batch stopped early carry a
        :class:`~hookhttp.exceptions.BatchAbortedError`.

        Args:
            token: Cancellation/deadline token for the whole batch.
            strategy: Overrides ``config.strategy`` for this run.

        Raises:
            CancellationError: If *token* is already cancelled before any
                item starts.
            HookAbortError: If a ``BEFORE_BATCH`` hook vetoes the batch.
        """
        items = list(self._items)
        token = token or CancelToken()
        strategy = BatchStrategy(strategy) if strategy is not None else self._config.strategy
        hooks = self._client.hook_manager
        target = f"{len(items)} items"

        if token.cancelled:
            raise token.error().with_operation(_BATCH_METHOD, target)

        ctx = ExecutionContext(
            operation="batch",
            method=_BATCH_METHOD,
            target=target,
            args={
                "size": len(items),
                "strategy": strategy.value,
                "concurrency_limit": self._config.concurrency_limit,
                "max_batch_size": self._config.max_batch_size,
            },
            token=token,
        )
        verdict = hooks.dispatch(HookPoint.BEFORE_BATCH, ctx)
        ctx = verdict.context or ctx
        if not verdict.proceed:
            error = HookAbortError(
                "batch vetoed by hook",
                method=_BATCH_METHOD,
                target=target,
                hook_error=verdict.error,
            )
            error.__cause__ = verdict.error
            ctx.error = error
            hooks.dispatch_all(HookPoint.ON_ERROR, ctx)
            raise error

        results: list[BatchResult] = []
        stop_reason: Optional[str] = None
        size = self._config.max_batch_size
        for start in range(0, len(items), size):
            chunk = list(enumerate(items[start:start + size], start))
            if stop_reason is not None:
                results.extend(_skipped(index, item, stop_reason) for index, item in chunk)
                continue
            sub_token = token.child(timeout=self._config.batch_timeout)
            if strategy is BatchStrategy.PARALLEL:
                results.extend(await self._run_parallel(chunk, sub_token))
            else:
                results.extend(
                    await self._run_sequential(
                        chunk, sub_token, fail_fast=strategy is BatchStrategy.FAIL_FAST
                    )
                )
            stop_reason = self._stop_reason(strategy, results)
            if stop_reason is not None:
                logger.info("Batch of %d stopping early: %s", len(items), stop_reason)

        summary = BatchSummary.from_results(results)
        ctx.mark_finished()
        ctx.metadata["summary"] = summary
        ctx.metadata["stop_reason"] = stop_reason
        hooks.dispatch(HookPoint.AFTER_BATCH, ctx)
        logger.debug(
            "Batch of %d finished: %d succeeded, %d failed in %.3fs",
            summary.total, summary.succeeded, summary.failed, ctx.duration,
        )
        return results

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #

    async def _run_parallel(
        self, chunk: list[tuple[int, BatchItem]], token: CancelToken
    ) -> list[BatchResult]:
        limit = self._config.concurrency_limit
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def run(index: int, item: BatchItem) -> BatchResult:
            slot = semaphore if semaphore is not None else contextlib.nullcontext()
            async with slot:
                return await self._run_one(index, item, token)

        return list(await asyncio.gather(*(run(index, item) for index, item in chunk)))

    async def _run_sequential(
        self, chunk: list[tuple[int, BatchItem]], token: CancelToken, *, fail_fast: bool
    ) -> list[BatchResult]:
        results: list[BatchResult] = []
        failed_at: Optional[int] = None
        for index, item in chunk:
            if failed_at is not None:
                results.append(_skipped(index, item, f"item {failed_at} failed (fail-fast)"))
                continue
            result = await self._run_one(index, item, token)
            results.append(result)
            if fail_fast and not result.ok:
                failed_at = index
        return results

    async def _run_one(self, index: int, item: BatchItem, token: CancelToken) -> BatchResult:
        try:
            token.check()
            response = await self._client.request(
                item.method,
                item.target,
                body=item.body,
                headers=item.headers,
                token=token,
            )
        except HookHttpError as exc:
            return BatchResult(
                index=index, item=item, error=exc.with_operation(item.method, item.target)
            )
        return BatchResult(index=index, item=item, response=response)

    def _stop_reason(self, strategy: BatchStrategy, results: list[BatchResult]) -> Optional[str]:
        failed = sum(1 for r in results if not r.ok)
        if not failed:
            return None
        if strategy is BatchStrategy.FAIL_FAST:
            first = next(r.index for r in results if not r.ok)
            return f"item {first} failed (fail-fast)"
        threshold = self._config.failure_threshold
        if threshold is not None and failed / len(results) > threshold:
            return f"failure rate {failed / len(results):.0%} exceeded threshold {threshold:.0%}"
        return None


def _skipped(index: int, item: BatchItem, reason: str) -> BatchResult:
    error = BatchAbortedError(f"skipped: {reason}", method=item.method, target=item.target)
    return BatchResult(index=index, item=item, error=error)
