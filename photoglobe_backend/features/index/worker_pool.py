"""
Bounded worker pool for the indexing pipeline.

Workers are pull-based: each one repeatedly claims the next unprocessed index
until the input is exhausted. Cancellation is cooperative and only checked
before a worker claims work (and, in the batched variant, before a flush);
an item already in flight is always allowed to finish.
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

Worker = Callable[[T, int], Awaitable[R]]
IsCancelled = Callable[[], bool]
OnItemDone = Callable[[int], None]


class JobCancelledError(Exception):
    """Cooperative cancellation signal; never reported as a failure."""

    def __init__(self, message: str = "Job cancelled"):
        super().__init__(message)


def _check_cancelled(is_cancelled: Optional[IsCancelled], message: str = "Job cancelled") -> None:
    if is_cancelled is not None and is_cancelled():
        raise JobCancelledError(message)


async def _run_workers(count: int, run: Callable[[], Awaitable[None]], failures: list[BaseException]) -> None:
    await asyncio.gather(*(run() for _ in range(count)), return_exceptions=True)
    if failures:
        raise failures[0]


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    worker: Worker,
    *,
    is_cancelled: Optional[IsCancelled] = None,
    on_item_done: Optional[OnItemDone] = None,
) -> list[Any]:
    """
    Map `worker(item, index)` over `items` with at most `concurrency` in flight.

    Results keep the input order regardless of completion order. The first
    failure (cancellation included) stops every worker at its next claim and
    is re-raised once in-flight items have settled.
    """
    items = list(items)
    results: list[Any] = [None] * len(items)
    if not items:
        return results

    cursor = 0
    failures: list[BaseException] = []

    async def run() -> None:
        nonlocal cursor
        try:
            while not failures:
                _check_cancelled(is_cancelled)
                if cursor >= len(items):
                    return
                index = cursor
                cursor += 1
                results[index] = await worker(items[index], index)
                if on_item_done is not None:
                    on_item_done(index)
        except Exception as exc:
            if not failures:
                failures.append(exc)
            raise

    await _run_workers(min(max(1, int(concurrency)), len(items)), run, failures)
    return results


async def map_with_concurrency_batched(
    items: Sequence[T],
    concurrency: int,
    worker: Worker,
    *,
    batch_size: int,
    on_batch: Callable[[list[Any]], Awaitable[None]],
    is_cancelled: Optional[IsCancelled] = None,
    on_item_done: Optional[OnItemDone] = None,
    cancel_message: str = "Job cancelled",
) -> int:
    """
    Like `map_with_concurrency`, but hand results to `on_batch` in chunks.

    - `on_batch` never receives an empty list nor more than `batch_size` items.
    - Flushes never overlap; they are serialized by one lock.
    - A flush failure stops all further claims and flushes, then propagates.
    - Once cancellation is observed nothing else is flushed; results still
      buffered are discarded while earlier flushes stay durable.

    Returns:
        Number of results handed to `on_batch`.
    """
    items = list(items)
    if not items:
        return 0

    size = max(1, int(batch_size))
    pending: list[Any] = []
    flush_lock = asyncio.Lock()
    failures: list[BaseException] = []
    cursor = 0
    flushed = 0

    async def flush(force: bool) -> None:
        nonlocal flushed
        async with flush_lock:
            while pending and (force or len(pending) >= size):
                if failures:
                    return
                _check_cancelled(is_cancelled, cancel_message)
                batch = pending[:size]
                del pending[:size]
                await on_batch(batch)
                flushed += len(batch)

    async def run() -> None:
        nonlocal cursor
        try:
            while not failures:
                _check_cancelled(is_cancelled, cancel_message)
                if cursor >= len(items):
                    return
                index = cursor
                cursor += 1
                result = await worker(items[index], index)
                pending.append(result)
                if on_item_done is not None:
                    on_item_done(index)
                if len(pending) >= size:
                    await flush(False)
        except Exception as exc:
            if not failures:
                failures.append(exc)
            raise

    try:
        await _run_workers(min(max(1, int(concurrency)), len(items)), run, failures)
        await flush(True)
    except BaseException:
        pending.clear()
        raise
    return flushed
