import asyncio

import pytest

from photoglobe_backend.features.index.worker_pool import (
    JobCancelledError,
    map_with_concurrency,
    map_with_concurrency_batched,
)


@pytest.mark.asyncio
async def test_results_keep_input_order_when_completion_is_reversed():
    items = [5, 4, 3, 2, 1]

    async def worker(item, index):
        await asyncio.sleep(item * 0.002)
        return (index, item * 10)

    results = await map_with_concurrency(items, 5, worker)
    assert results == [(0, 50), (1, 40), (2, 30), (3, 20), (4, 10)]


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    in_flight = 0
    peak = 0

    async def worker(item, _index):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return item

    results = await map_with_concurrency(list(range(20)), 3, worker)
    assert results == list(range(20))
    assert peak <= 3


@pytest.mark.asyncio
async def test_empty_input_returns_empty_list():
    async def worker(item, _index):
        raise AssertionError("never called")

    assert await map_with_concurrency([], 4, worker) == []
    assert await map_with_concurrency_batched([], 4, worker, batch_size=2, on_batch=None) == 0


@pytest.mark.asyncio
async def test_worker_failure_is_raised_and_stops_new_claims():
    claimed = []

    async def worker(item, _index):
        claimed.append(item)
        if item == 2:
            raise ValueError("boom")
        return item

    with pytest.raises(ValueError, match="boom"):
        await map_with_concurrency(list(range(10)), 1, worker)
    assert claimed == [0, 1, 2]


@pytest.mark.asyncio
async def test_cancellation_before_claim_raises_job_cancelled():
    done = []

    async def worker(item, _index):
        done.append(item)
        return item

    with pytest.raises(JobCancelledError):
        await map_with_concurrency(list(range(5)), 1, worker, is_cancelled=lambda: len(done) >= 2)
    assert done == [0, 1]


@pytest.mark.asyncio
async def test_on_item_done_called_once_per_item():
    seen = []

    async def worker(item, _index):
        return item

    await map_with_concurrency(list(range(4)), 2, worker, on_item_done=seen.append)
    assert sorted(seen) == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_batched_flushes_respect_batch_size():
    batches = []

    async def worker(item, _index):
        return item

    async def on_batch(batch):
        batches.append(list(batch))

    flushed = await map_with_concurrency_batched(list(range(7)), 2, worker, batch_size=3, on_batch=on_batch)

    assert flushed == 7
    assert all(0 < len(b) <= 3 for b in batches)
    assert sorted(x for b in batches for x in b) == list(range(7))


@pytest.mark.asyncio
async def test_batched_flushes_never_overlap():
    active = 0
    overlap = False

    async def worker(item, _index):
        await asyncio.sleep(0)
        return item

    async def on_batch(_batch):
        nonlocal active, overlap
        active += 1
        if active > 1:
            overlap = True
        await asyncio.sleep(0.001)
        active -= 1

    await map_with_concurrency_batched(list(range(30)), 6, worker, batch_size=2, on_batch=on_batch)
    assert overlap is False


@pytest.mark.asyncio
async def test_batched_cancel_before_first_flush_writes_nothing():
    batches = []
    cancelled = False

    async def worker(item, _index):
        nonlocal cancelled
        if item == 2:
            cancelled = True
        return item

    async def on_batch(batch):
        batches.append(batch)

    with pytest.raises(JobCancelledError, match="stop now"):
        await map_with_concurrency_batched(
            list(range(10)),
            1,
            worker,
            batch_size=100,
            on_batch=on_batch,
            is_cancelled=lambda: cancelled,
            cancel_message="stop now",
        )
    assert batches == []


@pytest.mark.asyncio
async def test_batched_earlier_flushes_survive_later_cancellation():
    batches = []
    cancelled = False

    async def worker(item, _index):
        return item

    async def on_batch(batch):
        nonlocal cancelled
        batches.append(list(batch))
        cancelled = True

    with pytest.raises(JobCancelledError):
        await map_with_concurrency_batched(
            list(range(10)), 1, worker, batch_size=2, on_batch=on_batch, is_cancelled=lambda: cancelled
        )
    assert batches == [[0, 1]]


@pytest.mark.asyncio
async def test_batched_flush_failure_stops_further_flushes():
    calls = []

    async def worker(item, _index):
        return item

    async def on_batch(batch):
        calls.append(list(batch))
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError, match="disk full"):
        await map_with_concurrency_batched(list(range(10)), 2, worker, batch_size=2, on_batch=on_batch)
    assert len(calls) == 1
