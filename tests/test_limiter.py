import asyncio

import pytest

from assetpub.core.errors import TaskCancelledError
from assetpub.limiter import ConcurrencyLimiter


@pytest.mark.asyncio
async def test_never_exceeds_concurrency():
    limiter = ConcurrencyLimiter(5)
    active = 0
    peak = 0

    async def task(i: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.001)
        active -= 1
        return i

    results = await asyncio.gather(*(limiter.submit(lambda i=i: task(i)) for i in range(20)))

    assert results == list(range(20))
    assert peak == 5
    assert limiter.active_count == 0
    assert limiter.pending_count == 0


@pytest.mark.asyncio
async def test_tasks_start_in_submission_order():
    limiter = ConcurrencyLimiter(2)
    started: list[int] = []

    async def task(i: int) -> None:
        started.append(i)
        await asyncio.sleep(0)

    await asyncio.gather(*(limiter.submit(lambda i=i: task(i)) for i in range(6)))

    assert started == [0, 1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_errors_propagate_to_submitter():
    limiter = ConcurrencyLimiter(1)

    async def boom() -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await limiter.submit(boom)

    assert await limiter.submit(lambda: asyncio.sleep(0, result="next")) == "next"


@pytest.mark.asyncio
async def test_dispose_rejects_queued_tasks_but_running_ones_finish():
    limiter = ConcurrencyLimiter(1)
    gate = asyncio.Event()

    async def blocker() -> str:
        await gate.wait()
        return "first"

    first = asyncio.ensure_future(limiter.submit(blocker))
    second = asyncio.ensure_future(limiter.submit(lambda: asyncio.sleep(0, result="second")))
    await asyncio.sleep(0)

    assert limiter.active_count == 1
    assert limiter.pending_count == 1

    limiter.dispose()
    limiter.dispose()
    gate.set()

    assert await first == "first"
    with pytest.raises(TaskCancelledError, match="Task has been cancelled"):
        await second


@pytest.mark.asyncio
async def test_next_task_starts_before_submitter_sees_result():
    limiter = ConcurrencyLimiter(1)
    started: list[str] = []
    gate = asyncio.Event()

    async def first() -> str:
        started.append("first")
        return "first"

    async def second() -> str:
        started.append("second")
        await gate.wait()
        return "second"

    async def third() -> str:
        started.append("third")
        return "third"

    async def submit_first_then_dispose() -> str:
        result = await limiter.submit(first)
        # The queued task already holds the slot when the result arrives
        assert limiter.active_count == 1
        assert started == ["first", "second"]
        limiter.dispose()
        return result

    first_result = asyncio.ensure_future(submit_first_then_dispose())
    second_result = asyncio.ensure_future(limiter.submit(second))
    third_result = asyncio.ensure_future(limiter.submit(third))

    assert await first_result == "first"
    gate.set()
    assert await second_result == "second"
    with pytest.raises(TaskCancelledError):
        await third_result
    assert started == ["first", "second"]


@pytest.mark.asyncio
async def test_submit_after_dispose_is_rejected():
    limiter = ConcurrencyLimiter(3)
    limiter.dispose()

    with pytest.raises(TaskCancelledError):
        await limiter.submit(lambda: asyncio.sleep(0))


@pytest.mark.parametrize("concurrency", [0, -1])
def test_invalid_concurrency(concurrency):
    with pytest.raises(ValueError):
        ConcurrencyLimiter(concurrency)
