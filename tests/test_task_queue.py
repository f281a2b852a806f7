import asyncio

import pytest

from utils.task_queue import ScrapeQueue


def test_concurrency_is_capped():
    async def scenario():
        queue = ScrapeQueue(concurrency=2, interval=0)
        running = 0
        peak = 0

        async def job(n):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return n

        tasks = [queue.enqueue(lambda n=n: job(n)) for n in range(6)]
        results = await asyncio.gather(*tasks)
        return results, peak, queue

    results, peak, queue = asyncio.run(scenario())

    assert results == [0, 1, 2, 3, 4, 5]
    assert peak == 2
    assert queue.completed == 6
    assert queue.failed == 0


def test_starts_are_spaced_by_interval():
    async def scenario():
        loop = asyncio.get_running_loop()
        queue = ScrapeQueue(concurrency=3, interval=0.05, interval_cap=1)
        starts = []

        async def job():
            starts.append(loop.time())

        await asyncio.gather(*[queue.enqueue(job) for _ in range(3)])
        return starts

    starts = asyncio.run(scenario())

    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.04 for gap in gaps)


def test_failures_reach_the_caller():
    async def scenario():
        queue = ScrapeQueue(concurrency=1, interval=0)

        async def boom():
            raise RuntimeError("recipe page exploded")

        async def fine():
            return "ok"

        failing = queue.enqueue(boom)
        passing = queue.enqueue(fine)
        outcomes = await asyncio.gather(failing, passing, return_exceptions=True)
        return outcomes, queue

    outcomes, queue = asyncio.run(scenario())

    assert isinstance(outcomes[0], RuntimeError)
    assert outcomes[1] == "ok"
    assert queue.failed == 1
    assert queue.completed == 1


def test_drain_waits_for_everything():
    async def scenario():
        queue = ScrapeQueue(concurrency=2, interval=0)
        done = []

        async def job(n):
            await asyncio.sleep(0.01)
            done.append(n)

        for n in range(4):
            queue.enqueue(lambda n=n: job(n))
        await queue.drain()
        return done, queue

    done, queue = asyncio.run(scenario())

    assert sorted(done) == [0, 1, 2, 3]
    assert queue.size == 0
    assert queue.pending == 0


def test_clear_cancels_waiting_tasks():
    async def scenario():
        queue = ScrapeQueue(concurrency=1, interval=0)
        release = asyncio.Event()

        async def blocker():
            await release.wait()
            return "first"

        first = queue.enqueue(blocker)
        waiting = [queue.enqueue(blocker) for _ in range(3)]
        await asyncio.sleep(0)
        assert queue.pending == 1
        assert queue.size == 3

        cancelled = queue.clear()
        release.set()
        result = await first
        outcomes = await asyncio.gather(*waiting, return_exceptions=True)
        return cancelled, result, outcomes

    cancelled, result, outcomes = asyncio.run(scenario())

    assert cancelled == 3
    assert result == "first"
    assert all(isinstance(o, asyncio.CancelledError) for o in outcomes)


def test_rejects_bad_limits():
    with pytest.raises(ValueError):
        ScrapeQueue(concurrency=0)
    with pytest.raises(ValueError):
        ScrapeQueue(interval_cap=0)
