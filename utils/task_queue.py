"""
Concurrency- and rate-limited queue for recipe fetches.
"""
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Set

logger = logging.getLogger(__name__)


class ScrapeQueue:
    """
    Runs submitted coroutine factories with two limits:

    - at most ``concurrency`` running at once
    - at most ``interval_cap`` started within any ``interval`` seconds

    Failures are returned to the caller through the task; nothing is retried here.
    """

    def __init__(self, concurrency: int = 3, interval: float = 2.0, interval_cap: int = 1):
        """
        Initialize queue.

        Args:
            concurrency: Maximum tasks in flight
            interval: Rate window in seconds (0 disables rate limiting)
            interval_cap: Tasks allowed to start per window
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if interval_cap < 1:
            raise ValueError("interval_cap must be at least 1")

        self.concurrency = concurrency
        self.interval = interval
        self.interval_cap = interval_cap

        self._semaphore = asyncio.Semaphore(concurrency)
        self._gate = asyncio.Lock()
        self._starts: Deque[float] = deque()
        self._tasks: Set[asyncio.Task] = set()
        self._waiting: Set[asyncio.Task] = set()
        self._running = 0
        self.completed = 0
        self.failed = 0

    @property
    def size(self) -> int:
        """Tasks waiting to start."""
        return len(self._waiting)

    @property
    def pending(self) -> int:
        """Tasks currently running."""
        return self._running

    async def _wait_for_slot(self) -> None:
        if self.interval <= 0:
            return

        loop = asyncio.get_running_loop()
        async with self._gate:
            while True:
                now = loop.time()
                while self._starts and now - self._starts[0] >= self.interval:
                    self._starts.popleft()
                if len(self._starts) < self.interval_cap:
                    self._starts.append(now)
                    return
                await asyncio.sleep(self.interval - (now - self._starts[0]))

    async def _run(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        current = asyncio.current_task()
        async with self._semaphore:
            await self._wait_for_slot()
            self._waiting.discard(current)
            self._running += 1
            try:
                result = await factory()
            except Exception:
                self.failed += 1
                raise
            else:
                self.completed += 1
                return result
            finally:
                self._running -= 1

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._waiting.discard(task)

    def enqueue(self, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Schedule ``factory()`` and return a task resolving to its result.

        Args:
            factory: Zero-argument callable returning an awaitable

        Returns:
            Task for the eventual result (or exception)
        """
        task = asyncio.create_task(self._run(factory))
        self._tasks.add(task)
        self._waiting.add(task)
        task.add_done_callback(self._forget)
        return task

    async def drain(self) -> None:
        """Wait until every enqueued task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> int:
        """
        Cancel tasks that have not started yet.

        Returns:
            Number of cancelled tasks
        """
        waiting = list(self._waiting)
        for task in waiting:
            task.cancel()
        if waiting:
            logger.info(f"🧹 Cleared {len(waiting)} waiting tasks")
        return len(waiting)
