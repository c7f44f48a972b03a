"""Rate-limited asyncio task queues.

``RateLimitedQueue`` admits tasks in FIFO order, allowing at most
``tasks_per_interval`` task starts in any sliding window of ``interval``
seconds. Only starts are counted: a task that is still running when the
window slides does not hold back the next start. An optional concurrency cap
bounds the number of tasks in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


def _retrieve_exception(future: asyncio.Future[Any]) -> None:
    # Callers may ignore the returned future; mark its exception as seen.
    if not future.cancelled():
        future.exception()


class RateLimitedQueue:
    """Task queue bounding start rate and, optionally, concurrency."""

    def __init__(
        self,
        tasks_per_interval: int | None = None,
        interval: float = 1.0,
        concurrency: int | None = None,
        name: str = "queue",
    ) -> None:
        """Initialise an empty queue.

        Args:
            tasks_per_interval: Maximum task starts per sliding window, or
                ``None`` for no rate limit.
            interval: Sliding window length in seconds.
            concurrency: Maximum tasks in flight, or ``None`` for no cap.
            name: Label used in log records.

        Raises:
            ValueError: If a limit is not positive.
        """
        if tasks_per_interval is not None and tasks_per_interval < 1:
            raise ValueError("tasks_per_interval must be a positive integer")
        if interval <= 0:
            raise ValueError("interval must be positive")
        if concurrency is not None and concurrency < 1:
            raise ValueError("concurrency must be a positive integer")
        self._tasks_per_interval = tasks_per_interval
        self._interval = interval
        self._concurrency = concurrency
        self.name = name

        self._backlog: deque[tuple[TaskFactory, asyncio.Future[Any]]] = deque()
        self._starts: deque[float] = deque()
        self._running = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._pump_task: asyncio.Task[None] | None = None
        self._slot_freed = asyncio.Event()
        self._idle_waiters: list[asyncio.Future[None]] = []

    def __repr__(self) -> str:
        return f"RateLimitedQueue(name={self.name!r}, pending={self.pending}, running={self.running})"

    @property
    def pending(self) -> int:
        return len(self._backlog)

    @property
    def running(self) -> int:
        return self._running

    @property
    def size(self) -> int:
        """Pending plus running tasks; for observability only."""
        return len(self._backlog) + self._running

    @property
    def is_idle(self) -> bool:
        return not self._backlog and self._running == 0

    def add(self, factory: TaskFactory) -> asyncio.Future[Any]:
        """Append a task to the backlog without blocking.

        Args:
            factory: Zero-argument callable returning the awaitable to run.
                It is called only when the task is admitted.

        Returns:
            Future resolving with the task's result, or carrying its exception.
            Failed tasks are not retried.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        future.add_done_callback(_retrieve_exception)
        self._backlog.append((factory, future))
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = loop.create_task(self._pump())
        return future

    def on_idle(self) -> asyncio.Future[None]:
        """Return a fresh future completing at the next drain.

        The future is already resolved when the queue is idle at call time.
        """
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        if self.is_idle:
            future.set_result(None)
        else:
            self._idle_waiters.append(future)
        return future

    async def _pump(self) -> None:
        loop = asyncio.get_running_loop()
        while self._backlog:
            await self._wait_for_slot()
            await self._wait_for_rate(loop)
            factory, future = self._backlog.popleft()
            if self._tasks_per_interval is not None:
                self._starts.append(loop.time())
            self._running += 1
            task = loop.create_task(self._run(factory, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _wait_for_slot(self) -> None:
        while self._concurrency is not None and self._running >= self._concurrency:
            self._slot_freed.clear()
            await self._slot_freed.wait()

    async def _wait_for_rate(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._tasks_per_interval is None:
            return
        while True:
            now = loop.time()
            while self._starts and self._starts[0] <= now - self._interval:
                self._starts.popleft()
            if len(self._starts) < self._tasks_per_interval:
                return
            # Timers may fire slightly early; the loop re-checks the window.
            await asyncio.sleep(self._starts[0] + self._interval - now)

    async def _run(self, factory: TaskFactory, future: asyncio.Future[Any]) -> None:
        try:
            result = await factory()
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running -= 1
            self._slot_freed.set()
            self._notify_if_idle()

    def _notify_if_idle(self) -> None:
        if not self.is_idle:
            return
        waiters, self._idle_waiters = self._idle_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
        logger.debug("[_notify_if_idle] queue drained; queue:%s", self.name)


class UsersTaskQueue:
    """Bounds how many users' traversals are driven at once.

    Each task is the whole lifecycle of one user: authenticate, register,
    seed and wait for that user's own queue to drain.
    """

    def __init__(self, max_concurrent_users: int) -> None:
        self._queue = RateLimitedQueue(concurrency=max_concurrent_users, name="users")
        self.max_concurrent_users = max_concurrent_users

    @property
    def size(self) -> int:
        return self._queue.size

    @property
    def running(self) -> int:
        return self._queue.running

    @property
    def is_idle(self) -> bool:
        return self._queue.is_idle

    def add(self, factory: TaskFactory) -> asyncio.Future[Any]:
        return self._queue.add(factory)

    def on_idle(self) -> asyncio.Future[None]:
        return self._queue.on_idle()
