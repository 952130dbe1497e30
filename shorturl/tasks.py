"""Background execution primitives: a bounded worker pool and periodic tasks.

Flow Diagram — TaskPool.submit()
================================
::
    ┌─────────────┐
    │ submit(fn)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ queue full? │
    └──────┬──────┘
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────────┐
│ enqueue │  │ run inline  │
│ → worker│  │ in caller   │
└────┬────┘  │ caller_runs │
     │       └──────┬──────┘
     ▼              ▼
    ┌─────────────┐
    │ Future with │
    │ result/exc  │
    └─────────────┘

Key Behaviours
===============
- The queue is bounded; a full queue slows the producer down instead of
  growing memory.
- Task exceptions are logged, counted and set on the returned future.
- A periodic run never overlaps the previous one, and a failing run does not
  stop the schedule.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

__all__ = ["PeriodicTask", "PoolStats", "TaskPool"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolStats:
    workers: int
    queued: int
    submitted: int
    completed: int
    failed: int
    caller_runs: int


class TaskPool:
    def __init__(self, name: str, workers: int = 8, queue_size: int = 1000):
        if workers < 1 or queue_size < 1:
            raise ValueError("workers and queue_size must be at least 1")
        self.name = name
        self.workers = workers
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker_tasks: list[asyncio.Task] = []
        self._closed = False
        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._caller_runs = 0

    def start(self) -> None:
        if self._worker_tasks:
            return
        self._worker_tasks = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info(f"Task pool {self.name} started with {self.workers} workers")

    async def submit(self, fn: Callable[..., Any], *args: Any) -> asyncio.Future:
        """Schedule ``fn(*args)`` and return a future for its result.

        When the queue is full the call runs in the caller before this
        coroutine returns, so the returned future is already done.

        Raises:
            RuntimeError: If the pool has been shut down
        """
        if self._closed:
            raise RuntimeError(f"Task pool {self.name} is shut down")
        self.start()

        future = asyncio.get_running_loop().create_future()
        self._submitted += 1
        try:
            self._queue.put_nowait((fn, args, future))
        except asyncio.QueueFull:
            self._caller_runs += 1
            logger.debug(f"Task pool {self.name} saturated, running in caller")
            await self._run(fn, args, future)
        return future

    async def shutdown(self, timeout: float = 10.0) -> None:
        self._closed = True
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Task pool {self.name} did not drain within {timeout}s, {self._queue.qsize()} tasks dropped"
            )
        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []
        logger.info(f"Task pool {self.name} shut down")

    def stats(self) -> PoolStats:
        return PoolStats(
            workers=self.workers,
            queued=self._queue.qsize(),
            submitted=self._submitted,
            completed=self._completed,
            failed=self._failed,
            caller_runs=self._caller_runs,
        )

    async def _worker(self) -> None:
        while True:
            fn, args, future = await self._queue.get()
            try:
                await self._run(fn, args, future)
            finally:
                self._queue.task_done()

    async def _run(self, fn: Callable[..., Any], args: tuple, future: asyncio.Future) -> None:
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self._failed += 1
            logger.error(f"Task {getattr(fn, '__name__', fn)} failed in pool {self.name}: {exc}")
            if not future.done():
                future.set_exception(exc)
            return
        self._completed += 1
        if not future.done():
            future.set_result(result)


class PeriodicTask:
    """Run ``fn`` every ``interval_seconds`` until stopped."""

    def __init__(self, name: str, interval_seconds: float, fn: Callable[[], Awaitable[Any]]):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._fn = fn
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Periodic task {self.name} did not finish within {timeout}s, cancelling")
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            await self._run_once()

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            await self._fn()
        except Exception as exc:
            self.failures += 1
            logger.error(f"Periodic task {self.name} failed: {exc}")
