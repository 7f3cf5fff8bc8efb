"""Detached side effects (usage counters, invalidation, attempt logs).

Jobs are queued and run by a single worker task so they never block or
fail the response path. Before start() (unit tests, or a transport without
a lifespan) each job runs as its own tracked task instead.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("gemrelay.background")

Job = tuple[Callable[..., Awaitable[None]], tuple]


class BackgroundRunner:

    def __init__(self, max_queue_size: int = 1000):
        self._queue: asyncio.Queue[Job | None] = asyncio.Queue(maxsize=max_queue_size)
        self._worker_task: asyncio.Task | None = None
        self._detached: set[asyncio.Task] = set()
        self.dropped_jobs = 0

    async def start(self) -> None:
        if self._worker_task is not None:
            return
        self._worker_task = asyncio.create_task(self._run(), name="gemrelay-background")

    async def close(self) -> None:
        """Drain queued jobs and stop the worker."""
        if self._worker_task is not None:
            await self._queue.put(None)
            await self._worker_task
            self._worker_task = None
        if self._detached:
            await asyncio.gather(*self._detached, return_exceptions=True)

    def submit(self, fn: Callable[..., Awaitable[None]], *args) -> None:
        """Schedule fn(*args). Never blocks and never raises."""
        if self._worker_task is None:
            task = asyncio.create_task(self._run_job(fn, args))
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)
            return
        try:
            self._queue.put_nowait((fn, args))
        except asyncio.QueueFull:
            self.dropped_jobs += 1
            logger.warning("Background queue full, dropped %s", getattr(fn, "__qualname__", fn))

    async def join(self) -> None:
        """Wait until every job submitted so far has finished."""
        if self._worker_task is not None:
            await self._queue.join()
        while self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                self._queue.task_done()
                break
            try:
                fn, args = job
                await self._run_job(fn, args)
            finally:
                self._queue.task_done()

    @staticmethod
    async def _run_job(fn: Callable[..., Awaitable[None]], args: tuple) -> None:
        try:
            await fn(*args)
        except Exception:
            logger.exception("Background job %s failed", getattr(fn, "__qualname__", fn))
