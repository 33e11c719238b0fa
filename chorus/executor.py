"""Bounded background executor for dialogue generation.

A fixed number of worker tasks drain a bounded queue of jobs. When every
worker is busy jobs wait in the queue; when the queue is full as well,
submit() fails with ExecutorSaturatedError instead of growing without limit.

Workers are created by start(), which the app calls from its lifespan, so
jobs never run inside the context of the request that submitted them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]

DEFAULT_WORKERS = 5
DEFAULT_QUEUE_SIZE = 25


class ExecutorSaturatedError(RuntimeError):
    """Raised by submit() when the pending queue is full."""


class GenerationExecutor:
    def __init__(
        self,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        name: str = "dialogue-gen",
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self._workers = workers
        self._queue_size = queue_size
        self._name = name
        self._queue: asyncio.Queue[Job] | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._running = 0

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        """Jobs accepted but not yet picked up by a worker."""
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def running(self) -> int:
        return self._running

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._tasks = [
            loop.create_task(self._worker(self._queue), name=f"{self._name}-{i + 1}")
            for i in range(self._workers)
        ]
        logger.info(
            "%s executor started: %d workers, queue of %d",
            self._name, self._workers, self._queue_size,
        )

    def submit(self, job: Job) -> None:
        if self._queue is None:
            raise RuntimeError("Executor not started")
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            raise ExecutorSaturatedError(
                f"Generation queue is full ({self._queue_size} pending)"
            ) from None
        logger.debug("%s job queued (pending=%d)", self._name, self._queue.qsize())

    async def _worker(self, queue: asyncio.Queue[Job]) -> None:
        while True:
            job = await queue.get()
            self._running += 1
            try:
                await job()
            except Exception:
                logger.exception("%s job failed", self._name)
            finally:
                self._running -= 1
                queue.task_done()

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def shutdown(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("%s executor stopped", self._name)
        self._queue = None
