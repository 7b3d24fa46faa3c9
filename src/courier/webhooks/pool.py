"""Bounded pool of delivery tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class WorkerPool:
    """Runs delivery jobs as asyncio tasks, at most ``max_concurrent`` at once.

    Jobs are keyed (by attempt ID). Submitting a key that is already queued
    or running is a no-op. Exceptions escaping a job are logged and
    contained.

    Example:
        ```python
        pool = WorkerPool(max_concurrent=10)
        pool.submit(attempt.id, lambda: worker.process(attempt.id))
        await pool.drain()
        ```
    """

    def __init__(self, max_concurrent: int = 10) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = 0
        self._closed = False

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def pending(self) -> int:
        """Jobs queued or running."""
        return len(self._tasks)

    @property
    def running(self) -> int:
        """Jobs currently holding a slot."""
        return self._running

    def is_tracked(self, key: str) -> bool:
        return key in self._tasks

    def submit(self, key: str, job: Job) -> bool:
        """Schedule a job.

        Args:
            key: Deduplication key.
            job: Zero-argument coroutine function.

        Returns:
            True if the job was scheduled, False if the key is already
            tracked or the pool is closed.
        """
        if self._closed:
            logger.warning("Worker pool closed, dropping job %s", key)
            return False
        if key in self._tasks:
            return False

        task = asyncio.create_task(self._run(key, job), name=f"courier-delivery-{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda _: self._tasks.pop(key, None))
        return True

    async def _run(self, key: str, job: Job) -> None:
        async with self._semaphore:
            self._running += 1
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Delivery job %s failed", key)
            finally:
                self._running -= 1

    async def drain(self) -> None:
        """Wait until every tracked job, including ones submitted meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self, grace_seconds: float = 10.0) -> None:
        """Stop accepting jobs, wait up to ``grace_seconds``, then cancel the rest."""
        self._closed = True
        if not self._tasks:
            return
        tasks = list(self._tasks.values())
        _, still_running = await asyncio.wait(tasks, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %d unfinished delivery jobs", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
