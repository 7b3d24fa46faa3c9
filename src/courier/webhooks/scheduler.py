"""Background retry scheduler.

Retries are rows, not timers: a failed try leaves a PENDING row whose
``scheduled_at`` is in the future. The scheduler polls for rows that are due
and hands them to the worker pool. It also sweeps up attempts stuck
IN_FLIGHT after a crash and routes them through the failure path.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from functools import partial

from courier.exceptions import CourierError
from courier.logging import get_logger
from courier.models import Clock, utcnow
from courier.storage import DeliveryStore

from .pool import WorkerPool
from .worker import DeliveryWorker

logger = get_logger(__name__)


class RetryScheduler:
    """Polls the delivery store and submits due work to the pool.

    Example:
        ```python
        scheduler = RetryScheduler(store, pool, worker, poll_interval=1.0)
        await scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        store: DeliveryStore,
        pool: WorkerPool,
        worker: DeliveryWorker,
        *,
        poll_interval: float = 1.0,
        batch_size: int = 100,
        stuck_after: timedelta = timedelta(minutes=10),
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._pool = pool
        self._worker = worker
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._stuck_after = stuck_after
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Run one sweep.

        Returns:
            Number of jobs submitted to the pool.
        """
        submitted = 0

        cutoff = self._clock() - self._stuck_after
        for attempt_id in await self._store.stuck_attempt_ids(cutoff, limit=self._batch_size):
            if self._pool.is_tracked(attempt_id):
                continue
            if self._pool.submit(f"reclaim:{attempt_id}", partial(self._worker.reclaim, attempt_id)):
                submitted += 1

        for attempt_id in await self._store.due_attempt_ids(limit=self._batch_size):
            if self._pool.submit(attempt_id, partial(self._worker.process, attempt_id)):
                submitted += 1

        if submitted:
            logger.debug("Scheduler sweep submitted jobs", submitted=submitted)
        return submitted

    async def start(self) -> None:
        """Start polling in a background task."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="courier-retry-scheduler")
        logger.info("Retry scheduler started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        """Stop polling and wait for the current sweep to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Retry scheduler stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except CourierError as e:
                logger.warning("Scheduler sweep failed", error=str(e))
            except Exception:
                logger.exception("Unexpected error in scheduler sweep")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass
