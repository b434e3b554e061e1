"""
Dispatcher: moves jobs from the shared queue onto workers while slots are free.
"""
from __future__ import annotations

from shared.utils.logging import get_logger
from shared.utils.timers import BackgroundTasks

from ticker.jobs import JobQueue, WorkerSlots
from ticker.worker import Worker

logger = get_logger(__name__)


class Dispatcher:

    def __init__(
        self,
        queue: JobQueue,
        slots: WorkerSlots,
        worker: Worker,
        tasks: BackgroundTasks,
    ) -> None:
        self._queue = queue
        self._slots = slots
        self._worker = worker
        self._tasks = tasks

    def tick(self) -> int:
        """
        Launch workers for the oldest runnable jobs until the queue is empty or
        every slot is taken. Does not wait for the workers. Returns how many
        were launched.
        """
        launched = 0
        while self._slots.available:
            job = self._queue.pop()
            if job is None:
                break
            self._slots.acquire()
            self._queue.claim(job)
            self._tasks.spawn(self._worker.execute(job), name=f"job:{job.job_id}")
            launched += 1
            logger.debug(
                "job_dispatched",
                channel_id=job.channel_id,
                job_id=job.job_id,
                kind=job.kind.value,
                active_workers=self._slots.active,
            )
        return launched
