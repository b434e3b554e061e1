"""
Jobs and the shared job queue.

A job is one unit of work for one ticker: resolve-and-schedule or
poll-and-diff. The queue keeps at most one job per channel id, counting both
waiting jobs and jobs claimed by a running worker.
"""
from __future__ import annotations

import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from shared.models.enums import JobKind, TickerMode
from shared.utils.logging import get_logger
from shared.utils.metrics import ACTIVE_WORKERS, JOBS_ENQUEUED, QUEUE_DEPTH

logger = get_logger(__name__)

_job_ids = itertools.count(1)


def _next_job_id() -> int:
    return next(_job_ids)


@dataclass(frozen=True)
class ScheduleJob:
    """Resolve the meeting page, then arm the countdown or start polling."""
    channel_id: str
    source_ref: str
    mode: TickerMode
    job_id: int = field(default_factory=_next_job_id)
    created_at: float = field(default_factory=time.monotonic)

    @property
    def kind(self) -> JobKind:
        return JobKind.SCHEDULE


@dataclass(frozen=True)
class PollJob:
    """Fetch the current version, diff against seen events, deliver what is new."""
    channel_id: str
    source_ref: str
    mode: TickerMode
    job_id: int = field(default_factory=_next_job_id)
    created_at: float = field(default_factory=time.monotonic)

    @property
    def kind(self) -> JobKind:
        return JobKind.POLL


Job = Union[ScheduleJob, PollJob]


class JobQueue:
    """
    FIFO of pending jobs plus the set of channels claimed by running workers.

    ``push`` and ``push_front`` refuse a second job for a channel that already
    has one waiting, claimed or draining. A claim dropped by stop/reset moves
    to ``_draining`` until the stale worker has finished; a job submitted for
    the channel in the meantime is parked in ``_deferred`` and queued when
    that worker releases.
    """

    def __init__(self) -> None:
        self._pending: deque[Job] = deque()
        self._claimed: dict[str, int] = {}
        self._draining: dict[str, int] = {}
        self._deferred: dict[str, tuple[Job, str]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._pending))

    def is_queued(self, channel_id: str) -> bool:
        return any(job.channel_id == channel_id for job in self._pending)

    def is_claimed(self, channel_id: str) -> bool:
        return channel_id in self._claimed

    def is_draining(self, channel_id: str) -> bool:
        return channel_id in self._draining

    def has_job(self, channel_id: str) -> bool:
        return (
            self.is_claimed(channel_id)
            or channel_id in self._draining
            or channel_id in self._deferred
            or self.is_queued(channel_id)
        )

    def push(self, job: Job, source: str = "fairness") -> bool:
        """Append ``job`` at the back. Returns False when the channel already has a job."""
        if self.has_job(job.channel_id):
            logger.debug("job_rejected_single_flight", channel_id=job.channel_id, job_id=job.job_id)
            return False
        self._pending.append(job)
        self._record(job, source)
        return True

    def push_front(self, job: Job, source: str = "promotion") -> bool:
        """
        Put ``job`` at the head of the queue.

        A job already waiting for the channel is moved to the head instead;
        nothing is added while a worker holds the channel.
        """
        if self.is_claimed(job.channel_id) or job.channel_id in self._draining:
            return False
        existing = next((j for j in self._pending if j.channel_id == job.channel_id), None)
        if existing is not None:
            self._pending.remove(existing)
            self._pending.appendleft(existing)
            return False
        self._pending.appendleft(job)
        self._record(job, source)
        return True

    def pop(self) -> Optional[Job]:
        """
        Remove and return the oldest job whose channel is not held by a worker.

        Jobs for a channel whose worker is still running stay queued.
        """
        for job in self._pending:
            if job.channel_id not in self._claimed:
                self._pending.remove(job)
                QUEUE_DEPTH.set(len(self._pending))
                return job
        return None

    def push_after_drain(self, job: Job, source: str = "command") -> bool:
        """
        Queue ``job``, or park it while a stale worker for its channel is
        still finishing. Returns False when the channel already has a job.
        """
        channel_id = job.channel_id
        if channel_id not in self._draining:
            return self.push(job, source)
        if channel_id in self._deferred:
            return False
        self._deferred[channel_id] = (job, source)
        logger.info("job_deferred", channel_id=channel_id, job_id=job.job_id, kind=job.kind.value)
        return True

    def claim(self, job: Job) -> None:
        self._claimed[job.channel_id] = job.job_id

    def release(self, job: Job) -> None:
        """Drop the worker's claim on the channel, if it is still this job's."""
        if self._claimed.get(job.channel_id) == job.job_id:
            del self._claimed[job.channel_id]
        if self._draining.get(job.channel_id) == job.job_id:
            del self._draining[job.channel_id]
            parked = self._deferred.pop(job.channel_id, None)
            if parked is not None:
                self._pending.append(parked[0])
                self._record(*parked)

    def drop_claim(self, channel_id: str) -> None:
        """Detach a running worker from a ticker that was stopped or reset."""
        job_id = self._claimed.pop(channel_id, None)
        if job_id is not None:
            self._draining[channel_id] = job_id

    def discard(self, channel_id: str) -> int:
        """Remove every waiting or parked job for ``channel_id``. Claims of running workers stay."""
        before = len(self._pending)
        self._pending = deque(j for j in self._pending if j.channel_id != channel_id)
        removed = before - len(self._pending)
        if self._deferred.pop(channel_id, None) is not None:
            removed += 1
        if removed:
            logger.info("jobs_discarded", channel_id=channel_id, count=removed)
        QUEUE_DEPTH.set(len(self._pending))
        return removed

    def peek(self) -> Optional[Job]:
        return self._pending[0] if self._pending else None

    def _record(self, job: Job, source: str) -> None:
        JOBS_ENQUEUED.labels(kind=job.kind.value, source=source).inc()
        QUEUE_DEPTH.set(len(self._pending))
        logger.info(
            "job_enqueued",
            channel_id=job.channel_id,
            job_id=job.job_id,
            kind=job.kind.value,
            source=source,
            queue_length=len(self._pending),
        )


class WorkerSlots:
    """Counter bounding how many workers execute at once."""

    def __init__(self, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def available(self) -> bool:
        return self._active < self.max_workers

    def acquire(self) -> None:
        if not self.available:
            raise RuntimeError(f"All {self.max_workers} worker slots are busy")
        self._active += 1
        ACTIVE_WORKERS.set(self._active)

    def release(self) -> None:
        if self._active == 0:
            raise RuntimeError("release() without a matching acquire()")
        self._active -= 1
        ACTIVE_WORKERS.set(self._active)
