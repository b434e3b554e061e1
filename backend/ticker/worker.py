"""
Worker: executes exactly one job against the resolver.

Every await is followed by a check that the ticker is still the same object
in the registry and still in the status the job expects. A ticker that was
stopped or reset mid-flight therefore never sees the stale job's results.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from shared.config import Settings, get_settings
from shared.errors import DeliveryError, FetchError, ResolutionError
from shared.models.domain import MeetingMeta
from shared.models.enums import TickerStatus
from shared.utils.logging import get_logger, ticker_context
from shared.utils.metrics import DELIVERIES, JOB_DURATION, JOBS_EXECUTED

from delivery.base import Messenger
from delivery.formatter import MessageFormatter
from ingest.providers.base import MeetingResolver
from ticker.jobs import Job, JobQueue, PollJob, ScheduleJob, WorkerSlots
from ticker.lifecycle import TickerLifecycle
from ticker.persistence import TickerPersistence
from ticker.processor import EventProcessor
from ticker.registry import TickerRegistry, TickerState

logger = get_logger(__name__)

Clock = Callable[[], datetime]

EXPECTED_STATUS: dict[type, TickerStatus] = {
    ScheduleJob: TickerStatus.PENDING_SCHEDULE,
    PollJob: TickerStatus.POLLING,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Worker:

    def __init__(
        self,
        registry: TickerRegistry,
        queue: JobQueue,
        slots: WorkerSlots,
        resolver: MeetingResolver,
        processor: EventProcessor,
        lifecycle: TickerLifecycle,
        persistence: TickerPersistence,
        messenger: Messenger,
        formatter: MessageFormatter,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._slots = slots
        self._resolver = resolver
        self._processor = processor
        self._lifecycle = lifecycle
        self._persistence = persistence
        self._messenger = messenger
        self._formatter = formatter
        self._settings = settings or get_settings()
        self._clock = clock

    async def execute(self, job: Job) -> None:
        """
        Run ``job`` to completion. The job's queue claim and its worker slot
        are released on every exit path.
        """
        started = time.perf_counter()
        outcome = "error"
        with ticker_context(job.channel_id, job_id=job.job_id, kind=job.kind.value):
            try:
                state = self._current(job)
                if state is None:
                    outcome = "skipped"
                    logger.info("job_skipped", reason="ticker_gone_or_moved_on")
                elif isinstance(job, ScheduleJob):
                    outcome = await self._run_schedule(job, state)
                else:
                    outcome = await self._run_poll(job, state)
            except asyncio.CancelledError:
                outcome = "cancelled"
                raise
            except Exception as exc:
                logger.error("job_failed", error=str(exc), exc_info=True)
            finally:
                self._queue.release(job)
                self._slots.release()
                elapsed = time.perf_counter() - started
                JOBS_EXECUTED.labels(kind=job.kind.value, outcome=outcome).inc()
                JOB_DURATION.labels(kind=job.kind.value).observe(elapsed)
                logger.info(
                    "job_finished",
                    outcome=outcome,
                    duration_ms=round(elapsed * 1000, 1),
                    active_workers=self._slots.active,
                    queue_length=len(self._queue),
                )

    # ── Schedule job ────────────────────────────────────────────────────

    async def _run_schedule(self, job: ScheduleJob, state: TickerState) -> str:
        try:
            meta = await asyncio.wait_for(
                self._resolver.resolve(job.source_ref),
                timeout=self._settings.resolve_timeout_s,
            )
        except (ResolutionError, FetchError, asyncio.TimeoutError) as exc:
            if self._current(job) is not state:
                return "discarded"
            logger.warning("resolution_failed", source_ref=job.source_ref, error=str(exc) or "timeout")
            self._registry.remove(job.channel_id)
            self._queue.discard(job.channel_id)
            await self._notify(job.channel_id, self._formatter.resolution_failed_notice())
            return "resolution_failed"

        if self._current(job) is not state:
            return "discarded"

        self._adopt(state, meta)
        start_at = meta.scheduled_time - timedelta(minutes=self._settings.pre_game_lead_minutes)
        delay_s = (start_at - self._clock()).total_seconds()

        if delay_s > 0:
            self._lifecycle.arm_countdown(state, start_at, delay_s)
            await self._notify(
                job.channel_id,
                self._formatter.scheduled_notice(state.display_meta, meta.scheduled_time, state.mode),
            )
            return "scheduled"

        # The notice goes out before the first poll job can deliver anything
        await self._notify(
            job.channel_id, self._formatter.starting_now_notice(state.display_meta, state.mode)
        )
        if self._current(job) is not state:
            return "discarded"

        # Hand the channel over to the poll job promotion is about to queue
        self._queue.release(job)
        self._lifecycle.promote(job.channel_id)
        return "promoted"

    # ── Poll job ────────────────────────────────────────────────────────

    async def _run_poll(self, job: PollJob, state: TickerState) -> str:
        timeout = self._settings.resolve_timeout_s
        try:
            meta = await asyncio.wait_for(self._resolver.resolve(job.source_ref), timeout=timeout)
            if self._current(job) is not state:
                return "discarded"
            self._adopt(state, meta)

            token = meta.version_token
            if not token or token == state.last_version_token:
                logger.debug("version_unchanged", version=token)
                return "unchanged"

            events = await asyncio.wait_for(
                self._resolver.fetch_events(meta.meeting_ref, token), timeout=timeout
            )
        except (ResolutionError, FetchError, asyncio.TimeoutError) as exc:
            # Transient; the next fairness tick retries
            logger.warning("poll_fetch_failed", error=str(exc) or "timeout")
            return "fetch_failed"

        if self._current(job) is not state:
            return "discarded"

        state.last_version_token = token
        logger.info("version_changed", version=token, events=len(events))
        if await self._processor.process(events, state):
            self._persistence.save_seen()
        return "processed"

    # ── Helpers ─────────────────────────────────────────────────────────

    def _current(self, job: Job) -> TickerState | None:
        """The ticker ``job`` belongs to, if it still exists in the status the job expects."""
        expected = EXPECTED_STATUS.get(type(job))
        if expected is None:
            raise TypeError(f"Unknown job type: {type(job).__name__}")
        state = self._registry.get(job.channel_id)
        if state is None or state.status != expected:
            return None
        return state

    @staticmethod
    def _adopt(state: TickerState, meta: MeetingMeta) -> None:
        state.meeting_ref = meta.meeting_ref
        state.apply_display_meta(state.display_meta.resolved_with(meta))

    async def _notify(self, channel_id: str, text: str) -> None:
        try:
            await self._messenger.send(channel_id, text)
            DELIVERIES.labels(kind="notice", outcome="sent").inc()
        except DeliveryError as exc:
            DELIVERIES.labels(kind="notice", outcome="failed").inc()
            logger.error("notice_send_failed", channel_id=channel_id, error=str(exc))
