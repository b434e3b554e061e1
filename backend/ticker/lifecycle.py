"""
Timed lifecycle steps of a ticker: arming the pre-game countdown, promotion
to polling, the recap interval, and the post-match side effects and cleanup.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Sequence

from shared.config import Settings, get_settings
from shared.errors import DeliveryError
from shared.models.domain import EventRecord, ScheduleEntry
from shared.models.enums import TickerStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import DELIVERIES
from shared.utils.timers import BackgroundTasks, CancellableTimer

from delivery.base import Messenger
from delivery.formatter import MessageFormatter
from summary.gemini import GameSummarizer
from ticker.jobs import JobQueue, PollJob
from ticker.persistence import TickerPersistence
from ticker.recap import RecapAggregator
from ticker.registry import TickerRegistry, TickerState

logger = get_logger(__name__)


class TickerLifecycle:

    def __init__(
        self,
        registry: TickerRegistry,
        queue: JobQueue,
        persistence: TickerPersistence,
        recap: RecapAggregator,
        messenger: Messenger,
        formatter: MessageFormatter,
        summarizer: GameSummarizer,
        tasks: BackgroundTasks,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._persistence = persistence
        self._recap = recap
        self._messenger = messenger
        self._formatter = formatter
        self._summarizer = summarizer
        self._tasks = tasks
        self._settings = settings or get_settings()

    # ── Pre-game ────────────────────────────────────────────────────────

    def arm_countdown(self, state: TickerState, start_at: datetime, delay_s: float) -> None:
        """Move ``state`` to SCHEDULED with a countdown that promotes it after ``delay_s``."""
        channel_id = state.channel_id
        timer = CancellableTimer(
            delay_s,
            lambda: self.promote(channel_id),
            name=f"countdown:{channel_id}",
        )
        self._registry.transition(
            channel_id, TickerStatus.SCHEDULED, timer=timer, scheduled_start=start_at
        )
        timer.start()
        self._persistence.record_schedule(state)
        logger.info(
            "ticker_scheduled",
            channel_id=channel_id,
            start_at=start_at.isoformat(),
            delay_s=round(delay_s, 1),
        )

    def promote(self, channel_id: str) -> bool:
        """
        Start polling a ticker. Safe to call more than once.

        Returns True when the ticker was moved to POLLING by this call.
        """
        state = self._registry.get(channel_id)
        if state is None:
            logger.warning("promotion_ticker_missing", channel_id=channel_id)
            self._persistence.drop_schedule(channel_id)
            return False
        if state.status == TickerStatus.POLLING:
            return False
        if state.status == TickerStatus.TERMINATED:
            logger.info("promotion_skipped_terminated", channel_id=channel_id)
            return False

        recap_timer = None
        if state.is_recap:
            recap_timer = CancellableTimer(
                self._settings.recap_interval_s,
                lambda: self._on_recap_interval(channel_id),
                repeat=True,
                name=f"recap:{channel_id}",
            )
        self._registry.transition(channel_id, TickerStatus.POLLING, timer=recap_timer)
        if recap_timer is not None:
            recap_timer.start()
        self._persistence.drop_schedule(channel_id)
        self._queue.push_front(
            PollJob(channel_id=channel_id, source_ref=state.source_ref, mode=state.mode),
            source="promotion",
        )
        logger.info("ticker_polling_started", channel_id=channel_id, mode=state.mode.value)
        return True

    def restore_scheduled(self, channel_id: str, entry: ScheduleEntry, now: datetime) -> TickerState:
        """Recreate a ticker from its schedule-store entry after a restart."""
        state = self._registry.create(channel_id, entry.source_ref, entry.mode, entry.display_meta)
        delay_s = (entry.start_time - now).total_seconds()
        if delay_s > 0:
            self.arm_countdown(state, entry.start_time, delay_s)
        else:
            self.promote(channel_id)
        logger.info("ticker_restored", channel_id=channel_id, status=state.status.value)
        return state

    # ── Recap interval ──────────────────────────────────────────────────

    def _on_recap_interval(self, channel_id: str) -> None:
        state = self._registry.get(channel_id)
        if state is None or state.status != TickerStatus.POLLING or not state.recap_buffer:
            return
        self._tasks.spawn(self._recap.flush(state, trigger="interval"), name=f"recap:{channel_id}")

    # ── Post-match ──────────────────────────────────────────────────────

    def finish_match(self, state: TickerState, events: Sequence[EventRecord]) -> None:
        """Kick off summary + closing message and arm the delayed purge of a terminated ticker."""
        channel_id = state.channel_id
        self._tasks.spawn(self._end_of_match(state, list(events)), name=f"end:{channel_id}")
        self.arm_cleanup(state)

    def arm_cleanup(self, state: TickerState) -> None:
        """Purge the terminated ``state`` once the retention delay has passed."""
        channel_id = state.channel_id
        timer = CancellableTimer(
            self._settings.cleanup_delay_s,
            lambda: self._cleanup(state),
            name=f"cleanup:{channel_id}",
        )
        self._registry.arm_cleanup(channel_id, timer)
        timer.start()
        logger.info(
            "ticker_cleanup_scheduled",
            channel_id=channel_id,
            delay_s=self._settings.cleanup_delay_s,
        )

    async def _end_of_match(self, state: TickerState, events: list[EventRecord]) -> None:
        summary = await self._summarizer.summarize(events, state.display_meta)
        if summary:
            await self._send(state.channel_id, summary, kind="summary")
        await asyncio.sleep(self._settings.closing_message_delay_s)
        await self._send(state.channel_id, self._formatter.closing_message(), kind="closing")

    def _cleanup(self, state: TickerState) -> None:
        if self._registry.get(state.channel_id) is not state:
            return
        self._registry.remove(state.channel_id)
        self._persistence.save_seen()
        logger.info("ticker_purged", channel_id=state.channel_id)

    async def _send(self, channel_id: str, text: str, kind: str) -> None:
        try:
            await self._messenger.send(channel_id, text)
            DELIVERIES.labels(kind=kind, outcome="sent").inc()
        except DeliveryError as exc:
            DELIVERIES.labels(kind=kind, outcome="failed").inc()
            logger.error("message_send_failed", channel_id=channel_id, kind=kind, error=str(exc))
