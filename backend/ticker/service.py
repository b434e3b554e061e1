"""
Ticker service for the Live Ticker.
Wires the registry, job queue, drivers and workers together, exposes the
start/stop/reset commands and runs the scheduling loop.

The dispatcher runs on every loop tick; the fairness scheduler runs whenever
its (much longer) interval has elapsed. Everything executes on one asyncio
loop, so registry and queue mutations never interleave.
"""
from __future__ import annotations

import asyncio
import signal
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.errors import AlreadyActiveError, DeliveryError, InvalidTransitionError, TickerNotFoundError
from shared.models.domain import DisplayMeta, TickerSnapshot
from shared.models.enums import TickerMode, TickerStatus
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import DELIVERIES, start_metrics_server
from shared.utils.state_store import JsonStateStore
from shared.utils.timers import BackgroundTasks

from delivery.base import LogMessenger, Messenger
from delivery.formatter import MessageFormatter
from delivery.telegram import TelegramMessenger
from ingest.providers.base import MeetingResolver
from ingest.providers.nuliga import NuLigaResolver
from summary.gemini import GameSummarizer
from ticker.engine.dispatcher import Dispatcher
from ticker.engine.fairness import FairnessScheduler
from ticker.jobs import JobQueue, ScheduleJob, WorkerSlots
from ticker.lifecycle import TickerLifecycle
from ticker.persistence import TickerPersistence
from ticker.processor import EventProcessor
from ticker.recap import RecapAggregator
from ticker.registry import TickerRegistry
from ticker.worker import Clock, Worker, utc_now

logger = get_logger(__name__)


class TickerService:
    """
    Owns one instance of every engine component.

    Command methods are coroutines only because they may send a notice; all
    state changes they make happen before their first await.
    """

    def __init__(
        self,
        resolver: MeetingResolver,
        messenger: Messenger,
        store: JsonStateStore,
        settings: Settings | None = None,
        summarizer: GameSummarizer | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._resolver = resolver
        self._messenger = messenger
        self._clock = clock

        self.registry = TickerRegistry()
        self.queue = JobQueue()
        self.slots = WorkerSlots(self._settings.max_workers)
        self.tasks = BackgroundTasks()
        self.formatter = MessageFormatter(
            self._settings.display_timezone, self._settings.recap_interval_minutes
        )
        self.persistence = TickerPersistence(store, self.registry)
        recap = RecapAggregator(messenger, self.formatter)
        self.lifecycle = TickerLifecycle(
            self.registry,
            self.queue,
            self.persistence,
            recap,
            messenger,
            self.formatter,
            summarizer or GameSummarizer(self._settings),
            self.tasks,
            self._settings,
        )
        self.processor = EventProcessor(
            self.registry, self.queue, recap, self.lifecycle, messenger, self.formatter
        )
        self.worker = Worker(
            self.registry,
            self.queue,
            self.slots,
            resolver,
            self.processor,
            self.lifecycle,
            self.persistence,
            messenger,
            self.formatter,
            self._settings,
            clock,
        )
        self.dispatcher = Dispatcher(self.queue, self.slots, self.worker, self.tasks)
        self.fairness = FairnessScheduler(self.registry, self.queue)
        self._shutdown = asyncio.Event()
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown.is_set()

    # ── Startup / restore ───────────────────────────────────────────────

    async def start(self) -> None:
        """Open collaborator connections and restore persisted state."""
        await self._resolver.start()
        await self._messenger.start()
        self.restore()
        self._started = True

    def restore(self) -> int:
        """
        Re-attach persisted seen ids and re-arm every persisted schedule entry.
        Entries whose start time has passed are promoted straight to polling.

        Returns the number of tickers restored.
        """
        seen, schedule = self.persistence.load()
        self.registry.restore_seen(seen)
        now = self._clock()
        restored = 0
        for channel_id, entry in schedule.items():
            try:
                self.lifecycle.restore_scheduled(channel_id, entry, now)
                restored += 1
            except (AlreadyActiveError, InvalidTransitionError) as exc:
                logger.error("ticker_restore_failed", channel_id=channel_id, error=str(exc))
        logger.info("tickers_restored", count=restored, seen_channels=len(seen))
        return restored

    # ── Commands ────────────────────────────────────────────────────────

    async def start_ticker(
        self,
        channel_id: str,
        source_ref: str,
        channel_name: str = "",
        mode: TickerMode = TickerMode.LIVE,
    ) -> TickerSnapshot:
        """
        Create a ticker and queue its schedule job.

        Raises:
            AlreadyActiveError: if the channel already has a pending, scheduled or polling ticker.
        """
        state = self.registry.create(
            channel_id, source_ref, mode, DisplayMeta(channel_name=channel_name)
        )
        # A worker may still be finishing for the previous ticker on this channel;
        # the schedule job then waits until it has released
        self.queue.drop_claim(channel_id)
        self.queue.push_after_drain(
            ScheduleJob(channel_id=channel_id, source_ref=source_ref, mode=mode),
            source="command",
        )
        logger.info("ticker_start_requested", channel_id=channel_id, source_ref=source_ref, mode=mode.value)
        return state.snapshot(has_job=True)

    async def stop_ticker(self, channel_id: str) -> TickerSnapshot:
        """
        Terminate a pending, scheduled or polling ticker. The terminated state
        (and its seen ids) stays in the registry until the cleanup delay has
        passed, so a restart within that window repeats nothing.

        Raises:
            TickerNotFoundError: if nothing is running on the channel.
        """
        state = self.registry.get(channel_id)
        if state is None or not state.status.is_active:
            raise TickerNotFoundError(channel_id)

        self.registry.transition(channel_id, TickerStatus.TERMINATED)
        self.queue.discard(channel_id)
        self.queue.drop_claim(channel_id)
        self.persistence.drop_schedule(channel_id)
        self.lifecycle.arm_cleanup(state)
        logger.info("ticker_stopped", channel_id=channel_id)
        await self._notify(channel_id, self.formatter.stopped_notice())
        return state.snapshot()

    async def reset_ticker(self, channel_id: str) -> bool:
        """
        Forget everything about the channel, including seen ids on disk.
        Returns True if a ticker existed.
        """
        state = self.registry.remove(channel_id)
        self.registry.forget_restored(channel_id)
        self.queue.discard(channel_id)
        self.queue.drop_claim(channel_id)
        self.persistence.drop_schedule(channel_id)
        self.persistence.save_seen()
        logger.info("ticker_reset", channel_id=channel_id, existed=state is not None)
        await self._notify(channel_id, self.formatter.reset_notice())
        return state is not None

    # ── Queries ─────────────────────────────────────────────────────────

    def get_ticker(self, channel_id: str) -> Optional[TickerSnapshot]:
        state = self.registry.get(channel_id)
        if state is None:
            return None
        return state.snapshot(has_job=self.queue.has_job(channel_id))

    def list_tickers(self) -> list[TickerSnapshot]:
        return [t.snapshot(has_job=self.queue.has_job(t.channel_id)) for t in self.registry]

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "tickers": self.registry.count_by_status(),
            "queue_length": len(self.queue),
            "active_workers": self.slots.active,
            "max_workers": self.slots.max_workers,
            "fairness_cursor": self.fairness.cursor,
        }

    # ── Main loop ───────────────────────────────────────────────────────

    async def run(self) -> None:
        """
        Main scheduling loop.
        Dispatches queued jobs every tick and runs the fairness scheduler on its own interval.
        """
        loop = asyncio.get_running_loop()
        last_fairness = loop.time()

        while not self._shutdown.is_set():
            try:
                self.dispatcher.tick()

                now = loop.time()
                if now - last_fairness >= self._settings.fairness_tick_interval_s:
                    self.fairness.tick()
                    last_fairness = now

                await asyncio.sleep(self._settings.dispatcher_tick_interval_s)

            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("ticker_loop_error", error=str(exc), exc_info=True)
                await asyncio.sleep(2.0)

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def close(self) -> None:
        """Stop timers and in-flight work, write the seen ids one last time, close connections."""
        self.request_shutdown()
        for state in self.registry:
            state.cancel_timers()
        await self.tasks.cancel_all()
        self.persistence.save_seen()
        await self._resolver.close()
        await self._messenger.close()
        self._started = False

    async def _notify(self, channel_id: str, text: str) -> None:
        try:
            await self._messenger.send(channel_id, text)
            DELIVERIES.labels(kind="notice", outcome="sent").inc()
        except DeliveryError as exc:
            DELIVERIES.labels(kind="notice", outcome="failed").inc()
            logger.error("notice_send_failed", channel_id=channel_id, error=str(exc))


def build_service(settings: Settings | None = None) -> TickerService:
    """Assemble a service with the production collaborators selected by ``settings``."""
    settings = settings or get_settings()
    messenger: Messenger
    if settings.telegram_bot_token:
        messenger = TelegramMessenger(settings.telegram_bot_token, settings)
    else:
        logger.warning("telegram_disabled", reason="no bot token, messages go to the log")
        messenger = LogMessenger()
    return TickerService(
        resolver=NuLigaResolver(settings),
        messenger=messenger,
        store=JsonStateStore.from_settings(settings),
        settings=settings,
    )


async def main() -> None:
    """Headless ticker engine entrypoint (no HTTP command API)."""
    settings = get_settings()
    setup_logging("ticker")
    if settings.metrics_enabled:
        start_metrics_server(settings.metrics_port)

    service = build_service(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_shutdown)

    await service.start()
    logger.info("ticker_service_started", instance_id=settings.instance_id, max_workers=settings.max_workers)

    try:
        await service.run()
    finally:
        await service.close()
        logger.info("ticker_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
