"""
Event processor: dedup, routing and termination handling for one fetched
event list.

Events are marked seen before any delivery is attempted; a failed send is
logged and never retried, so an event reaches a channel at most once.
"""
from __future__ import annotations

from typing import Sequence

from shared.errors import DeliveryError
from shared.models.domain import EventRecord
from shared.models.enums import DeliveryRoute, TickerStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import DELIVERIES, EVENTS_PROCESSED

from delivery.base import Messenger
from delivery.formatter import MessageFormatter
from ticker.jobs import JobQueue
from ticker.lifecycle import TickerLifecycle
from ticker.recap import RecapAggregator
from ticker.registry import TickerRegistry, TickerState

logger = get_logger(__name__)


class EventProcessor:

    def __init__(
        self,
        registry: TickerRegistry,
        queue: JobQueue,
        recap: RecapAggregator,
        lifecycle: TickerLifecycle,
        messenger: Messenger,
        formatter: MessageFormatter,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._recap = recap
        self._lifecycle = lifecycle
        self._messenger = messenger
        self._formatter = formatter

    async def process(self, events: Sequence[EventRecord], state: TickerState) -> bool:
        """
        Handle a fetched event list in ascending index order.

        Stops early once the ticker is no longer the live, polling entry in the
        registry (stopped, reset or terminated while a send was in flight).

        Returns True if at least one previously unseen event id was recorded.
        """
        ordered = sorted(events, key=lambda ev: ev.index)
        any_new = False

        for ev in ordered:
            if not self._is_live(state):
                logger.info("processing_aborted", channel_id=state.channel_id, at_index=ev.index)
                break
            if not state.mark_seen(ev.index):
                continue
            any_new = True

            if ev.is_termination:
                await self._terminate(state, ev, ordered)
                break

            route = self.route(ev, state)
            EVENTS_PROCESSED.labels(route=route.value).inc()
            if route == DeliveryRoute.IMMEDIATE:
                await self._deliver(state, self._formatter.format_event(ev, state.display_meta))
            elif route == DeliveryRoute.RECAP:
                state.recap_buffer.append(ev)

        return any_new

    def route(self, ev: EventRecord, state: TickerState) -> DeliveryRoute:
        if not self._formatter.format_event(ev, state.display_meta):
            return DeliveryRoute.SILENT
        if ev.is_critical or not state.is_recap:
            return DeliveryRoute.IMMEDIATE
        return DeliveryRoute.RECAP

    async def _terminate(
        self, state: TickerState, ev: EventRecord, events: Sequence[EventRecord]
    ) -> None:
        channel_id = state.channel_id
        if state.recap_buffer:
            await self._recap.flush(state, trigger="termination")
            if not self._is_live(state):
                return

        self._registry.transition(channel_id, TickerStatus.TERMINATED)
        self._queue.discard(channel_id)
        EVENTS_PROCESSED.labels(route=DeliveryRoute.IMMEDIATE.value).inc()
        logger.info(
            "match_ended",
            channel_id=channel_id,
            score=f"{ev.score_home}:{ev.score_guest}",
            seen=len(state.seen_ids),
        )
        await self._deliver(state, self._formatter.format_event(ev, state.display_meta))
        if self._registry.get(channel_id) is state:
            self._lifecycle.finish_match(state, events)

    def _is_live(self, state: TickerState) -> bool:
        return (
            self._registry.get(state.channel_id) is state
            and state.status == TickerStatus.POLLING
        )

    async def _deliver(self, state: TickerState, text: str) -> None:
        if not text:
            return
        try:
            await self._messenger.send(state.channel_id, text)
            DELIVERIES.labels(kind="event", outcome="sent").inc()
        except DeliveryError as exc:
            DELIVERIES.labels(kind="event", outcome="failed").inc()
            logger.error("event_send_failed", channel_id=state.channel_id, error=str(exc))
