"""Recap aggregator: batches non-critical events of recap-mode tickers into one message."""
from __future__ import annotations

from shared.errors import DeliveryError
from shared.utils.logging import get_logger
from shared.utils.metrics import DELIVERIES, RECAP_FLUSHES

from delivery.base import Messenger
from delivery.formatter import MessageFormatter
from ticker.registry import TickerState

logger = get_logger(__name__)


class RecapAggregator:

    def __init__(self, messenger: Messenger, formatter: MessageFormatter) -> None:
        self._messenger = messenger
        self._formatter = formatter

    async def flush(self, state: TickerState, trigger: str = "interval") -> bool:
        """
        Send everything buffered for ``state`` as one message.

        The buffer is emptied before sending, so a failed send never produces a
        duplicate recap later. Returns True when a message was attempted.
        """
        if not state.recap_buffer:
            return False
        events, state.recap_buffer = state.recap_buffer, []

        lines = [self._formatter.format_recap_line(ev, state.display_meta) for ev in events]
        lines = [line for line in lines if line]
        if not lines:
            return False

        start = min(ev.in_match_second for ev in events)
        end = max(ev.in_match_second for ev in events)
        text = self._formatter.format_recap(start, end, lines)
        RECAP_FLUSHES.labels(trigger=trigger).inc()
        logger.info(
            "recap_flush",
            channel_id=state.channel_id,
            events=len(events),
            trigger=trigger,
        )
        try:
            await self._messenger.send(state.channel_id, text)
            DELIVERIES.labels(kind="recap", outcome="sent").inc()
        except DeliveryError as exc:
            DELIVERIES.labels(kind="recap", outcome="failed").inc()
            logger.error("recap_send_failed", channel_id=state.channel_id, error=str(exc))
        return True
