"""
Round-robin fairness scheduler.
Offers one polling ticker a poll job per tick, so total load stays flat no
matter how many tickers are polling.
"""
from __future__ import annotations

from typing import Optional

from shared.utils.logging import get_logger

from ticker.jobs import JobQueue, PollJob
from ticker.registry import TickerRegistry

logger = get_logger(__name__)


class FairnessScheduler:
    """
    Keeps a single cursor over the polling tickers (in registry order) and
    advances it by one on every tick. With N polling tickers each one is
    offered a job exactly once per N ticks.
    """

    def __init__(self, registry: TickerRegistry, queue: JobQueue) -> None:
        self._registry = registry
        self._queue = queue
        self._cursor = -1

    @property
    def cursor(self) -> int:
        return self._cursor

    def tick(self) -> Optional[str]:
        """
        Advance the cursor and enqueue a poll job for the ticker under it.

        Returns the channel id that was offered a job, or None when nothing is
        polling or the selected ticker already has a job queued or running.
        """
        polling = self._registry.polling()
        if not polling:
            return None

        self._cursor = (self._cursor + 1) % len(polling)
        state = polling[self._cursor]
        if self._queue.has_job(state.channel_id):
            logger.debug("fairness_skip_busy", channel_id=state.channel_id, cursor=self._cursor)
            return None

        self._queue.push(
            PollJob(channel_id=state.channel_id, source_ref=state.source_ref, mode=state.mode),
            source="fairness",
        )
        return state.channel_id
