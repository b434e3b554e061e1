"""
Glue between the engine and the JSON state store.

Persistence failures are logged and counted but never propagate: the
in-memory registry stays authoritative and the next successful save
catches the files up.
"""
from __future__ import annotations

from shared.errors import PersistenceError
from shared.models.domain import ScheduleEntry
from shared.utils.logging import get_logger
from shared.utils.metrics import PERSISTENCE_ERRORS
from shared.utils.state_store import JsonStateStore

from ticker.registry import TickerRegistry, TickerState

logger = get_logger(__name__)


class TickerPersistence:
    """Keeps an in-memory mirror of the schedule file and rewrites files from memory."""

    def __init__(self, store: JsonStateStore, registry: TickerRegistry) -> None:
        self._store = store
        self._registry = registry
        self._schedule: dict[str, ScheduleEntry] = {}

    @property
    def schedule(self) -> dict[str, ScheduleEntry]:
        return dict(self._schedule)

    def load(self) -> tuple[dict[str, set[int]], dict[str, ScheduleEntry]]:
        """Read both stores. An unreadable store is treated as empty."""
        try:
            seen = self._store.load_seen()
        except PersistenceError as exc:
            PERSISTENCE_ERRORS.labels(store="seen", op="load").inc()
            logger.error("seen_store_load_failed", error=str(exc))
            seen = {}
        try:
            schedule = self._store.load_schedule()
        except PersistenceError as exc:
            PERSISTENCE_ERRORS.labels(store="schedule", op="load").inc()
            logger.error("schedule_store_load_failed", error=str(exc))
            schedule = {}
        self._schedule = dict(schedule)
        logger.info("state_loaded", seen_tickers=len(seen), scheduled_tickers=len(schedule))
        return seen, schedule

    def save_seen(self) -> bool:
        try:
            self._store.save_seen(self._registry.seen_snapshot())
        except PersistenceError as exc:
            PERSISTENCE_ERRORS.labels(store="seen", op="save").inc()
            logger.error("seen_store_save_failed", error=str(exc))
            return False
        return True

    def record_schedule(self, state: TickerState) -> bool:
        self._schedule[state.channel_id] = state.schedule_entry()
        return self._save_schedule()

    def drop_schedule(self, channel_id: str) -> bool:
        if self._schedule.pop(channel_id, None) is None:
            return True
        logger.info("schedule_entry_removed", channel_id=channel_id)
        return self._save_schedule()

    def _save_schedule(self) -> bool:
        try:
            self._store.save_schedule(self._schedule)
        except PersistenceError as exc:
            PERSISTENCE_ERRORS.labels(store="schedule", op="save").inc()
            logger.error("schedule_store_save_failed", error=str(exc))
            return False
        return True
