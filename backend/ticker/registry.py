"""
Ticker registry: the single source of truth for ticker lifecycle.

Every status change goes through ``TickerRegistry.transition`` which enforces
the forward-only lifecycle and cancels the timers owned by the state being
left. All methods are synchronous and run on the event loop thread, so a
mutation can never interleave with another one.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional

from shared.errors import AlreadyActiveError, InvalidTransitionError
from shared.models.domain import DisplayMeta, EventRecord, ScheduleEntry, TickerSnapshot
from shared.models.enums import ALLOWED_TRANSITIONS, TickerMode, TickerStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import TICKERS
from shared.utils.timers import CancellableTimer

logger = get_logger(__name__)


class TickerState:
    """Runtime state of one ticker (one match bound to one channel)."""

    def __init__(
        self,
        channel_id: str,
        source_ref: str,
        mode: TickerMode,
        display_meta: DisplayMeta | None = None,
        seen_ids: Iterable[int] = (),
    ) -> None:
        self.channel_id = channel_id
        self.source_ref = source_ref
        self.mode = mode
        self.display_meta: DisplayMeta = display_meta or DisplayMeta()
        self.status: TickerStatus = TickerStatus.PENDING_SCHEDULE
        self.meeting_ref: Optional[str] = None
        self.last_version_token: Optional[str] = None
        self.seen_ids: set[int] = set(seen_ids)
        self.recap_buffer: list[EventRecord] = []
        self.scheduled_start_time: Optional[datetime] = None
        self.countdown_timer: Optional[CancellableTimer] = None
        self.recap_timer: Optional[CancellableTimer] = None
        self.cleanup_timer: Optional[CancellableTimer] = None
        self.created_at = datetime.now(timezone.utc)

    @property
    def is_recap(self) -> bool:
        return self.mode == TickerMode.RECAP

    def mark_seen(self, index: int) -> bool:
        """Add ``index`` to the seen set. Returns False when it was already there."""
        if index in self.seen_ids:
            return False
        self.seen_ids.add(index)
        return True

    def apply_display_meta(self, meta: DisplayMeta) -> None:
        """Adopt resolved labels once; later calls cannot overwrite them."""
        if self.display_meta.is_resolved:
            return
        self.display_meta = meta

    def schedule_entry(self) -> ScheduleEntry:
        if self.scheduled_start_time is None:
            raise ValueError(f"Ticker {self.channel_id} has no scheduled start time")
        return ScheduleEntry(
            source_ref=self.source_ref,
            start_time=self.scheduled_start_time,
            display_meta=self.display_meta,
            mode=self.mode,
        )

    def cancel_timers(self) -> None:
        for timer in (self.countdown_timer, self.recap_timer, self.cleanup_timer):
            if timer is not None:
                timer.cancel()
        self.countdown_timer = None
        self.recap_timer = None
        self.cleanup_timer = None

    def snapshot(self, has_job: bool = False) -> TickerSnapshot:
        return TickerSnapshot(
            channel_id=self.channel_id,
            status=self.status,
            mode=self.mode,
            source_ref=self.source_ref,
            display_meta=self.display_meta,
            meeting_ref=self.meeting_ref,
            last_version_token=self.last_version_token,
            seen_count=len(self.seen_ids),
            recap_buffered=len(self.recap_buffer),
            scheduled_start_time=self.scheduled_start_time,
            has_job=has_job,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"TickerState({self.channel_id!r}, {self.status.value}, {self.mode.value})"


class TickerRegistry:
    """
    Owns the map channel id → TickerState.

    Seen-id sets loaded at startup are parked in ``_restored_seen`` until a
    ticker is created on the same channel; they are included in every seen
    snapshot so saving never drops them.
    """

    def __init__(self) -> None:
        self._tickers: dict[str, TickerState] = {}
        self._restored_seen: dict[str, set[int]] = {}

    def __len__(self) -> int:
        return len(self._tickers)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._tickers

    def __iter__(self) -> Iterator[TickerState]:
        return iter(list(self._tickers.values()))

    # ── Lookup ──────────────────────────────────────────────────────────

    def get(self, channel_id: str) -> Optional[TickerState]:
        return self._tickers.get(channel_id)

    def polling(self) -> list[TickerState]:
        """Polling tickers in creation order (stable across calls)."""
        return [t for t in self._tickers.values() if t.status == TickerStatus.POLLING]

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in TickerStatus}
        for ticker in self._tickers.values():
            counts[ticker.status.value] += 1
        return counts

    # ── Mutation ────────────────────────────────────────────────────────

    def create(
        self,
        channel_id: str,
        source_ref: str,
        mode: TickerMode,
        display_meta: DisplayMeta | None = None,
    ) -> TickerState:
        """
        Register a new PendingSchedule ticker.

        A terminated ticker on the channel is replaced and its seen ids carried
        over, as are seen ids restored from disk, so re-starting the same match
        never repeats delivered events.

        Raises:
            AlreadyActiveError: if a pending, scheduled or polling ticker exists.
        """
        existing = self._tickers.get(channel_id)
        seen: set[int] = set(self._restored_seen.pop(channel_id, set()))
        if existing is not None:
            if existing.status.is_active:
                raise AlreadyActiveError(channel_id, existing.status.value)
            existing.cancel_timers()
            seen |= existing.seen_ids

        state = TickerState(channel_id, source_ref, mode, display_meta, seen_ids=seen)
        self._tickers[channel_id] = state
        logger.info(
            "ticker_created",
            channel_id=channel_id,
            mode=mode.value,
            carried_seen=len(seen),
        )
        self._update_gauges()
        return state

    def transition(
        self,
        channel_id: str,
        new_status: TickerStatus,
        *,
        timer: CancellableTimer | None = None,
        scheduled_start: datetime | None = None,
    ) -> TickerState:
        """
        Move a ticker forward in its lifecycle.

        Entering SCHEDULED requires the countdown ``timer`` and
        ``scheduled_start``; entering POLLING in recap mode requires the recap
        ``timer``. No other transition accepts a timer. Timers owned by the
        state being left are cancelled here and nowhere else.
        """
        state = self._tickers.get(channel_id)
        if state is None:
            raise KeyError(channel_id)
        current = state.status
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(channel_id, current.value, new_status.value)

        needs_timer = new_status == TickerStatus.SCHEDULED or (
            new_status == TickerStatus.POLLING and state.is_recap
        )
        if needs_timer and timer is None:
            raise InvalidTransitionError(
                channel_id, current.value, new_status.value, "a timer is required"
            )
        if not needs_timer and timer is not None:
            raise InvalidTransitionError(
                channel_id, current.value, new_status.value, "unexpected timer"
            )
        if new_status == TickerStatus.SCHEDULED and scheduled_start is None:
            raise InvalidTransitionError(
                channel_id, current.value, new_status.value, "scheduled_start is required"
            )

        # Leave the current state
        if current == TickerStatus.SCHEDULED:
            if state.countdown_timer is not None:
                state.countdown_timer.cancel()
            state.countdown_timer = None
            state.scheduled_start_time = None
        elif current == TickerStatus.POLLING:
            if state.recap_timer is not None:
                state.recap_timer.cancel()
            state.recap_timer = None

        # Enter the new one
        state.status = new_status
        if new_status == TickerStatus.SCHEDULED:
            state.countdown_timer = timer
            state.scheduled_start_time = scheduled_start
        elif new_status == TickerStatus.POLLING and state.is_recap:
            state.recap_timer = timer
        elif new_status == TickerStatus.TERMINATED:
            state.cancel_timers()
            state.recap_buffer = []

        logger.info(
            "ticker_transition",
            channel_id=channel_id,
            from_status=current.value,
            to_status=new_status.value,
        )
        self._update_gauges()
        return state

    def arm_cleanup(self, channel_id: str, timer: CancellableTimer) -> None:
        """Attach the post-termination cleanup timer to a terminated ticker."""
        state = self._tickers[channel_id]
        if state.status != TickerStatus.TERMINATED:
            raise InvalidTransitionError(
                channel_id, state.status.value, "cleanup", "ticker is not terminated"
            )
        if state.cleanup_timer is not None:
            state.cleanup_timer.cancel()
        state.cleanup_timer = timer

    def remove(self, channel_id: str) -> Optional[TickerState]:
        """Cancel every timer the ticker owns and drop it."""
        state = self._tickers.pop(channel_id, None)
        if state is not None:
            state.cancel_timers()
            logger.info("ticker_removed", channel_id=channel_id, status=state.status.value)
            self._update_gauges()
        return state

    # ── Persistence views ───────────────────────────────────────────────

    def restore_seen(self, seen: dict[str, set[int]]) -> None:
        for channel_id, ids in seen.items():
            state = self._tickers.get(channel_id)
            if state is not None:
                state.seen_ids |= ids
            else:
                self._restored_seen[channel_id] = set(ids)

    def forget_restored(self, channel_id: str) -> None:
        self._restored_seen.pop(channel_id, None)

    def seen_snapshot(self) -> dict[str, set[int]]:
        snapshot = {cid: set(ids) for cid, ids in self._restored_seen.items()}
        for channel_id, state in self._tickers.items():
            if state.seen_ids:
                snapshot[channel_id] = set(state.seen_ids)
        return snapshot

    def _update_gauges(self) -> None:
        for status, count in self.count_by_status().items():
            TICKERS.labels(status=status).set(count)
