"""Domain enumerations for the Live Ticker service."""
from __future__ import annotations

from enum import Enum, IntEnum


class TickerStatus(str, Enum):
    PENDING_SCHEDULE = "pending_schedule"
    SCHEDULED = "scheduled"
    POLLING = "polling"
    TERMINATED = "terminated"

    @property
    def is_active(self) -> bool:
        """A ticker that still owns the channel; ``start`` is refused while active."""
        return self != TickerStatus.TERMINATED


# Forward-only lifecycle. Terminated has no successors.
ALLOWED_TRANSITIONS: dict[TickerStatus, frozenset[TickerStatus]] = {
    TickerStatus.PENDING_SCHEDULE: frozenset(
        {TickerStatus.SCHEDULED, TickerStatus.POLLING, TickerStatus.TERMINATED}
    ),
    TickerStatus.SCHEDULED: frozenset({TickerStatus.POLLING, TickerStatus.TERMINATED}),
    TickerStatus.POLLING: frozenset({TickerStatus.TERMINATED}),
    TickerStatus.TERMINATED: frozenset(),
}


class TickerMode(str, Enum):
    LIVE = "live"
    RECAP = "recap"


class JobKind(str, Enum):
    SCHEDULE = "schedule"
    POLL = "poll"


class EventCode(IntEnum):
    """nuScore live event type codes."""
    GAME_RESUMED = 0
    GAME_INTERRUPTED = 1
    TIMEOUT_HOME = 2
    TIMEOUT_GUEST = 3
    GOAL = 4
    SEVEN_METER_GOAL = 5
    SEVEN_METER_MISS = 6
    RED_CARD_ALT = 7
    TIME_PENALTY = 8
    YELLOW_CARD = 9
    RED_CARD = 11
    WHISTLE = 14  # half time or full time
    MATCH_START = 15
    MATCH_END = 16
    LINEUP = 17

    @property
    def is_critical(self) -> bool:
        """Start, half-time and end are delivered immediately in every mode."""
        return self in (EventCode.WHISTLE, EventCode.MATCH_START, EventCode.MATCH_END)

    @property
    def is_termination(self) -> bool:
        return self == EventCode.MATCH_END


class DeliveryRoute(str, Enum):
    """Where the event processor sent a new event."""
    IMMEDIATE = "immediate"
    RECAP = "recap"
    SILENT = "silent"
