"""
Pydantic v2 domain models shared across the Live Ticker service.
These are the wire/persistence representations; the mutable per-ticker
runtime state lives in ``ticker.registry.TickerState``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models.enums import EventCode, TickerMode, TickerStatus


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Match metadata ──────────────────────────────────────────────────────
class TeamNames(DomainModel):
    home: str
    guest: str


class DisplayMeta(DomainModel):
    """Human-facing labels for a ticker. Team names and half length arrive with resolution."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    channel_name: str = ""
    team_names: Optional[TeamNames] = None
    half_length_minutes: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return self.team_names is not None

    def resolved_with(self, meta: "MeetingMeta") -> "DisplayMeta":
        """Fill in fields still missing from ``meta``; fields already set are never replaced."""
        return self.model_copy(
            update={
                "team_names": self.team_names or meta.team_names,
                "half_length_minutes": self.half_length_minutes or meta.half_length_minutes,
            }
        )


class MeetingMeta(DomainModel):
    """Result of resolving a meeting page into a concrete upstream target."""
    meeting_ref: str
    team_names: TeamNames
    scheduled_time: datetime
    version_token: Optional[str] = None
    half_length_minutes: Optional[int] = None


# ── Events ──────────────────────────────────────────────────────────────
class EventRecord(DomainModel):
    """One raw live event. Field aliases are the nuScore JSON keys."""
    index: int = Field(alias="idx")
    type_code: int = Field(alias="event")
    in_match_second: int = Field(default=0, alias="second")
    is_home_team: bool = Field(default=False, alias="teamHome")
    score_home: int = Field(default=0, alias="pointsHome")
    score_guest: int = Field(default=0, alias="pointsGuest")
    player_first: Optional[str] = Field(default=None, alias="personFirstname")
    player_last: Optional[str] = Field(default=None, alias="personLastname")

    @field_validator("in_match_second", "score_home", "score_guest", mode="before")
    @classmethod
    def _none_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("is_home_team", mode="before")
    @classmethod
    def _none_as_false(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def code(self) -> Optional[EventCode]:
        try:
            return EventCode(self.type_code)
        except ValueError:
            return None

    @property
    def is_critical(self) -> bool:
        return self.code is not None and self.code.is_critical

    @property
    def is_termination(self) -> bool:
        return self.code is not None and self.code.is_termination

    @property
    def player_name(self) -> str:
        return f"{self.player_first or ''} {self.player_last or ''}".strip()


# ── Persistence ─────────────────────────────────────────────────────────
class ScheduleEntry(DomainModel):
    """A Scheduled ticker as written to the schedule store for restart recovery."""
    source_ref: str
    start_time: datetime
    display_meta: DisplayMeta = Field(default_factory=DisplayMeta)
    mode: TickerMode = TickerMode.LIVE


# ── API views ───────────────────────────────────────────────────────────
class TickerSnapshot(DomainModel):
    """Read-only view of a ticker for the command API."""
    channel_id: str
    status: TickerStatus
    mode: TickerMode
    source_ref: str
    display_meta: DisplayMeta
    meeting_ref: Optional[str] = None
    last_version_token: Optional[str] = None
    seen_count: int = 0
    recap_buffered: int = 0
    scheduled_start_time: Optional[datetime] = None
    has_job: bool = False
    created_at: datetime


class StartTickerRequest(DomainModel):
    source_ref: str = Field(min_length=1)
    channel_name: str = ""
    mode: TickerMode = TickerMode.LIVE
