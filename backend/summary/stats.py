"""
Match statistics derived from the raw event list.
Feeds the summary prompt; has no I/O.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from shared.models.domain import EventRecord, TeamNames
from shared.models.enums import EventCode

DEFAULT_GAME_MINUTES = 60
PROGRESSION_STEP_MINUTES = 5


@dataclass
class TeamStats:
    name: str
    goals: Counter[str] = field(default_factory=Counter)
    time_penalties: int = 0
    seven_meters_made: int = 0
    seven_meters_missed: int = 0

    @property
    def seven_meter_line(self) -> str:
        attempts = self.seven_meters_made + self.seven_meters_missed
        return f"{self.seven_meters_made} von {attempts}"

    def top_scorer(self) -> str:
        if not self.goals:
            return "Niemand"
        best = max(self.goals.values())
        names = sorted(name for name, n in self.goals.items() if n == best)
        return f"{' & '.join(names)} ({best} Tore)"


@dataclass
class GameStats:
    home: TeamStats
    guest: TeamStats
    halftime_score: Optional[tuple[int, int]] = None
    final_score: Optional[tuple[int, int]] = None
    progression: list[tuple[int, int, int]] = field(default_factory=list)

    def progression_line(self) -> str:
        parts = ["Start: 0:0"]
        parts.extend(f"{minute}min: {h}:{g}" for minute, h, g in self.progression)
        if self.final_score:
            parts.append(f"Ende: {self.final_score[0]}:{self.final_score[1]}")
        return ", ".join(parts)


def extract_game_stats(
    events: Iterable[EventRecord],
    team_names: TeamNames,
    half_length_minutes: Optional[int] = None,
) -> GameStats:
    ordered = sorted(events, key=lambda ev: ev.index)
    stats = GameStats(home=TeamStats(team_names.home), guest=TeamStats(team_names.guest))

    for ev in ordered:
        team = stats.home if ev.is_home_team else stats.guest
        if ev.type_code in (EventCode.GOAL, EventCode.SEVEN_METER_GOAL):
            if ev.player_name:
                team.goals[ev.player_name] += 1
            if ev.type_code == EventCode.SEVEN_METER_GOAL:
                team.seven_meters_made += 1
        elif ev.type_code == EventCode.SEVEN_METER_MISS:
            team.seven_meters_missed += 1
        elif ev.type_code == EventCode.TIME_PENALTY:
            team.time_penalties += 1
        elif ev.type_code == EventCode.WHISTLE and stats.halftime_score is None:
            stats.halftime_score = (ev.score_home, ev.score_guest)

    if ordered:
        final = next((ev for ev in ordered if ev.is_termination), ordered[-1])
        stats.final_score = (final.score_home, final.score_guest)

    game_minutes = half_length_minutes * 2 if half_length_minutes else DEFAULT_GAME_MINUTES
    for minute in range(PROGRESSION_STEP_MINUTES, game_minutes + 1, PROGRESSION_STEP_MINUTES):
        at = next((ev for ev in ordered if ev.in_match_second >= minute * 60), None)
        if at is not None:
            stats.progression.append((minute, at.score_home, at.score_guest))
    return stats
