"""Match statistics and Gemini summarizer tests."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.domain import DisplayMeta, TeamNames
from shared.models.enums import EventCode

from summary.gemini import SUMMARY_HEADER, GameSummarizer, build_prompt
from summary.stats import extract_game_stats

from conftest import ev

TEAMS = TeamNames(home="HSG Nord", guest="TV Süd")
META = DisplayMeta(channel_name="HSG Nord Fans", team_names=TEAMS, half_length_minutes=30)


def _match() -> list:
    return [
        ev(1, EventCode.MATCH_START, second=1),
        ev(2, second=180, score=(1, 0), player=("Lena", "Kraft")),
        ev(3, EventCode.SEVEN_METER_GOAL, second=400, score=(2, 0), player=("Lena", "Kraft")),
        ev(4, EventCode.SEVEN_METER_MISS, second=500, home=False, score=(2, 0)),
        ev(5, EventCode.TIME_PENALTY, second=650, home=False, score=(2, 0)),
        ev(6, second=700, home=False, score=(2, 1), player=("Mia", "Berg")),
        ev(7, EventCode.WHISTLE, second=1800, score=(2, 1)),
        ev(8, second=2000, score=(3, 1), player=("Jana", "Ost")),
        ev(9, EventCode.MATCH_END, second=3600, score=(3, 1)),
    ]


# ── Stats ───────────────────────────────────────────────────────────────

def test_extract_game_stats() -> None:
    stats = extract_game_stats(_match(), TEAMS, half_length_minutes=30)

    assert stats.halftime_score == (2, 1)
    assert stats.final_score == (3, 1)
    assert stats.home.top_scorer() == "Lena Kraft (2 Tore)"
    assert stats.guest.top_scorer() == "Mia Berg (1 Tore)"
    assert stats.home.seven_meter_line == "1 von 1"
    assert stats.guest.seven_meter_line == "0 von 1"
    assert stats.guest.time_penalties == 1
    assert stats.progression[0] == (5, 2, 0)
    assert stats.progression[-1] == (60, 3, 1)


def test_top_scorer_ties_and_empty() -> None:
    stats = extract_game_stats(
        [ev(1, player=("B", "Two")), ev(2, player=("A", "One"))], TEAMS
    )
    assert stats.home.top_scorer() == "A One & B Two (1 Tore)"
    assert stats.guest.top_scorer() == "Niemand"


def test_progression_line() -> None:
    stats = extract_game_stats([ev(1, second=330, score=(1, 0))], TEAMS, half_length_minutes=5)
    assert stats.progression_line() == "Start: 0:0, 5min: 1:0, Ende: 1:0"


def test_prompt_carries_the_numbers() -> None:
    prompt = build_prompt(extract_game_stats(_match(), TEAMS, 30), "HSG Nord Fans", 60)
    assert "Halbzeit: 2:1" in prompt
    assert "Endstand: 3:1" in prompt
    assert '"HSG Nord Fans"' in prompt


# ── Summarizer ──────────────────────────────────────────────────────────

def _client(response=None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)
    return client


@pytest.mark.asyncio
async def test_disabled_without_api_key(settings: Settings) -> None:
    summarizer = GameSummarizer(settings)
    assert not summarizer.enabled
    assert await summarizer.summarize(_match(), META) == ""


@pytest.mark.asyncio
async def test_summary_is_prefixed_with_header(settings: Settings) -> None:
    client = _client(SimpleNamespace(text="  **Heimsieg!** Nord macht es.  "))
    summarizer = GameSummarizer(settings, client=client)

    text = await summarizer.summarize(_match(), META)

    assert text == f"{SUMMARY_HEADER}\n\n**Heimsieg!** Nord macht es."
    call = client.aio.models.generate_content.await_args
    assert call.kwargs["model"] == settings.gemini_model
    assert "Spiellänge: 60 Minuten" in call.kwargs["contents"]


@pytest.mark.asyncio
async def test_model_failure_yields_no_summary(settings: Settings) -> None:
    summarizer = GameSummarizer(settings, client=_client(error=RuntimeError("quota")))
    assert await summarizer.summarize(_match(), META) == ""


@pytest.mark.asyncio
async def test_empty_response_or_events_yield_no_summary(settings: Settings) -> None:
    summarizer = GameSummarizer(settings, client=_client(SimpleNamespace(text=None)))
    assert await summarizer.summarize(_match(), META) == ""
    assert await summarizer.summarize([], META) == ""
