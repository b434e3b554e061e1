"""
End-of-match commentary generated with Gemini (google-genai).

Best effort: without an API key, or when the model call fails, no summary
is produced and the ticker carries on.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

from google import genai

from shared.config import Settings, get_settings
from shared.models.domain import DisplayMeta, EventRecord, TeamNames
from shared.utils.logging import get_logger

from summary.stats import GameStats, extract_game_stats

logger = get_logger(__name__)

SUMMARY_HEADER = "🤖 *KI-Analyse zum Spiel:*"


def build_prompt(stats: GameStats, channel_name: str, game_minutes: int) -> str:
    home, guest = stats.home, stats.guest
    halftime = f"{stats.halftime_score[0]}:{stats.halftime_score[1]}" if stats.halftime_score else "N/A"
    final = f"{stats.final_score[0]}:{stats.final_score[1]}" if stats.final_score else "N/A"
    return f"""Du bist ein humorvoller, leicht bissiger deutscher Handball-Kommentator.
Schreibe eine kurze Zusammenfassung (2-4 Sätze) des gerade beendeten Spiels.

Die Gruppe, in der du postest, heißt "{channel_name}". Wenn der Name eindeutig zu einem
der beiden Teams gehört, kommentiere parteiisch für dieses Team. Sonst bleibe neutral und
erwähne den Gruppennamen nicht.

Spieldaten:
- Heim: {home.name}
- Gast: {guest.name}
- Halbzeit: {halftime}
- Endstand: {final}
- Spiellänge: {game_minutes} Minuten
- Verlauf: {stats.progression_line()}
- Topscorer {home.name}: {home.top_scorer()}
- Topscorer {guest.name}: {guest.top_scorer()}
- Zeitstrafen {home.name}: {home.time_penalties}
- Zeitstrafen {guest.name}: {guest.time_penalties}
- 7-Meter {home.name}: {home.seven_meter_line}
- 7-Meter {guest.name}: {guest.seven_meter_line}

Beginne mit einer fett gedruckten Überschrift. Bleib bei den Fakten aus den Daten und
erfinde keine Spielszenen. Gib nur Überschrift und Text aus."""


class GameSummarizer:
    """Turns the final event list of a match into a short commentary message."""

    def __init__(self, settings: Settings | None = None, client: Any = None) -> None:
        self._settings = settings or get_settings()
        self._client = client
        if self._client is None and self._settings.gemini_api_key:
            self._client = genai.Client(api_key=self._settings.gemini_api_key)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def summarize(self, events: Sequence[EventRecord], meta: DisplayMeta) -> str:
        if not self.enabled:
            logger.info("summary_skipped", reason="no_api_key")
            return ""
        if not events:
            return ""

        team_names = meta.team_names or TeamNames(home="Heim", guest="Gast")
        stats = extract_game_stats(events, team_names, meta.half_length_minutes)
        game_minutes = meta.half_length_minutes * 2 if meta.half_length_minutes else 60
        prompt = build_prompt(stats, meta.channel_name, game_minutes)

        try:
            response = await self._client.aio.models.generate_content(
                model=self._settings.gemini_model,
                contents=prompt,
            )
        except Exception as exc:
            logger.error("summary_generation_failed", error=str(exc))
            return ""

        text: Optional[str] = getattr(response, "text", None)
        if not text:
            logger.warning("summary_empty_response")
            return ""
        return f"{SUMMARY_HEADER}\n\n{text.strip()}"
