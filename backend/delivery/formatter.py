"""
Text rendering for everything the ticker sends to a channel.

The engine passes structured ``EventRecord``s in and gets Markdown strings
back; nothing outside this module knows the wording of a message.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from shared.models.domain import DisplayMeta, EventRecord
from shared.models.enums import EventCode, TickerMode

# (label, emoji) per event code
EVENT_LABELS: dict[int, tuple[str, str]] = {
    EventCode.GAME_RESUMED: ("Spiel geht weiter", "🔁"),
    EventCode.GAME_INTERRUPTED: ("Spiel unterbrochen", "⏳"),
    EventCode.TIMEOUT_HOME: ("Timeout", "⏳"),
    EventCode.TIMEOUT_GUEST: ("Timeout", "⏳"),
    EventCode.GOAL: ("Tor", "⚽"),
    EventCode.SEVEN_METER_GOAL: ("7-Meter Tor", "🎯"),
    EventCode.SEVEN_METER_MISS: ("7-Meter Fehlwurf", "❌"),
    EventCode.RED_CARD_ALT: ("Rote Karte", "🟥"),
    EventCode.TIME_PENALTY: ("Zeitstrafe", "⛔"),
    EventCode.YELLOW_CARD: ("Gelbe Karte", "🟨"),
    EventCode.RED_CARD: ("Rote Karte", "🟥"),
    EventCode.WHISTLE: ("Abpfiff", "⏸️"),
    EventCode.MATCH_START: ("Spielbeginn", "▶️"),
    EventCode.MATCH_END: ("Spielende", "🏁"),
    EventCode.LINEUP: ("Teamaufstellung", "👥"),
}

# Codes that never produce a message
SILENT_CODES = frozenset({EventCode.GAME_RESUMED, EventCode.GAME_INTERRUPTED, EventCode.LINEUP})

CLOSING_MESSAGE = "Vielen Dank fürs Mitfiebern! 🥳"

# Characters with meaning in Telegram legacy Markdown
_MARKDOWN_SPECIALS = ("_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    """Escape provider-supplied text (team and player names) for legacy Markdown."""
    for ch in _MARKDOWN_SPECIALS:
        text = text.replace(ch, "\\" + ch)
    return text


def format_clock(seconds: int) -> str:
    """Render an in-match second count as mm:ss."""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class MessageFormatter:
    """Builds every user-facing string. Times are shown in ``timezone``."""

    def __init__(self, timezone: str = "Europe/Berlin", recap_interval_minutes: int = 5) -> None:
        self._tz = ZoneInfo(timezone)
        self._recap_minutes = recap_interval_minutes

    # ── Events ──────────────────────────────────────────────────────────

    def format_event(self, ev: EventRecord, meta: DisplayMeta) -> str:
        """Full message for one event; empty string for codes that are not announced."""
        if ev.type_code in SILENT_CODES:
            return ""
        home, guest = self._teams(meta)
        label, emoji = self._label(ev.type_code)
        score_line = f"{home}  *{ev.score_home}:{ev.score_guest}* {guest}"
        clock = format_clock(ev.in_match_second) if ev.in_match_second else ""
        player = f"  |  {escape_markdown(ev.player_name)}" if ev.player_name else ""

        if ev.type_code in (EventCode.GOAL, EventCode.SEVEN_METER_GOAL):
            return f"--- SCORE-UPDATE ---\n{score_line}\n\n{emoji} Tor ({clock}){player}"
        if ev.type_code == EventCode.SEVEN_METER_MISS:
            return f"--- AKTION ---\n{score_line}\n\n{emoji} 7m-Fehlwurf ({clock}){player}"
        if ev.type_code in (EventCode.TIMEOUT_HOME, EventCode.TIMEOUT_GUEST):
            team = home if ev.is_home_team else guest
            return f"--- AKTION ---\n{score_line}\n\n{emoji} Timeout {team} ({clock})"
        if ev.type_code in (
            EventCode.RED_CARD_ALT,
            EventCode.TIME_PENALTY,
            EventCode.YELLOW_CARD,
            EventCode.RED_CARD,
        ):
            return f"--- AKTION ---\n{score_line}\n\n{emoji} {label} ({clock}){player}"
        if ev.type_code == EventCode.WHISTLE:
            return f"⏸️ *HALBZEIT* ⏸️\n\n{score_line}"
        if ev.type_code == EventCode.MATCH_END:
            return f"🏁 *SPIELENDE* 🏁\n\n{score_line}"
        if ev.type_code == EventCode.MATCH_START:
            return f"▶️ *Spielbeginn!*\n*{home}* vs *{guest}*"
        return f"{emoji} {label} | {score_line}"

    def format_recap_line(self, ev: EventRecord, meta: DisplayMeta) -> str:
        """One compact line per buffered event."""
        if ev.type_code in SILENT_CODES:
            return ""
        home, guest = self._teams(meta)
        label, emoji = self._label(ev.type_code)
        if ev.type_code in (EventCode.TIMEOUT_HOME, EventCode.TIMEOUT_GUEST):
            label = f"Timeout {home if ev.is_home_team else guest}"
        parts = [f"{emoji} {format_clock(ev.in_match_second)} {label}"]
        if ev.player_name:
            parts.append(escape_markdown(ev.player_name))
        parts.append(f"{ev.score_home}:{ev.score_guest}")
        return " | ".join(parts)

    def format_recap(self, start_second: int, end_second: int, lines: list[str]) -> str:
        span = f"{format_clock(start_second)} - {format_clock(end_second)}"
        return f"📬 *Recap {span}*\n\n" + "\n".join(lines)

    # ── Lifecycle notices ───────────────────────────────────────────────

    def scheduled_notice(self, meta: DisplayMeta, start_at: datetime, mode: TickerMode) -> str:
        home, guest = self._teams(meta)
        local = start_at.astimezone(self._tz)
        how = (
            f"im Recap-Modus ({self._recap_minutes}-Minuten-Zusammenfassungen)"
            if mode == TickerMode.RECAP
            else "mit Live-Updates"
        )
        return (
            f"✅ Ticker für *{home}* vs *{guest}* ist geplant {how} und startet automatisch "
            f"am {local:%d.%m.%Y} um ca. {local:%H:%M} Uhr."
        )

    def starting_now_notice(self, meta: DisplayMeta, mode: TickerMode) -> str:
        home, guest = self._teams(meta)
        text = f"▶️ Ticker für *{home}* vs *{guest}* wird sofort gestartet. "
        if mode == TickerMode.RECAP:
            return text + f"Du erhältst alle {self._recap_minutes} Minuten eine Zusammenfassung. 📬"
        return text + "Du erhältst alle Events live! ⚽"

    def resolution_failed_notice(self) -> str:
        return "Fehler: Konnte die Spieldaten nicht abrufen, um den Ticker zu planen."

    def stopped_notice(self) -> str:
        return "Laufender/geplanter Live-Ticker in dieser Gruppe gestoppt."

    def reset_notice(self) -> str:
        return "Alle Ticker-Daten für diese Gruppe wurden zurückgesetzt."

    def closing_message(self) -> str:
        return CLOSING_MESSAGE

    # ── Helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def _teams(meta: DisplayMeta) -> tuple[str, str]:
        if meta.team_names is None:
            return "Heim", "Gast"
        return escape_markdown(meta.team_names.home), escape_markdown(meta.team_names.guest)

    @staticmethod
    def _label(code: int) -> tuple[str, str]:
        found: Optional[tuple[str, str]] = EVENT_LABELS.get(code)
        return found or (f"Unbekanntes Event {code}", "📢")
