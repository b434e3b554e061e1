"""Exception hierarchy for the Live Ticker service."""
from __future__ import annotations

from typing import Optional


class TickerError(Exception):
    """Base class for every error raised by the ticker engine and its adapters."""


# ── Collaborator failures ───────────────────────────────────────────────
class ResolutionError(TickerError):
    """The meeting page could not be resolved into a fetch target (or it timed out)."""

    def __init__(self, source_ref: str, reason: str) -> None:
        self.source_ref = source_ref
        self.reason = reason
        super().__init__(f"Could not resolve {source_ref}: {reason}")


class FetchError(TickerError):
    """Network or API failure on an already-resolved meeting."""

    def __init__(self, reason: str, meeting_ref: Optional[str] = None) -> None:
        self.meeting_ref = meeting_ref
        self.reason = reason
        super().__init__(f"Fetch failed for meeting {meeting_ref or '?'}: {reason}")


class DeliveryError(TickerError):
    """The delivery channel rejected or failed to send a message."""

    def __init__(self, channel_id: str, reason: str) -> None:
        self.channel_id = channel_id
        self.reason = reason
        super().__init__(f"Delivery to {channel_id} failed: {reason}")


class PersistenceError(TickerError):
    """Reading or writing a state file failed."""


# ── Command / lifecycle errors ──────────────────────────────────────────
class AlreadyActiveError(TickerError):
    """A ticker is already pending, scheduled or polling for this channel."""

    def __init__(self, channel_id: str, status: str) -> None:
        self.channel_id = channel_id
        self.status = status
        super().__init__(f"Ticker for {channel_id} is already {status}; stop or reset it first.")


class TickerNotFoundError(TickerError):
    """No running ticker exists for the channel."""

    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id
        super().__init__(f"No running ticker for {channel_id}")


class InvalidTransitionError(TickerError):
    """A status change would move a ticker backwards or skip a required precondition."""

    def __init__(self, channel_id: str, current: str, target: str, detail: str = "") -> None:
        self.channel_id = channel_id
        self.current = current
        self.target = target
        msg = f"Ticker {channel_id}: illegal transition {current} -> {target}"
        super().__init__(f"{msg} ({detail})" if detail else msg)
