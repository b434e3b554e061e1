"""
Abstract base class for meeting resolvers.
Defines the contract the ticker engine uses to reach upstream match data.
"""
from __future__ import annotations

import abc

from shared.models.domain import EventRecord, MeetingMeta
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class MeetingResolver(abc.ABC):
    """
    Turns a human-facing meeting page into upstream metadata and events.

    Implementations raise ``ResolutionError`` when the page cannot be mapped to
    a meeting and ``FetchError`` when an established meeting cannot be read.
    """

    name: str = "resolver"

    async def start(self) -> None:
        """Acquire long-lived resources (HTTP clients)."""

    async def close(self) -> None:
        """Release everything acquired in ``start``."""

    @abc.abstractmethod
    async def resolve(self, source_ref: str) -> MeetingMeta:
        """
        Resolve ``source_ref`` into current meeting metadata.

        Raises:
            ResolutionError: if the page does not lead to a meeting.
            FetchError: if the meeting is known but its metadata cannot be read.
        """

    @abc.abstractmethod
    async def fetch_events(self, meeting_ref: str, version_token: str) -> list[EventRecord]:
        """
        Return every event of ``meeting_ref`` as of ``version_token``.

        Raises:
            FetchError: on network or API failure.
        """
