"""
Delivery channel contract.

A messenger sends one text message to one channel. Failures surface as
``DeliveryError``; callers decide whether that matters.
"""
from __future__ import annotations

import abc

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class Messenger(abc.ABC):
    """Send primitive for a delivery channel."""

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abc.abstractmethod
    async def send(self, channel_id: str, text: str) -> None:
        """
        Deliver ``text`` to ``channel_id``.

        Raises:
            DeliveryError: if the channel rejected the message or could not be reached.
        """
        ...


class LogMessenger(Messenger):
    """Writes messages to the log instead of a chat. Used when no bot token is configured."""

    async def send(self, channel_id: str, text: str) -> None:
        logger.info("message_logged", channel_id=channel_id, text=text)
