"""
Telegram Bot API messenger.

The channel id of a ticker is the Telegram chat id; messages go out through
``sendMessage`` with Markdown parse mode. Text Telegram cannot parse as
Markdown, and text cut to the length limit, goes out as plain text.
"""
from __future__ import annotations

from typing import Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import DeliveryError
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY

from delivery.base import Messenger

logger = get_logger(__name__)

TELEGRAM_MAX_MESSAGE_CHARS = 4096
# Telegram rejects text whose Markdown entities do not parse
PARSE_ERROR_MARKER = "can't parse entities"


class TelegramMessenger(Messenger):

    def __init__(
        self,
        bot_token: str,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("TelegramMessenger requires a bot token")
        self._settings = settings or get_settings()
        self._token = bot_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=f"{self._settings.telegram_api_base_url.rstrip('/')}/bot{self._token}",
            timeout=httpx.Timeout(self._settings.provider_request_timeout_s, connect=5.0),
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, channel_id: str, text: str) -> None:
        if not self._client:
            raise RuntimeError("TelegramMessenger not started. Call start() first.")
        parse_mode: Optional[str] = "Markdown"
        if len(text) > TELEGRAM_MAX_MESSAGE_CHARS:
            # A cut can split an entity, so the remainder goes out unformatted
            text = text[: TELEGRAM_MAX_MESSAGE_CHARS - 1] + "…"
            parse_mode = None

        status, description = await self._post(channel_id, text, parse_mode)
        if description and parse_mode and PARSE_ERROR_MARKER in description.lower():
            logger.warning("telegram_markdown_rejected", channel_id=channel_id, description=description)
            status, description = await self._post(channel_id, text, None)
        if description:
            logger.warning(
                "telegram_send_rejected",
                channel_id=channel_id,
                status=status,
                description=description,
            )
            raise DeliveryError(channel_id, description)

    async def _post(self, channel_id: str, text: str, parse_mode: Optional[str]) -> tuple[int, str]:
        """Send once; returns the HTTP status and the rejection reason ("" on success)."""
        payload = {"chat_id": channel_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        with PROVIDER_LATENCY.labels(provider="telegram").time():
            try:
                resp = await self._client.post("/sendMessage", json=payload)
            except httpx.HTTPError as exc:
                raise DeliveryError(channel_id, str(exc) or exc.__class__.__name__) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code != 200 or not body.get("ok", False):
            return resp.status_code, body.get("description") or f"HTTP {resp.status_code}"
        return resp.status_code, ""
