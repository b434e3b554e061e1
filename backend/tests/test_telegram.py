"""Telegram messenger tests against a mocked Bot API."""
from __future__ import annotations

import json

import httpx
import pytest

from shared.config import Settings
from shared.errors import DeliveryError

from delivery.telegram import TELEGRAM_MAX_MESSAGE_CHARS, TelegramMessenger

TOKEN = "123:abc"


def _messenger(settings: Settings, response: httpx.Response, seen: list[httpx.Request]) -> TelegramMessenger:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return response

    return TelegramMessenger(TOKEN, settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_send_posts_markdown_message(settings: Settings) -> None:
    seen: list[httpx.Request] = []
    messenger = _messenger(settings, httpx.Response(200, json={"ok": True}), seen)
    await messenger.start()
    await messenger.send("-10042", "*Tor*")
    await messenger.close()

    assert seen[0].url.path == f"/bot{TOKEN}/sendMessage"
    assert json.loads(seen[0].content) == {"chat_id": "-10042", "text": "*Tor*", "parse_mode": "Markdown"}


@pytest.mark.asyncio
async def test_rejected_message_raises_delivery_error(settings: Settings) -> None:
    seen: list[httpx.Request] = []
    response = httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})
    messenger = _messenger(settings, response, seen)
    await messenger.start()

    with pytest.raises(DeliveryError, match="chat not found"):
        await messenger.send("-10042", "hi")
    await messenger.close()


@pytest.mark.asyncio
async def test_network_error_raises_delivery_error(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    messenger = TelegramMessenger(TOKEN, settings, transport=httpx.MockTransport(handler))
    await messenger.start()
    with pytest.raises(DeliveryError):
        await messenger.send("-10042", "hi")
    await messenger.close()


@pytest.mark.asyncio
async def test_long_messages_are_truncated_and_sent_plain(settings: Settings) -> None:
    seen: list[httpx.Request] = []
    messenger = _messenger(settings, httpx.Response(200, json={"ok": True}), seen)
    await messenger.start()
    await messenger.send("-10042", "*" + "x" * 5000 + "*")
    await messenger.close()

    payload = json.loads(seen[0].content)
    assert len(payload["text"]) == TELEGRAM_MAX_MESSAGE_CHARS
    assert payload["text"].endswith("…")
    assert "parse_mode" not in payload


@pytest.mark.asyncio
async def test_unparseable_markdown_is_resent_as_plain_text(settings: Settings) -> None:
    seen: list[httpx.Request] = []
    responses = [
        httpx.Response(400, json={"ok": False, "description": "Bad Request: can't parse entities: offset 12"}),
        httpx.Response(200, json={"ok": True}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses.pop(0)

    messenger = TelegramMessenger(TOKEN, settings, transport=httpx.MockTransport(handler))
    await messenger.start()
    await messenger.send("-10042", "⚽ Tor | O_Brien")
    await messenger.close()

    first, second = (json.loads(r.content) for r in seen)
    assert first["parse_mode"] == "Markdown"
    assert second == {"chat_id": "-10042", "text": "⚽ Tor | O_Brien"}


@pytest.mark.asyncio
async def test_plain_text_retry_failure_raises(settings: Settings) -> None:
    seen: list[httpx.Request] = []
    response = httpx.Response(400, json={"ok": False, "description": "Bad Request: can't parse entities"})
    messenger = _messenger(settings, response, seen)
    await messenger.start()

    with pytest.raises(DeliveryError, match="parse entities"):
        await messenger.send("-10042", "_")
    await messenger.close()
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_send_before_start(settings: Settings) -> None:
    with pytest.raises(RuntimeError):
        await TelegramMessenger(TOKEN, settings).send("-1", "hi")


def test_token_required(settings: Settings) -> None:
    with pytest.raises(ValueError):
        TelegramMessenger("", settings)
