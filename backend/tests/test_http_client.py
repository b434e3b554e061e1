"""Upstream client retry behaviour against httpx.MockTransport."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from shared.errors import FetchError
from shared.utils.http_client import MAX_RETRY_DELAY_S, UpstreamHTTPClient, retry_delay


@pytest.mark.parametrize(
    ("header", "attempt", "expected"),
    [
        ("3", 1, 3.0),
        ("0.5", 2, 0.5),
        ("120", 1, MAX_RETRY_DELAY_S),
        ("-4", 1, 0.0),
        (None, 2, 2.0),
        ("", 1, 1.0),
        ("Wed, 21 Oct 2015 07:28:00 GMT", 2, 2.0),
        ("soon", 1, 1.0),
    ],
)
def test_retry_delay(header, attempt: int, expected: float) -> None:
    assert retry_delay(header, attempt) == expected


@pytest.mark.asyncio
async def test_http_date_retry_after_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = [
        httpx.Response(503, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
        httpx.Response(200, json={"ok": True}),
    ]
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    client = UpstreamHTTPClient(
        "test",
        base_url="https://upstream.test",
        max_retries=2,
        transport=httpx.MockTransport(lambda request: responses.pop(0)),
    )
    await client.start()
    try:
        assert await client.get_json("/doc") == {"ok": True}
    finally:
        await client.close()

    assert delays == [1.0]


@pytest.mark.asyncio
async def test_retries_exhausted_raise_fetch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    client = UpstreamHTTPClient(
        "test",
        base_url="https://upstream.test",
        max_retries=2,
        transport=httpx.MockTransport(lambda request: httpx.Response(429, headers={"Retry-After": "later"})),
    )
    await client.start()
    try:
        with pytest.raises(FetchError):
            await client.get_json("/doc")
    finally:
        await client.close()
