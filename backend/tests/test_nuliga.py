"""nuLiga resolver tests against a mocked upstream (httpx.MockTransport)."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from shared.config import Settings
from shared.errors import FetchError, ResolutionError
from shared.utils.http_client import UpstreamHTTPClient

from ingest.providers.nuliga import NuLigaResolver, parse_scheduled

API = "https://hbde-live.liga.nu/nuScoreLiveRestBackend/api/1"
MEETING_URL = f"{API}/meeting/123/time/1740848400000"
PAGE = "https://hbde.liga.nu/nuScoreLive?meeting=123"

MEETING_DOC = {
    "teamHome": "HSG Nord",
    "teamGuest": "TV Süd",
    "scheduled": 1740848400000,
    "versionUid": "abc",
    "halftimeLength": 30,
}


class FakeCapture:
    """Stands in for the headless browser: returns a fixed meeting URL."""

    def __init__(self, url: str = MEETING_URL) -> None:
        self.url = url
        self.calls = 0

    async def __call__(self, source_ref: str) -> str:
        self.calls += 1
        return self.url


def _resolver(
    settings: Settings,
    routes: dict[str, tuple[int, Any]],
    capture: FakeCapture | None = None,
) -> NuLigaResolver:
    def handler(request: httpx.Request) -> httpx.Response:
        status, body = routes.get(request.url.path, (404, None))
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    http = UpstreamHTTPClient(
        "nuliga", base_url=API, timeout_s=1.0, max_retries=1, transport=httpx.MockTransport(handler)
    )
    return NuLigaResolver(settings, http=http, page_capture=capture or FakeCapture())


MEETING_PATH = "/nuScoreLiveRestBackend/api/1/meeting/123/time/1740848400000"
EVENTS_PATH = "/nuScoreLiveRestBackend/api/1/events/123/versions/abc"


# ── parse_scheduled ─────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "value,expected",
    [
        (1740848400000, datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)),
        ("2025-03-01T17:00:00Z", datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)),
        ("2025-03-01T18:00:00+01:00", datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)),
        ("2025-03-01T17:00:00", datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)),
    ],
)
def test_parse_scheduled(value, expected: datetime) -> None:
    assert parse_scheduled(value) == expected


@pytest.mark.parametrize("value", [None, "", True, "not a date"])
def test_parse_scheduled_rejects(value) -> None:
    with pytest.raises(ValueError):
        parse_scheduled(value)


# ── resolve ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_resolve_reads_meeting_document(settings: Settings) -> None:
    capture = FakeCapture()
    resolver = _resolver(settings, {MEETING_PATH: (200, MEETING_DOC)}, capture)
    await resolver.start()
    try:
        meta = await resolver.resolve(PAGE)
        again = await resolver.resolve(PAGE)
    finally:
        await resolver.close()

    assert meta.meeting_ref == "123"
    assert meta.team_names.home == "HSG Nord"
    assert meta.version_token == "abc"
    assert meta.half_length_minutes == 30
    assert meta.scheduled_time == datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)
    assert again == meta
    # the captured endpoint is reused
    assert capture.calls == 1


@pytest.mark.asyncio
async def test_resolve_without_version_has_no_token(settings: Settings) -> None:
    doc = {**MEETING_DOC, "versionUid": None, "halftimeLength": None}
    resolver = _resolver(settings, {MEETING_PATH: (200, doc)})
    await resolver.start()
    meta = await resolver.resolve(PAGE)
    await resolver.close()

    assert meta.version_token is None
    assert meta.half_length_minutes is None


@pytest.mark.asyncio
async def test_captured_url_without_meeting_id(settings: Settings) -> None:
    resolver = _resolver(settings, {}, FakeCapture(f"{API}/meeting/abc"))
    await resolver.start()
    with pytest.raises(ResolutionError):
        await resolver.resolve(PAGE)
    await resolver.close()


@pytest.mark.asyncio
async def test_incomplete_meeting_document(settings: Settings) -> None:
    doc = {"teamHome": "HSG Nord", "scheduled": 1740848400000}
    resolver = _resolver(settings, {MEETING_PATH: (200, doc)})
    await resolver.start()
    with pytest.raises(ResolutionError):
        await resolver.resolve(PAGE)
    await resolver.close()


@pytest.mark.asyncio
async def test_fetch_failure_drops_cached_endpoint(settings: Settings) -> None:
    capture = FakeCapture()
    routes = {MEETING_PATH: (404, None)}
    resolver = _resolver(settings, routes, capture)
    await resolver.start()

    with pytest.raises(FetchError):
        await resolver.resolve(PAGE)
    routes[MEETING_PATH] = (200, MEETING_DOC)
    meta = await resolver.resolve(PAGE)
    await resolver.close()

    assert meta.meeting_ref == "123"
    assert capture.calls == 2


# ── fetch_events ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fetch_events_skips_invalid_records(settings: Settings) -> None:
    body = {
        "events": [
            {"idx": 1, "event": 15, "second": None, "pointsHome": None, "pointsGuest": None},
            {"idx": 2, "event": 4, "second": 95, "teamHome": True, "pointsHome": 1,
             "pointsGuest": 0, "personFirstname": "Lena", "personLastname": "Kraft"},
            {"event": 4},
        ]
    }
    resolver = _resolver(settings, {EVENTS_PATH: (200, json.dumps(body).encode())})
    await resolver.start()
    events = await resolver.fetch_events("123", "abc")
    await resolver.close()

    assert [e.index for e in events] == [1, 2]
    assert events[0].in_match_second == 0
    assert events[1].player_name == "Lena Kraft"
    assert events[1].is_home_team


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"events": None}, {}, [1, 2]])
async def test_fetch_events_requires_an_event_list(settings: Settings, body) -> None:
    resolver = _resolver(settings, {EVENTS_PATH: (200, body)})
    await resolver.start()
    with pytest.raises(FetchError):
        await resolver.fetch_events("123", "abc")
    await resolver.close()


@pytest.mark.asyncio
async def test_fetch_events_invalid_json(settings: Settings) -> None:
    resolver = _resolver(settings, {EVENTS_PATH: (200, b"<html>")})
    await resolver.start()
    with pytest.raises(FetchError):
        await resolver.fetch_events("123", "abc")
    await resolver.close()
