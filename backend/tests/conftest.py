"""Shared fixtures: in-memory resolver and messenger fakes plus a fully wired service."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

from shared.config import Settings
from shared.errors import DeliveryError, FetchError
from shared.models.domain import EventRecord, MeetingMeta, TeamNames
from shared.models.enums import EventCode, TickerMode
from shared.utils.state_store import JsonStateStore

from delivery.base import Messenger
from ingest.providers.base import MeetingResolver
from ticker.registry import TickerState
from ticker.service import TickerService

NOW = datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)
SOURCE_REF = "https://hbde.liga.nu/cgi-bin/WebObjects/nuLigaHBDE.woa/wa/nuScoreLive?meeting=123"


def ev(
    index: int,
    code: int = EventCode.GOAL,
    second: int = 0,
    home: bool = True,
    score: tuple[int, int] = (0, 0),
    player: tuple[str, str] | None = None,
) -> EventRecord:
    first, last = player or (None, None)
    return EventRecord(
        index=index,
        type_code=int(code),
        in_match_second=second or index * 60,
        is_home_team=home,
        score_home=score[0],
        score_guest=score[1],
        player_first=first,
        player_last=last,
    )


def meeting(start_in_minutes: float, token: Optional[str] = "v1") -> MeetingMeta:
    return MeetingMeta(
        meeting_ref="4711",
        team_names=TeamNames(home="HSG Nord", guest="TV Süd"),
        scheduled_time=NOW + timedelta(minutes=start_in_minutes),
        version_token=token,
        half_length_minutes=30,
    )


class FakeResolver(MeetingResolver):
    """Serves a fixed meeting document and per-version event lists."""

    def __init__(self, meta: MeetingMeta | None = None) -> None:
        self.meta = meta or meeting(-1)
        self.versions: dict[str, list[EventRecord]] = {}
        self.resolve_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.resolve_calls = 0
        self.fetch_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def resolve(self, source_ref: str) -> MeetingMeta:
        self.resolve_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.resolve_error is not None:
                raise self.resolve_error
            return self.meta
        finally:
            self.in_flight -= 1

    async def fetch_events(self, meeting_ref: str, version_token: str) -> list[EventRecord]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        if version_token not in self.versions:
            raise FetchError(f"unknown version {version_token}", meeting_ref=meeting_ref)
        return list(self.versions[version_token])

    def publish(self, token: str, events: list[EventRecord]) -> None:
        """Make ``events`` the current upstream state under ``token``."""
        self.versions[token] = events
        self.meta = self.meta.model_copy(update={"version_token": token})


class FakeMessenger(Messenger):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False
        self.on_send: Callable[[str, str], None] | None = None

    async def send(self, channel_id: str, text: str) -> None:
        if self.on_send is not None:
            self.on_send(channel_id, text)
        if self.fail:
            raise DeliveryError(channel_id, "chat unavailable")
        self.sent.append((channel_id, text))

    def texts(self, channel_id: str | None = None) -> list[str]:
        return [t for cid, t in self.sent if channel_id is None or cid == channel_id]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        max_workers=2,
        closing_message_delay_s=0,
        metrics_enabled=False,
        gemini_api_key="",
        telegram_bot_token="",
    )


@pytest.fixture
def store(settings: Settings) -> JsonStateStore:
    return JsonStateStore.from_settings(settings)


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def service(
    resolver: FakeResolver,
    messenger: FakeMessenger,
    store: JsonStateStore,
    settings: Settings,
) -> TickerService:
    return TickerService(resolver, messenger, store, settings, clock=lambda: NOW)


async def run_jobs(service: TickerService) -> None:
    """Dispatch everything runnable and wait for the workers (and what they spawn)."""
    while service.dispatcher.tick():
        await service.tasks.drain()
    await service.tasks.drain()


def make_polling(
    service: TickerService,
    channel_id: str = "chat-1",
    mode: TickerMode = TickerMode.LIVE,
) -> TickerState:
    """Create a ticker and promote it straight to polling, leaving the queue empty."""
    state = service.registry.create(channel_id, SOURCE_REF, mode)
    service.lifecycle.promote(channel_id)
    service.queue.discard(channel_id)
    return state


async def run_once(service: TickerService) -> int:
    """One dispatcher tick; waits for the launched workers."""
    launched = service.dispatcher.tick()
    await service.tasks.drain()
    return launched
