"""
nuLiga / nuScore live-ticker resolver.

The public meeting page does not expose its API endpoint, so a headless
Chromium (Playwright) loads the page once and captures the meeting request it
issues. The captured URL is cached per page; metadata and events are then
read with plain HTTP calls.
"""
from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Request, async_playwright
from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.errors import FetchError, ResolutionError
from shared.models.domain import EventRecord, MeetingMeta, TeamNames
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY

from ingest.providers.base import MeetingResolver

logger = get_logger(__name__)

MEETING_URL_RE = re.compile(r"api/1/meeting/(\d+)/time/(\d+)")

PageCapture = Callable[[str], Awaitable[str]]


def parse_scheduled(value: Any) -> datetime:
    """Kick-off time from the meeting payload: ISO-8601 string or epoch milliseconds, UTC."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"unsupported scheduled value: {value!r}")


def parse_meeting_meta(meeting_id: str, data: dict[str, Any]) -> MeetingMeta:
    """Map the nuScore meeting document onto ``MeetingMeta``."""
    version = data.get("versionUid")
    half = data.get("halftimeLength")
    return MeetingMeta(
        meeting_ref=meeting_id,
        team_names=TeamNames(home=data["teamHome"], guest=data["teamGuest"]),
        scheduled_time=parse_scheduled(data.get("scheduled")),
        version_token=str(version) if version else None,
        half_length_minutes=int(half) if half else None,
    )


class NuLigaResolver(MeetingResolver):
    name = "nuliga"

    def __init__(
        self,
        settings: Settings | None = None,
        http: UpstreamHTTPClient | None = None,
        page_capture: Optional[PageCapture] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http = http or UpstreamHTTPClient(
            "nuliga",
            base_url=self._settings.nuliga_api_base_url,
            timeout_s=self._settings.provider_request_timeout_s,
        )
        self._capture = page_capture or self._capture_meeting_url
        self._meeting_urls: dict[str, str] = {}

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def resolve(self, source_ref: str) -> MeetingMeta:
        meeting_url = self._meeting_urls.get(source_ref)
        if meeting_url is None:
            meeting_url = await self._capture(source_ref)
            self._meeting_urls[source_ref] = meeting_url

        match = MEETING_URL_RE.search(meeting_url)
        if match is None:
            self._meeting_urls.pop(source_ref, None)
            raise ResolutionError(source_ref, f"no meeting id in {meeting_url}")
        meeting_id = match.group(1)

        try:
            data = await self._http.get_json(meeting_url)
        except FetchError:
            # The page may have moved to a new endpoint; capture again next time
            self._meeting_urls.pop(source_ref, None)
            raise
        if not isinstance(data, dict):
            raise FetchError("meeting document is not an object", meeting_ref=meeting_id)

        try:
            meta = parse_meeting_meta(meeting_id, data)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise ResolutionError(source_ref, f"incomplete meeting document: {exc}") from exc

        logger.debug(
            "meeting_resolved",
            source_ref=source_ref,
            meeting_id=meeting_id,
            version=meta.version_token,
        )
        return meta

    async def fetch_events(self, meeting_ref: str, version_token: str) -> list[EventRecord]:
        data = await self._http.get_json(f"/events/{meeting_ref}/versions/{version_token}")
        raw_events = data.get("events") if isinstance(data, dict) else None
        if not isinstance(raw_events, list):
            raise FetchError("events document has no event list", meeting_ref=meeting_ref)

        events: list[EventRecord] = []
        for raw in raw_events:
            try:
                events.append(EventRecord.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "event_record_invalid",
                    meeting_ref=meeting_ref,
                    error=str(exc.errors()[:1]),
                )
        return events

    # ── Browser capture ─────────────────────────────────────────────────

    async def _capture_meeting_url(self, source_ref: str) -> str:
        """
        Open ``source_ref`` in headless Chromium and return the first meeting
        API request it makes.
        """
        marker = self._settings.nuliga_meeting_path_marker
        loop = asyncio.get_running_loop()
        captured: asyncio.Future[str] = loop.create_future()

        def on_request(request: Request) -> None:
            if marker in request.url and not captured.done():
                captured.set_result(request.url)

        with PROVIDER_LATENCY.labels(provider="browser").time():
            try:
                async with async_playwright() as pw:
                    browser = await pw.chromium.launch(
                        executable_path=self._settings.browser_executable_path or None,
                        args=["--no-sandbox", "--disable-setuid-sandbox"],
                    )
                    try:
                        page = await browser.new_page()
                        page.on("request", on_request)
                        try:
                            await page.goto(
                                source_ref,
                                wait_until="networkidle",
                                timeout=self._settings.browser_navigation_timeout_s * 1000,
                            )
                        except PlaywrightError as exc:
                            if not captured.done():
                                raise ResolutionError(source_ref, f"navigation failed: {exc}") from exc
                        return await asyncio.wait_for(
                            captured, timeout=self._settings.browser_intercept_timeout_s
                        )
                    finally:
                        await browser.close()
            except asyncio.TimeoutError as exc:
                raise ResolutionError(
                    source_ref,
                    f"meeting request not seen within {self._settings.browser_intercept_timeout_s:.0f}s",
                ) from exc
            except PlaywrightError as exc:
                raise ResolutionError(source_ref, f"browser error: {exc}") from exc
