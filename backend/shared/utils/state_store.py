"""
Flat-file JSON persistence for restart recovery.

Two documents live under ``Settings.data_dir``:
    seen_tickers.json      {channel_id: [event index, ...]}
    scheduled_tickers.json {channel_id: ScheduleEntry}

Writes go to a temporary sibling first and are moved into place, so a crash
mid-write leaves the previous snapshot intact.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.errors import PersistenceError
from shared.models.domain import ScheduleEntry
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class JsonStateStore:
    """Key-value load/save of seen-id sets and schedule entries. No engine logic."""

    def __init__(self, seen_path: Path, schedule_path: Path) -> None:
        self._seen_path = Path(seen_path)
        self._schedule_path = Path(schedule_path)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "JsonStateStore":
        settings = settings or get_settings()
        return cls(settings.seen_path, settings.schedule_path)

    # ── Seen ids ────────────────────────────────────────────────────────

    def load_seen(self) -> dict[str, set[int]]:
        raw = self._read(self._seen_path)
        if not isinstance(raw, dict):
            raise PersistenceError(f"{self._seen_path}: expected an object, got {type(raw).__name__}")
        try:
            return {str(cid): {int(i) for i in ids} for cid, ids in raw.items()}
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"{self._seen_path}: malformed id list ({exc})") from exc

    def save_seen(self, seen: Mapping[str, Iterable[int]]) -> None:
        self._write(self._seen_path, {cid: sorted(ids) for cid, ids in seen.items()})

    # ── Schedule entries ────────────────────────────────────────────────

    def load_schedule(self) -> dict[str, ScheduleEntry]:
        raw = self._read(self._schedule_path)
        if not isinstance(raw, dict):
            raise PersistenceError(
                f"{self._schedule_path}: expected an object, got {type(raw).__name__}"
            )
        try:
            return {str(cid): ScheduleEntry.model_validate(entry) for cid, entry in raw.items()}
        except ValidationError as exc:
            raise PersistenceError(f"{self._schedule_path}: invalid entry ({exc})") from exc

    def save_schedule(self, entries: Mapping[str, ScheduleEntry]) -> None:
        self._write(
            self._schedule_path,
            {cid: entry.model_dump(mode="json") for cid, entry in entries.items()},
        )

    # ── File I/O ────────────────────────────────────────────────────────

    def _read(self, path: Path) -> Any:
        if not path.exists():
            logger.info("state_file_missing", path=str(path))
            return {}
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Could not read {path}: {exc}") from exc

    def _write(self, path: Path, payload: Any) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceError(f"Could not write {path}: {exc}") from exc
