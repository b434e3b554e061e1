"""
Central configuration for the Live Ticker service.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings for the ticker engine and its adapters."""

    model_config = SettingsConfigDict(
        env_prefix="LT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Container ID bound to every log line")

    # ── Engine ───────────────────────────────────────────────
    max_workers: int = Field(default=2, ge=1, description="Concurrent resolver/fetcher sessions")
    dispatcher_tick_interval_s: float = 0.5
    fairness_tick_interval_s: float = 20.0
    pre_game_lead_minutes: int = 5
    recap_interval_minutes: int = 5
    cleanup_delay_s: float = 3600.0
    closing_message_delay_s: float = 2.0
    display_timezone: str = "Europe/Berlin"

    # ── nuLiga resolver ──────────────────────────────────────
    nuliga_api_base_url: str = "https://hbde-live.liga.nu/nuScoreLiveRestBackend/api/1"
    nuliga_meeting_path_marker: str = "/nuScoreLiveRestBackend/api/1/meeting/"
    browser_executable_path: str = Field(
        default="",
        description="Chromium binary; empty uses the browser bundled with Playwright.",
    )
    browser_intercept_timeout_s: float = 30.0
    browser_navigation_timeout_s: float = 45.0
    resolve_timeout_s: float = 90.0
    provider_request_timeout_s: float = 10.0

    # ── Persistence ──────────────────────────────────────────
    data_dir: Path = Path("data")
    seen_file: str = "seen_tickers.json"
    schedule_file: str = "scheduled_tickers.json"

    # ── Delivery ─────────────────────────────────────────────
    telegram_bot_token: str = ""
    telegram_api_base_url: str = "https://api.telegram.org"

    # ── Summary ──────────────────────────────────────────────
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-pro"

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @model_validator(mode="after")
    def check_tick_intervals(self) -> "Settings":
        """The dispatcher must run more often than the fairness scheduler."""
        if self.dispatcher_tick_interval_s >= self.fairness_tick_interval_s:
            raise ValueError("dispatcher_tick_interval_s must be below fairness_tick_interval_s")
        return self

    @property
    def seen_path(self) -> Path:
        return self.data_dir / self.seen_file

    @property
    def schedule_path(self) -> Path:
        return self.data_dir / self.schedule_file

    @property
    def recap_interval_s(self) -> float:
        return self.recap_interval_minutes * 60.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
