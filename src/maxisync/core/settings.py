"""
Centralized settings for the maxisync client core.

Manifesto:
    Staleness windows, error thresholds and replay delays are tuning knobs,
    not constants. One validated settings object holds them (10 minutes,
    3 errors, 5 errors, 100 ms by default) and lets deployments override
    them through ``MAXISYNC_*`` environment variables or a ``.env`` file.

Tags:
    maxisync, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from maxisync.core.enums import QueuePolicy


class SyncSettings(BaseSettings):
    """Synchronization core configuration.

    All fields can be set via ``MAXISYNC_*`` environment variables (e.g.
    ``MAXISYNC_CACHE_MAX_AGE_SECONDS=300``).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAXISYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────────────
    api_base_url: str = Field(default="http://127.0.0.1:5000/api")
    api_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Cache ────────────────────────────────────────────────────
    cache_max_age_seconds: float = Field(default=600.0, gt=0)
    cache_memory_threshold_bytes: int = Field(default=5 * 1024 * 1024)
    health_error_rate_threshold: float = Field(default=0.10, ge=0, le=1)

    # ── Self-healing thresholds ──────────────────────────────────
    listener_error_threshold: int = Field(default=3, ge=1)
    subscriber_error_threshold: int = Field(default=5, ge=1)

    # ── Event bus ────────────────────────────────────────────────
    event_history_size: int = Field(default=100)
    event_debug: bool = Field(default=False)
    strict_payloads: bool = Field(default=False)

    # ── Offline queue ────────────────────────────────────────────
    offline_replay_delay_seconds: float = Field(default=0.1, ge=0)
    offline_queue_policy: QueuePolicy = Field(default=QueuePolicy.DROP)
    offline_max_retries: int = Field(default=3, ge=0)
    offline_retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    offline_queue_file: str = Field(default="offline_queue.json")

    # ── Connection monitor ───────────────────────────────────────
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    # ── Paths ────────────────────────────────────────────────────
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".maxisync",
        description="Directory holding the persisted offline queue",
    )

    @field_validator("event_history_size")
    @classmethod
    def _clamp_history(cls, value: int) -> int:
        return max(10, min(1000, value))

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @property
    def offline_queue_path(self) -> Path:
        return self.data_dir / self.offline_queue_file


_settings_cache: dict[str, SyncSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SyncSettings:
    """Load, validate, and cache a :class:`SyncSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = SyncSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["SyncSettings", "get_settings", "clear_settings_cache"]
