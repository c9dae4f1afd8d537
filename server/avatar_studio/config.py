"""Configuration helpers for the avatar studio service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional


def _env_int(name: str, *, default: int) -> int:
    """Return the integer value stored in an environment variable or fallback."""

    raw = os.getenv(name)
    if raw is None:
        return default

    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return default


def _env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default

    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read when the instance is created, so tests can set env vars and
    build a fresh ``Settings()`` (or reload this module) to pick them up.
    """

    replicate_api_token: Optional[str] = field(default_factory=lambda: os.getenv("REPLICATE_API_TOKEN"))
    supabase_url: Optional[str] = field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    supabase_service_role_key: Optional[str] = field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    )

    # Storage buckets: generated output, private coach uploads, user conversation media.
    image_bucket: str = field(default_factory=lambda: os.getenv("IMAGE_BUCKET", "generated-images"))
    content_bucket: str = field(default_factory=lambda: os.getenv("CONTENT_BUCKET", "coach-content"))
    conversation_bucket: str = field(default_factory=lambda: os.getenv("CONVERSATION_BUCKET", "conversations"))

    max_attempts: int = field(default_factory=lambda: _env_int("GENERATION_MAX_ATTEMPTS", default=3))
    retry_delay_seconds: float = field(
        default_factory=lambda: _env_float("GENERATION_RETRY_DELAY_SECONDS", default=5.0)
    )
    selfie_url_ttl_seconds: int = field(default_factory=lambda: _env_int("SELFIE_URL_TTL_SECONDS", default=24 * 60 * 60))
    user_photo_url_ttl_seconds: int = field(
        default_factory=lambda: _env_int("USER_PHOTO_URL_TTL_SECONDS", default=15 * 60)
    )

    stream_chunk_size: int = field(default_factory=lambda: _env_int("STREAM_CHUNK_SIZE", default=64 * 1024))
    stream_high_water_mark: int = field(default_factory=lambda: _env_int("STREAM_HIGH_WATER_MARK", default=16))
    http_timeout_seconds: float = field(default_factory=lambda: _env_float("HTTP_TIMEOUT_SECONDS", default=120.0))
    max_upload_bytes: int = field(default_factory=lambda: _env_int("MAX_UPLOAD_BYTES", default=10 * 1024 * 1024))

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
