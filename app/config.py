"""Runtime settings read from the environment (optionally via .env loaded in server.py)."""

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_BUCKET = "reel-assets"
DEFAULT_SERVICES_URL = "http://localhost:8787"
MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024          # 2 GiB
TRANSCRIPTION_FALLBACK_MAX_BYTES = 25 * 1024 * 1024  # transcription API file limit


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, "").strip() or default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    gcs_bucket: str
    gcs_public_base_url: str
    presign_expiration_seconds: int
    services_url: str
    services_token: str | None
    services_timeout: float
    render_poll_interval: float
    max_upload_bytes: int
    transcription_fallback_max_bytes: int


def load_settings() -> Settings:
    bucket = _env("GCS_BUCKET", DEFAULT_BUCKET)
    return Settings(
        gcs_bucket=bucket,
        gcs_public_base_url=_env("GCS_PUBLIC_BASE_URL", f"https://storage.googleapis.com/{bucket}").rstrip("/"),
        presign_expiration_seconds=_env_int("PRESIGN_EXPIRATION_SECONDS", 3600),
        services_url=_env("PIPELINE_SERVICES_URL", DEFAULT_SERVICES_URL).rstrip("/"),
        services_token=_env("PIPELINE_SERVICES_TOKEN") or None,
        services_timeout=_env_float("PIPELINE_SERVICES_TIMEOUT", 120.0),
        render_poll_interval=_env_float("RENDER_POLL_INTERVAL_SECONDS", 5.0),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", MAX_UPLOAD_BYTES),
        transcription_fallback_max_bytes=_env_int(
            "TRANSCRIPTION_FALLBACK_MAX_BYTES", TRANSCRIPTION_FALLBACK_MAX_BYTES
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings. Call get_settings.cache_clear() after changing the environment."""
    return load_settings()
