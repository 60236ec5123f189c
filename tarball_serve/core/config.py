# tarball_serve/core/config.py
from __future__ import annotations

"""
# tarball-serve • Centralized Configuration (Pydantic v2)

Single `Settings` object with strongly-typed, environment-driven config.

## Goals
- Everything the server needs is validated before it accepts traffic.
- Optional external systems (custom S3 endpoint, auth key) stay optional.
- Robust URL normalization for the public base URL used in `Link` headers.

## Usage
    from tarball_serve.core.config import get_settings
    settings = get_settings()
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


# Presigned URLs handed to clients are valid for ten minutes. Not configurable.
PRESIGN_TTL_SECONDS = 600

# Object holding the list of channels, at the bucket root.
CHANNELS_MANIFEST_KEY = "channels.json"

DEFAULT_FILE_EXTENSION = ".tar.xz"


# ─────────────────────────────────────────────────────────────
# Small helpers
# ─────────────────────────────────────────────────────────────
def _normalize_url_like(v: str | None, *, require_scheme: bool = True) -> str:
    """Normalize to a string URL without trailing slash."""
    s = (v or "").strip()
    if not s:
        return ""
    if require_scheme and not (s.startswith("http://") or s.startswith("https://")):
        s = "https://" + s
    return s.rstrip("/")


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseSettings):
    """
    Process settings sourced from the environment (and `.env`).

    Storage:
        - `S3_BUCKET` is the only required value. Credentials fall back to the
          standard AWS chain when not given explicitly.

    Auth:
        - `JWT_PUBLIC_KEY_PATH` switches the token gate on. Leaving it unset is
          the only way to run without authentication.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # don't crash on unknown keys
    )

    # ── App meta ──────────────────────────────────────────────
    PROJECT_NAME: str = "tarball-serve"
    VERSION: str = "0.1.0"
    ENABLE_DOCS: bool = False

    # ── Storage (S3 / MinIO) ──────────────────────────────────
    S3_BUCKET: str = Field(..., min_length=3)
    S3_ENDPOINT_URL: Optional[str] = None
    S3_FORCE_PATH_STYLE: bool = True  # MinIO needs path-style addressing
    S3_CONDITIONAL_WRITES: bool = False  # If-None-Match on uploads, when the store supports it
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    AWS_SESSION_TOKEN: Optional[SecretStr] = None

    # ── Gateway ───────────────────────────────────────────────
    BASE_URL: str = "http://localhost:3000"
    LISTEN_HOST: str = "::"
    LISTEN_PORT: int = Field(3000, ge=1, le=65535)
    REFRESH_INTERVAL_SECONDS: int = Field(60, ge=1, le=24 * 60 * 60)

    # ── Auth ──────────────────────────────────────────────────
    JWT_PUBLIC_KEY_PATH: Optional[Path] = None

    # ── Validators / normalizers ──────────────────────────────
    @field_validator("BASE_URL", mode="before")
    @classmethod
    def _normalize_base_url(cls, v) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("BASE_URL must not be empty")
        return _normalize_url_like(s, require_scheme=not s.startswith(("http://", "https://")))

    @field_validator("S3_ENDPOINT_URL", mode="before")
    @classmethod
    def _normalize_endpoint(cls, v: str | None) -> str | None:
        s = (v or "").strip()
        return s.rstrip("/") or None

    @field_validator("JWT_PUBLIC_KEY_PATH", mode="before")
    @classmethod
    def _empty_key_path_is_none(cls, v):
        # An empty env var means "not configured", never "configured but broken".
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # ── Derived values ───────────────────────────────────────
    def permanent_url(self, object_key: str) -> str:
        """Public, cache-forever URL of an object served by this gateway."""
        return f"{self.BASE_URL}/permanent/{object_key}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings singleton (validated on first use)."""
    return Settings()


__all__ = [
    "Settings",
    "get_settings",
    "PRESIGN_TTL_SECONDS",
    "CHANNELS_MANIFEST_KEY",
    "DEFAULT_FILE_EXTENSION",
]
