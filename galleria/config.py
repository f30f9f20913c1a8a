"""
Configuration settings for the Galleria service.

This module defines application-wide configuration variables using Pydantic's
BaseSettings for environment-based overrides. The gallery access-token secret is
mandatory: a missing or weak key stops the process before any request is served.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root directory: galleria-server/
BASE_DIR = Path(__file__).resolve().parents[1]

MIN_TOKEN_SECRET_BYTES = 32

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application configuration settings.

    These settings can be overridden by environment variables or values
    defined in the `.env` file located at the project root.
    """

    # ===== Core =====
    DATABASE_URL: str = f"sqlite:///{(BASE_DIR / 'galleria.db').as_posix()}"
    ENVIRONMENT: Literal["development", "production"] = "development"
    SECRET_KEY: str = "change-me"      # Session cookie signing, set in .env for production
    ADMIN_PASSWORD: str = "admin123"   # Should be set in .env for production
    SITE_TITLE: str = "Galleria"
    LOG_LEVEL: str = "INFO"

    # ===== Private gallery access tokens =====
    GALLERY_TOKEN_SECRET: str
    GALLERY_TOKEN_TTL_HOURS: int = 24

    # ===== S3 object storage =====
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = ""
    AWS_S3_BUCKET: str = ""
    AWS_S3_ENDPOINT_URL: Optional[str] = None  # R2 / MinIO

    # Signed URLs are valid for an hour but only cached for 50 minutes
    SIGNED_URL_EXPIRES: int = 3600
    SIGNED_URL_CACHE_TTL: int = 3000
    URL_CACHE_SWEEP_INTERVAL: int = 600

    # ===== Renditions =====
    WEB_MAX_DIMENSION: int = 1920
    WEB_QUALITY: int = 88
    THUMB_MAX_DIMENSION: int = 600
    THUMB_QUALITY: int = 82
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024

    # ===== View tracking =====
    TRACKING_RATE_LIMIT: int = 30
    TRACKING_RATE_WINDOW: int = 60

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("GALLERY_TOKEN_SECRET")
    @classmethod
    def _strong_token_secret(cls, v: str) -> str:
        if len(v.encode("utf-8")) < MIN_TOKEN_SECRET_BYTES:
            raise ValueError(
                f"GALLERY_TOKEN_SECRET must be at least {MIN_TOKEN_SECRET_BYTES} bytes"
            )
        return v

    @model_validator(mode="after")
    def _cache_inside_url_validity(self) -> "Settings":
        if self.SIGNED_URL_CACHE_TTL >= self.SIGNED_URL_EXPIRES:
            raise ValueError("SIGNED_URL_CACHE_TTL must be shorter than SIGNED_URL_EXPIRES")
        return self

    @property
    def s3_configured(self) -> bool:
        return all(
            (
                self.AWS_ACCESS_KEY_ID,
                self.AWS_SECRET_ACCESS_KEY,
                self.AWS_REGION,
                self.AWS_S3_BUCKET,
            )
        )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Initialize settings (raises on a missing or weak GALLERY_TOKEN_SECRET)
settings = Settings()

# --- Warnings (non-blocking) ---
if not settings.s3_configured:
    logger.warning(
        "S3 is not configured (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_REGION, "
        "AWS_S3_BUCKET). Storage operations will fail until these are set."
    )
