"""Environment-based configuration for ThumbnailX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from thumbnailx.geometry.dimensions import RoundingPolicy


class Settings(BaseSettings):
    """Application settings loaded from THUMBNAILX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="THUMBNAILX_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Geometry
    rounding: RoundingPolicy = RoundingPolicy.FLOOR

    # Raster engine
    resample_filter: Literal["nearest", "bilinear", "bicubic", "lanczos"] = "lanczos"
    jpeg_quality: int | None = Field(default=None, ge=1, le=95)
    default_format: Literal["gif", "jpeg", "png"] = "png"

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0, description="Seconds a request may wait for a transform slot")

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
