"""Pydantic response schemas for the ThumbnailX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageInfo(BaseModel):
    """Basic facts about an uploaded image."""

    width: int = Field(ge=1)
    height: int = Field(ge=1)
    format: str = Field(description="Image format: 'gif', 'jpeg' or 'png'")
    content_type: str
    orientation: int | None = Field(default=None, description="EXIF orientation code (0-8), if readable")
    transparent_index: int | None = Field(default=None, description="Transparent palette index for GIF images")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    rounding: str
    resample_filter: str
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
