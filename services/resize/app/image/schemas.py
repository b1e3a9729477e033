"""
Image pipeline — Pydantic V2 value types and request/response schemas.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from app.image.constants import (
    DEFAULT_WATERMARK_OPACITY,
    DEFAULT_WATERMARK_POSITION,
    OutputFormat,
    WatermarkPosition,
)


# ── Base ─────────────────────────────────────────────────────────────────────

class _Base(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ── Transform options ────────────────────────────────────────────────────────

class CropBox(_Frozen):
    left: int = 0
    top: int = 0
    width: int
    height: int


class Watermark(_Frozen):
    """Exactly one of ``text`` / ``image`` is set; ``image`` is a storage path."""
    text: str | None = None
    image: str | None = None
    position: WatermarkPosition = DEFAULT_WATERMARK_POSITION
    opacity: float = DEFAULT_WATERMARK_OPACITY


class TransformOptions(_Frozen):
    """Canonical transform request. Every field holds its resolved value."""
    width: int
    height: int
    format: OutputFormat = OutputFormat.WEBP
    quality: int
    rotate: int | None = None
    flip: bool = False
    flop: bool = False
    grayscale: bool = False
    blur: float | None = None
    sharpen: bool = False
    watermark: Watermark | None = None
    crop: CropBox | None = None


# ── Requests ─────────────────────────────────────────────────────────────────

class UploadWatermark(_Base):
    text: str | None = Field(default=None, max_length=200)
    image: str | None = Field(default=None, max_length=1024)
    position: WatermarkPosition | None = None
    opacity: float | None = Field(default=None, ge=0, le=1)


class UploadRequest(_Base):
    """Store an original. ``image`` is the base64-encoded file body.

    All fields are optional; the controller rejects an incomplete body.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
        populate_by_name=True,
    )

    image: str | None = None
    path: str | None = Field(default=None, max_length=1024)
    content_type: str | None = Field(default=None, alias="contentType", max_length=100)
    watermark: UploadWatermark | None = None


# ── Responses ────────────────────────────────────────────────────────────────

class UploadResponse(_Base):
    success: bool = True
    path: str
    url: str


class HealthResponse(_Base):
    status: str
