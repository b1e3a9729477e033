"""
Query string → TransformOptions.

Every value arrives as a string. Nothing here raises: a malformed number is
treated as absent and falls through to its default. Values that have the same
effect as the default are folded onto it (``rotate=0``, ``blur=0``,
``format=jpg``, widths above the maximum, ...) so that equivalent requests
produce equal options and therefore equal cache keys.
"""
from __future__ import annotations

import math
from collections.abc import Mapping

from app.config import Settings
from app.image.constants import (
    BLUR_MAX_SIGMA,
    BLUR_MIN_SIGMA,
    DEFAULT_WATERMARK_OPACITY,
    DEFAULT_WATERMARK_POSITION,
    FORMAT_ALIASES,
    OutputFormat,
    WatermarkPosition,
)
from app.image.schemas import CropBox, TransformOptions, UploadWatermark, Watermark


def parse_int(value: str | None) -> int | None:
    """Lenient integer parse: ``"12"`` and ``"12.7"`` give 12, garbage gives None."""
    number = parse_float(value)
    return int(number) if number is not None else None


def parse_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_bool(value: str | None) -> bool:
    return value == "true"


def resolve_format(value: str | None) -> OutputFormat:
    if not value:
        return OutputFormat.WEBP
    return FORMAT_ALIASES.get(value.strip().lower(), OutputFormat.WEBP)


def resolve_position(value: str | None) -> WatermarkPosition:
    try:
        return WatermarkPosition(value)
    except ValueError:
        return DEFAULT_WATERMARK_POSITION


def resolve_opacity(value: float | None) -> float:
    if value is None:
        return DEFAULT_WATERMARK_OPACITY
    return min(max(value, 0.0), 1.0)


def _dimension(value: str | None, maximum: int) -> int:
    parsed = parse_int(value)
    if parsed is None or parsed <= 0:
        return maximum
    return min(parsed, maximum)


def _rotation(value: str | None) -> int | None:
    parsed = parse_int(value)
    if parsed is None:
        return None
    return parsed % 360 or None


def _blur(value: str | None) -> float | None:
    parsed = parse_float(value)
    if parsed is None or parsed <= 0:
        return None
    return min(max(parsed, BLUR_MIN_SIGMA), BLUR_MAX_SIGMA)


def _watermark(query: Mapping[str, str]) -> Watermark | None:
    text = query.get("watermarkText") or None
    image = query.get("watermarkImage") or None
    if text is None and image is None:
        return None
    return Watermark(
        # text wins when both are given
        text=text,
        image=None if text is not None else image,
        position=resolve_position(query.get("watermarkPosition")),
        opacity=resolve_opacity(parse_float(query.get("watermarkOpacity"))),
    )


def _crop(query: Mapping[str, str]) -> CropBox | None:
    width = parse_int(query.get("cropWidth"))
    height = parse_int(query.get("cropHeight"))
    if width is None or height is None or width <= 0 or height <= 0:
        return None
    return CropBox(
        left=parse_int(query.get("cropLeft")) or 0,
        top=parse_int(query.get("cropTop")) or 0,
        width=width,
        height=height,
    )


def normalize_options(query: Mapping[str, str], settings: Settings) -> TransformOptions:
    quality = parse_int(query.get("quality"))
    return TransformOptions(
        width=_dimension(query.get("width"), settings.max_width),
        height=_dimension(query.get("height"), settings.max_height),
        format=resolve_format(query.get("format")),
        quality=quality if quality is not None else settings.image_quality,
        rotate=_rotation(query.get("rotate")),
        flip=parse_bool(query.get("flip")),
        flop=parse_bool(query.get("flop")),
        grayscale=parse_bool(query.get("grayscale")),
        blur=_blur(query.get("blur")),
        sharpen=parse_bool(query.get("sharpen")),
        watermark=_watermark(query),
        crop=_crop(query),
    )


def watermark_from_upload(request: UploadWatermark | None) -> Watermark | None:
    """Upload-time watermark. Text defaults to the tiled pattern, images to bottom-right."""
    if request is None or not (request.text or request.image):
        return None
    default_position = WatermarkPosition.REPEAT if request.text else DEFAULT_WATERMARK_POSITION
    return Watermark(
        text=request.text or None,
        image=None if request.text else request.image,
        position=request.position or default_position,
        opacity=resolve_opacity(request.opacity),
    )
