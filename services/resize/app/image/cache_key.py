"""
Cache key derivation.

One digest names a rendition in both cache tiers:

  object storage   cache/<digest>
  fast cache       image:<digest>

The digest is SHA-256 over ``<path>\\n<canonical options>``. The canonical
form lists fields in the fixed order below, never in construction or query
order, and renders unset fields as empty values. Do not hash any other
representation of the options (``model_dump_json`` included): a second
serialization would silently split the key space.
"""
from __future__ import annotations

import enum
import hashlib

from app.image.constants import FAST_CACHE_PREFIX, OBJECT_CACHE_PREFIX
from app.image.schemas import CropBox, TransformOptions, Watermark

_OPTION_FIELDS = (
    "width", "height", "format", "quality", "rotate", "flip", "flop",
    "grayscale", "blur", "sharpen",
)
_CROP_FIELDS = ("left", "top", "width", "height")
_WATERMARK_FIELDS = ("text", "image", "position", "opacity")


def _value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        return repr(float(value))
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


def _group(obj: CropBox | Watermark | None, fields: tuple[str, ...]) -> str:
    if obj is None:
        return ""
    rendered = []
    for name in fields:
        value = getattr(obj, name)
        # free text may contain separators; repr quotes and escapes it
        rendered.append(f"{name}:{value!r}" if type(value) is str else f"{name}:{_value(value)}")
    return ",".join(rendered)


def canonical_options(options: TransformOptions) -> str:
    parts = [f"{name}={_value(getattr(options, name))}" for name in _OPTION_FIELDS]
    parts.append(f"crop=[{_group(options.crop, _CROP_FIELDS)}]")
    parts.append(f"watermark=[{_group(options.watermark, _WATERMARK_FIELDS)}]")
    return "&".join(parts)


def derive_key(original_path: str, options: TransformOptions) -> str:
    material = f"{original_path}\n{canonical_options(options)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def object_cache_path(digest: str) -> str:
    return f"{OBJECT_CACHE_PREFIX}{digest}"


def fast_cache_key(digest: str) -> str:
    return f"{FAST_CACHE_PREFIX}{digest}"
