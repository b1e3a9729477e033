"""
Image pipeline — static constants and enum types.
"""
import enum


class OutputFormat(str, enum.Enum):
    WEBP = "webp"
    JPEG = "jpeg"
    PNG = "png"


class WatermarkPosition(str, enum.Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    CENTER = "center"
    REPEAT = "repeat-45deg"  # tiled diagonally across the whole canvas


class CacheTier(str, enum.Enum):
    FAST = "fast"
    STORAGE = "storage"
    NONE = "none"


# Accepted spellings of the output format; anything else falls back to WebP.
FORMAT_ALIASES: dict[str, OutputFormat] = {
    "webp": OutputFormat.WEBP,
    "jpeg": OutputFormat.JPEG,
    "jpg": OutputFormat.JPEG,
    "png": OutputFormat.PNG,
}

CONTENT_TYPES: dict[OutputFormat, str] = {
    OutputFormat.WEBP: "image/webp",
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.PNG: "image/png",
}

# Pillow encoder names
PIL_FORMATS: dict[OutputFormat, str] = {
    OutputFormat.WEBP: "WEBP",
    OutputFormat.JPEG: "JPEG",
    OutputFormat.PNG: "PNG",
}

DEFAULT_WATERMARK_POSITION = WatermarkPosition.BOTTOM_RIGHT
DEFAULT_WATERMARK_OPACITY = 0.5

# Gaussian blur sigma accepted by the engine; larger radii crash Pillow
BLUR_MIN_SIGMA = 0.3
BLUR_MAX_SIGMA = 1000.0

# ISO-BMFF "ftyp" box brands identifying HEIC/HEIF, checked at bytes 4..12
HEIC_SIGNATURES = frozenset({
    b"ftypheic", b"ftypheix", b"ftyphevc", b"ftyphevx", b"ftypmif1", b"ftypmsf1",
})
# Major brand alone, checked at bytes 8..12
HEIC_SHORT_SIGNATURES = frozenset({b"heic", b"heix", b"hevc", b"hevx"})
HEIC_MIN_LENGTH = 12
HEIC_INTERMEDIATE_QUALITY = 92

# Text watermark overlay box for gravity placement
TEXT_BOX_WIDTH = 500
TEXT_BOX_HEIGHT = 100
TEXT_FONT_SIZE = 24
# Repeating pattern: tile edge scales with text length, never below the minimum
TEXT_TILE_CHAR_WIDTH = 12
TEXT_TILE_MIN = 200
TEXT_TILE_ANGLE = 45

IMAGE_WATERMARK_WIDTH = 150

OBJECT_CACHE_PREFIX = "cache/"
FAST_CACHE_PREFIX = "image:"
