"""
Transform engine — decode, transform and encode with Pillow.

Pipeline order is fixed; each step runs only when its option is set:

  1. HEIC/HEIF → JPEG intermediate (pi_heif)
  2. crop
  3. resize (fit inside the requested box, clamped to the configured maxima,
     never enlarged)
  4. rotate, flip, flop, grayscale, blur, sharpen
  5. watermark (text at a gravity or tiled at 45°, or an image at a gravity)
  6. encode to webp / jpeg / png

Everything here is synchronous and CPU-bound; callers run it in an executor.
Same input bytes and options always yield the same output bytes for a given
Pillow build.
"""
from __future__ import annotations

import functools
import io
import logging
import math

import pi_heif
from PIL import Image, ImageDraw, ImageFilter, ImageFont, ImageOps, UnidentifiedImageError

from app.exceptions import DecodeError, TransformError
from app.image.constants import (
    BLUR_MAX_SIGMA,
    BLUR_MIN_SIGMA,
    CONTENT_TYPES,
    HEIC_INTERMEDIATE_QUALITY,
    HEIC_MIN_LENGTH,
    HEIC_SHORT_SIGNATURES,
    HEIC_SIGNATURES,
    IMAGE_WATERMARK_WIDTH,
    PIL_FORMATS,
    TEXT_BOX_HEIGHT,
    TEXT_BOX_WIDTH,
    TEXT_FONT_SIZE,
    TEXT_TILE_ANGLE,
    TEXT_TILE_CHAR_WIDTH,
    TEXT_TILE_MIN,
    OutputFormat,
    WatermarkPosition,
)
from app.image.schemas import CropBox, TransformOptions, Watermark

logger = logging.getLogger(__name__)

pi_heif.register_heif_opener()

_SOURCE_FORMATS = {
    "JPEG": OutputFormat.JPEG,
    "PNG": OutputFormat.PNG,
    "WEBP": OutputFormat.WEBP,
}


def is_heic(data: bytes) -> bool:
    if len(data) < HEIC_MIN_LENGTH:
        return False
    return data[4:12] in HEIC_SIGNATURES or data[8:12] in HEIC_SHORT_SIGNATURES


def content_type_for(fmt: OutputFormat | str) -> str:
    try:
        return CONTENT_TYPES[OutputFormat(fmt)]
    except ValueError:
        return CONTENT_TYPES[OutputFormat.WEBP]


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Cannot decode image: {exc}") from exc
    return image


def normalize_heic(data: bytes) -> bytes:
    """Re-encode HEIC/HEIF bytes as JPEG so every later step sees a standard format."""
    image = _open(data).convert("RGB")
    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=HEIC_INTERMEDIATE_QUALITY)
    return buf.getvalue()


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def _working_mode(image: Image.Image) -> Image.Image:
    """Bring palette, CMYK and high bit-depth images into a mode every step supports."""
    if image.mode in ("RGB", "RGBA", "L", "LA"):
        return image
    return image.convert("RGBA" if _has_alpha(image) else "RGB")


@functools.lru_cache(maxsize=4)
def _font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    return ImageFont.load_default(size=size)


def _gravity_offset(
    canvas: tuple[int, int], overlay: tuple[int, int], position: WatermarkPosition,
) -> tuple[int, int]:
    cw, ch = canvas
    ow, oh = overlay
    if position == WatermarkPosition.TOP_LEFT:
        return 0, 0
    if position == WatermarkPosition.TOP_RIGHT:
        return cw - ow, 0
    if position == WatermarkPosition.BOTTOM_LEFT:
        return 0, ch - oh
    if position == WatermarkPosition.CENTER:
        return (cw - ow) // 2, (ch - oh) // 2
    return cw - ow, ch - oh


def _composite(image: Image.Image, layer: Image.Image) -> Image.Image:
    keep_alpha = _has_alpha(image)
    base = image.convert("RGBA")
    merged = Image.alpha_composite(base, layer)
    if keep_alpha:
        return merged
    return merged.convert("L" if image.mode == "L" else "RGB")


class TransformEngine:
    def __init__(self, max_width: int, max_height: int, default_quality: int = 80) -> None:
        self.max_width = max_width
        self.max_height = max_height
        self.default_quality = default_quality

    # ── public ───────────────────────────────────────────────────────────────

    def transform(
        self,
        original: bytes,
        options: TransformOptions,
        watermark_asset: bytes | None = None,
    ) -> bytes:
        image = self._decode(original)

        if options.crop is not None:
            image = self._crop(image, options.crop)

        image = self._resize(image, options.width, options.height)
        image = self._adjust(image, options)

        if options.watermark is not None:
            image = self._watermark(image, options.watermark, watermark_asset)

        return self._encode(image, options.format, options.quality)

    def apply_watermark(
        self,
        data: bytes,
        watermark: Watermark,
        watermark_asset: bytes | None = None,
    ) -> bytes:
        """Watermark an original at upload time, keeping its encoding where possible."""
        image = self._decode(data)
        fmt = _SOURCE_FORMATS.get(image.format or "", OutputFormat.PNG)
        image = self._watermark(image, watermark, watermark_asset)
        return self._encode(image, fmt, self.default_quality)

    # ── steps ────────────────────────────────────────────────────────────────

    def _decode(self, data: bytes) -> Image.Image:
        if is_heic(data):
            logger.debug("HEIC input detected (%d bytes), converting to JPEG", len(data))
            data = normalize_heic(data)
        image = _open(data)
        source_format = image.format
        image = _working_mode(image)
        image.format = source_format
        return image

    def _crop(self, image: Image.Image, crop: CropBox) -> Image.Image:
        right = crop.left + crop.width
        bottom = crop.top + crop.height
        if crop.width <= 0 or crop.height <= 0:
            raise TransformError(f"Crop area {crop.width}x{crop.height} is empty")
        if crop.left < 0 or crop.top < 0 or right > image.width or bottom > image.height:
            raise TransformError(
                f"Crop area {crop.left},{crop.top},{crop.width}x{crop.height} "
                f"is outside the {image.width}x{image.height} image"
            )
        return image.crop((crop.left, crop.top, right, bottom))

    def _resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        box = (min(width, self.max_width), min(height, self.max_height))
        if image.width <= box[0] and image.height <= box[1]:
            return image
        resized = image.copy()
        # thumbnail keeps the aspect ratio and never enlarges
        resized.thumbnail(box, Image.Resampling.LANCZOS)
        return resized

    def _adjust(self, image: Image.Image, options: TransformOptions) -> Image.Image:
        if options.rotate:
            # clockwise, canvas grows to fit the rotated image
            image = image.rotate(-options.rotate, resample=Image.Resampling.BICUBIC, expand=True)
        if options.flip:
            image = ImageOps.flip(image)
        if options.flop:
            image = ImageOps.mirror(image)
        if options.grayscale:
            image = image.convert("LA" if _has_alpha(image) else "L")
        if options.blur and options.blur > 0:
            radius = min(max(options.blur, BLUR_MIN_SIGMA), BLUR_MAX_SIGMA)
            image = image.filter(ImageFilter.GaussianBlur(radius=radius))
        if options.sharpen:
            image = image.filter(ImageFilter.SHARPEN)
        return image

    def _watermark(
        self,
        image: Image.Image,
        watermark: Watermark,
        watermark_asset: bytes | None,
    ) -> Image.Image:
        if watermark.text:
            if watermark.position == WatermarkPosition.REPEAT:
                return self._tiled_text(image, watermark.text, watermark.opacity)
            return self._text(image, watermark.text, watermark.position, watermark.opacity)
        if watermark.image:
            return self._image_overlay(image, watermark, watermark_asset)
        return image

    def _text(
        self, image: Image.Image, text: str, position: WatermarkPosition, opacity: float,
    ) -> Image.Image:
        box = Image.new(
            "RGBA",
            (min(TEXT_BOX_WIDTH, image.width), min(TEXT_BOX_HEIGHT, image.height)),
            (0, 0, 0, 0),
        )
        ImageDraw.Draw(box).text(
            (box.width / 2, box.height / 2),
            text,
            font=_font(TEXT_FONT_SIZE),
            fill=(255, 255, 255, round(opacity * 255)),
            anchor="mm",
        )
        layer = Image.new("RGBA", image.size, (0, 0, 0, 0))
        layer.paste(box, _gravity_offset(image.size, box.size, position))
        return _composite(image, layer)

    def _tiled_text(self, image: Image.Image, text: str, opacity: float) -> Image.Image:
        tile = max(len(text) * TEXT_TILE_CHAR_WIDTH, TEXT_TILE_MIN)
        # square large enough to still cover the canvas after rotation
        side = math.ceil(math.hypot(image.width, image.height)) + tile
        pattern = Image.new("RGBA", (side, side), (0, 0, 0, 0))
        draw = ImageDraw.Draw(pattern)
        font = _font(TEXT_FONT_SIZE)
        fill = (255, 255, 255, round(opacity * 255))
        for y in range(tile // 2, side, tile):
            for x in range(tile // 2, side, tile):
                draw.text((x, y), text, font=font, fill=fill, anchor="mm")
        pattern = pattern.rotate(-TEXT_TILE_ANGLE, resample=Image.Resampling.BICUBIC)
        left = (side - image.width) // 2
        top = (side - image.height) // 2
        layer = pattern.crop((left, top, left + image.width, top + image.height))
        return _composite(image, layer)

    def _image_overlay(
        self, image: Image.Image, watermark: Watermark, asset: bytes | None,
    ) -> Image.Image:
        if asset is None:
            logger.warning("Watermark image %s unavailable, skipping watermark", watermark.image)
            return image
        try:
            mark = _open(asset).convert("RGBA")
        except DecodeError as exc:
            logger.warning("Watermark image %s unreadable, skipping watermark: %s", watermark.image, exc)
            return image

        height = max(1, round(mark.height * IMAGE_WATERMARK_WIDTH / mark.width))
        mark = mark.resize((IMAGE_WATERMARK_WIDTH, height), Image.Resampling.LANCZOS)
        alpha = mark.getchannel("A").point(lambda a: round(a * watermark.opacity))
        mark.putalpha(alpha)

        layer = Image.new("RGBA", image.size, (0, 0, 0, 0))
        layer.paste(mark, _gravity_offset(image.size, mark.size, watermark.position))
        return _composite(image, layer)

    def _encode(self, image: Image.Image, fmt: OutputFormat | str, quality: int) -> bytes:
        try:
            fmt = OutputFormat(fmt)
        except ValueError:
            fmt = OutputFormat.WEBP

        if fmt == OutputFormat.JPEG and _has_alpha(image):
            # JPEG has no alpha channel: flatten onto white
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.convert("RGBA").getchannel("A"))
            image = background
        elif fmt == OutputFormat.WEBP and image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA" if _has_alpha(image) else "RGB")

        params: dict[str, int] = {} if fmt == OutputFormat.PNG else {"quality": quality}
        buf = io.BytesIO()
        try:
            image.save(buf, format=PIL_FORMATS[fmt], **params)
        except (OSError, ValueError) as exc:
            raise TransformError(f"Cannot encode {fmt.value} at quality {quality}: {exc}") from exc
        return buf.getvalue()
