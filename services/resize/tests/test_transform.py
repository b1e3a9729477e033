import io

import pytest
from PIL import Image

from app.exceptions import DecodeError, TransformError
from app.image.constants import OutputFormat, WatermarkPosition
from app.image.schemas import CropBox, TransformOptions, Watermark
from app.image.transform import TransformEngine, content_type_for, is_heic
from conftest import make_image, open_image


@pytest.fixture
def transform_engine() -> TransformEngine:
    return TransformEngine(1920, 1080, 80)


def _options(**overrides) -> TransformOptions:
    values = {"width": 1920, "height": 1080, "quality": 80}
    values.update(overrides)
    return TransformOptions(**values)


def _two_tone(width: int = 40, height: int = 40) -> bytes:
    """Top half red, bottom half blue; left quarter green."""
    image = Image.new("RGB", (width, height), (255, 0, 0))
    image.paste((0, 0, 255), (0, height // 2, width, height))
    image.paste((0, 255, 0), (0, 0, width // 4, height))
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


# ── Resize ───────────────────────────────────────────────────────────────────

def test_resize_800x600_jpeg_to_webp(transform_engine) -> None:
    out = transform_engine.transform(make_image(800, 600), _options(width=200))
    image = open_image(out)
    assert image.format == "WEBP"
    assert image.size == (200, 150)


def test_resize_never_enlarges(transform_engine) -> None:
    out = transform_engine.transform(make_image(100, 80), _options(width=500, height=500))
    assert open_image(out).size == (100, 80)


def test_resize_clamps_to_configured_maximum(transform_engine) -> None:
    out = transform_engine.transform(make_image(3000, 2000), _options(width=4000, height=4000))
    width, height = open_image(out).size
    assert width <= 1920 and height <= 1080
    assert height == 1080


def test_crop_runs_before_resize(transform_engine) -> None:
    out = transform_engine.transform(
        make_image(800, 600),
        _options(crop=CropBox(left=10, top=10, width=100, height=50)),
    )
    assert open_image(out).size == (100, 50)


def test_crop_outside_image_fails(transform_engine) -> None:
    with pytest.raises(TransformError):
        transform_engine.transform(
            make_image(100, 100),
            _options(crop=CropBox(left=50, top=50, width=100, height=100)),
        )


def test_empty_crop_fails(transform_engine) -> None:
    with pytest.raises(TransformError):
        transform_engine.transform(
            make_image(100, 100),
            _options(crop=CropBox(left=0, top=0, width=-50, height=100)),
        )


# ── Operations ───────────────────────────────────────────────────────────────

def test_rotate_swaps_dimensions(transform_engine) -> None:
    out = transform_engine.transform(make_image(800, 600), _options(rotate=90))
    assert open_image(out).size == (600, 800)


def test_flip_is_vertical(transform_engine) -> None:
    out = open_image(transform_engine.transform(_two_tone(), _options(format=OutputFormat.PNG, flip=True)))
    assert out.getpixel((30, 5)) == (0, 0, 255)
    assert out.getpixel((30, 35)) == (255, 0, 0)


def test_flop_is_horizontal(transform_engine) -> None:
    out = open_image(transform_engine.transform(_two_tone(), _options(format=OutputFormat.PNG, flop=True)))
    assert out.getpixel((35, 5)) == (0, 255, 0)
    assert out.getpixel((5, 5)) == (255, 0, 0)


def test_grayscale(transform_engine) -> None:
    out = open_image(transform_engine.transform(_two_tone(), _options(format=OutputFormat.PNG, grayscale=True)))
    assert out.mode == "L"


def test_blur_and_sharpen_keep_geometry(transform_engine) -> None:
    out = transform_engine.transform(
        make_image(120, 90), _options(format=OutputFormat.PNG, blur=2.0, sharpen=True),
    )
    assert open_image(out).size == (120, 90)


def test_jpeg_output_flattens_alpha(transform_engine) -> None:
    source = make_image(50, 50, fmt="PNG", color=(0, 0, 0, 0), mode="RGBA")
    out = open_image(transform_engine.transform(source, _options(format=OutputFormat.JPEG)))
    assert out.format == "JPEG"
    assert out.mode == "RGB"


def test_transform_is_deterministic(transform_engine) -> None:
    source = make_image(640, 480)
    options = _options(width=300, rotate=45, grayscale=True, watermark=Watermark(text="hi"))
    assert transform_engine.transform(source, options) == transform_engine.transform(source, options)


# ── Watermarks ───────────────────────────────────────────────────────────────

def _brightest(data: bytes) -> int:
    return max(open_image(data).convert("L").getdata())


def test_text_watermark_at_gravity(transform_engine) -> None:
    source = make_image(400, 300, fmt="PNG", color=(0, 0, 0))
    plain = transform_engine.transform(source, _options(format=OutputFormat.PNG))
    marked = transform_engine.transform(
        source,
        _options(
            format=OutputFormat.PNG,
            watermark=Watermark(text="HELLO", position=WatermarkPosition.CENTER, opacity=1.0),
        ),
    )
    assert plain != marked
    assert _brightest(plain) == 0
    assert _brightest(marked) > 0


def test_tiled_text_watermark(transform_engine) -> None:
    source = make_image(400, 300, fmt="PNG", color=(0, 0, 0))
    marked = transform_engine.transform(
        source,
        _options(
            format=OutputFormat.PNG,
            watermark=Watermark(text="SAMPLE", position=WatermarkPosition.REPEAT, opacity=1.0),
        ),
    )
    assert open_image(marked).size == (400, 300)
    assert _brightest(marked) > 0


def test_image_watermark_at_gravity(transform_engine) -> None:
    source = make_image(400, 300, fmt="PNG", color=(0, 0, 0))
    asset = make_image(50, 50, fmt="PNG", color=(255, 255, 255))
    marked = open_image(transform_engine.transform(
        source,
        _options(
            format=OutputFormat.PNG,
            watermark=Watermark(image="logo.png", position=WatermarkPosition.TOP_LEFT, opacity=1.0),
        ),
        asset,
    ))
    assert min(marked.getpixel((10, 10))) >= 250
    assert marked.getpixel((390, 290)) == (0, 0, 0)


def test_missing_watermark_asset_leaves_image_unchanged(transform_engine) -> None:
    source = make_image(200, 100, fmt="PNG", color=(0, 0, 0))
    plain = transform_engine.transform(source, _options(format=OutputFormat.PNG))
    skipped = transform_engine.transform(
        source, _options(format=OutputFormat.PNG, watermark=Watermark(image="missing.png")), None,
    )
    unreadable = transform_engine.transform(
        source, _options(format=OutputFormat.PNG, watermark=Watermark(image="bad.png")), b"nope",
    )
    assert plain == skipped == unreadable


def test_apply_watermark_keeps_source_format(transform_engine) -> None:
    out = transform_engine.apply_watermark(make_image(300, 200), Watermark(text="(c)"))
    image = open_image(out)
    assert image.format == "JPEG"
    assert image.size == (300, 200)


# ── Detection / errors ───────────────────────────────────────────────────────

def test_is_heic_signatures() -> None:
    assert is_heic(b"\x00\x00\x00\x18ftypheic" + b"\x00" * 8)
    assert is_heic(b"\x00\x00\x00\x18ftypmif1")
    assert is_heic(b"\x00" * 8 + b"hevc")


def test_is_heic_rejects_short_and_other_input() -> None:
    assert not is_heic(b"\x00\x00\x00\x18ftyphei")  # 11 bytes
    assert not is_heic(b"")
    assert not is_heic(make_image(10, 10))
    assert not is_heic(b"\x00" * 8 + b"mif1")


def test_undecodable_input(transform_engine) -> None:
    with pytest.raises(DecodeError):
        transform_engine.transform(b"definitely not an image", _options())


def test_content_types() -> None:
    assert content_type_for(OutputFormat.WEBP) == "image/webp"
    assert content_type_for("jpeg") == "image/jpeg"
    assert content_type_for("png") == "image/png"
    assert content_type_for("bmp") == "image/webp"
