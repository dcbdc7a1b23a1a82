"""Brand watermark burned into listing photos before they are stored."""

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageDraw, ImageFilter, ImageFont, UnidentifiedImageError

from media_ingest.errors import ErrorKind, UploadError
from media_ingest.models import MediaFile

PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}

TEXT_FILL = (255, 255, 255, round(255 * 0.4))
SHADOW_FILL = (0, 0, 0, round(255 * 0.3))
ENCODE_QUALITY = 95

_logger = logging.getLogger("media_ingest.watermark")


@dataclass(frozen=True)
class WatermarkLayout:
    font_size: float
    padding: float
    shadow_blur: float
    shadow_offset: float


def compute_font_size(width: int, height: int) -> float:
    return max(16, min(width * 0.02, height * 0.03))


def compute_padding(font_size: float) -> float:
    return max(12, font_size * 0.5)


def layout_for(width: int, height: int) -> WatermarkLayout:
    font_size = compute_font_size(width, height)
    return WatermarkLayout(
        font_size=font_size,
        padding=compute_padding(font_size),
        shadow_blur=max(2, font_size * 0.1),
        shadow_offset=max(1, font_size * 0.05),
    )


def apply_watermark(file: MediaFile, text: str, font_path: str | None = None) -> MediaFile:
    """Stamp `text` in the top-right corner and re-encode in the file's own type.

    Raises UploadError(TRANSFORM) when the bytes cannot be decoded or the
    stamped image cannot be encoded again. Neither case is worth retrying.
    """
    try:
        with Image.open(io.BytesIO(file.content)) as source:
            source.load()
            has_alpha = "A" in source.getbands() or "transparency" in source.info
            image = source.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise UploadError("Failed to load image", kind=ErrorKind.TRANSFORM) from exc

    try:
        stamped = _stamp(image, text, font_path)
        content = _encode(stamped, file.content_type, has_alpha)
    except (OSError, ValueError) as exc:
        raise UploadError("Failed to create watermarked image", kind=ErrorKind.TRANSFORM) from exc

    return MediaFile(filename=file.filename, content_type=file.content_type, content=content)


def _load_font(size: int, font_path: str | None) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    if font_path:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError as exc:
            _logger.warning("watermark_font_unavailable: %s (%s), using built-in font", font_path, exc)
    return ImageFont.load_default(size=size)


def _stamp(image: Image.Image, text: str, font_path: str | None) -> Image.Image:
    width, height = image.size
    layout = layout_for(width, height)
    font = _load_font(max(1, round(layout.font_size)), font_path)

    text_width = ImageDraw.Draw(image).textlength(text, font=font)
    # Baseline position, same convention as a canvas fillText call.
    x = width - text_width - layout.padding
    y = layout.padding + layout.font_size * 0.5

    shadow = Image.new("RGBA", image.size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).text(
        (x + layout.shadow_offset, y + layout.shadow_offset),
        text,
        font=font,
        fill=SHADOW_FILL,
        anchor="ls",
    )
    shadow = shadow.filter(ImageFilter.GaussianBlur(layout.shadow_blur / 2))

    overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
    ImageDraw.Draw(overlay).text((x, y), text, font=font, fill=TEXT_FILL, anchor="ls")

    return Image.alpha_composite(Image.alpha_composite(image, shadow), overlay)


def _encode(image: Image.Image, content_type: str, has_alpha: bool) -> bytes:
    fmt = PIL_FORMATS.get(content_type)
    if fmt is None:
        raise ValueError(f"no encoder for {content_type}")

    buffer = io.BytesIO()
    if fmt == "JPEG":
        image.convert("RGB").save(buffer, format=fmt, quality=ENCODE_QUALITY)
    elif fmt == "WEBP":
        image.save(buffer, format=fmt, quality=ENCODE_QUALITY)
    elif fmt == "PNG" and has_alpha:
        image.save(buffer, format=fmt)
    else:
        image.convert("RGB").save(buffer, format=fmt)
    return buffer.getvalue()
