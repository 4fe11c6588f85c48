"""Image normalization and delivery encoding using Pillow.

normalize_image constrains uploads to a maximum resolution and file size
before they reach any provider; to_delivery_format re-encodes every
restoration result to the canonical delivery format (progressive JPEG).
"""

import io
from dataclasses import dataclass

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from restora.models.image import ImageAsset
from restora.services.exceptions import ValidationError

logger = structlog.get_logger(__name__)

DELIVERY_MIME_TYPE = "image/jpeg"
MIN_QUALITY = 40
QUALITY_STEP = 10

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}


@dataclass(slots=True, frozen=True)
class OptimizationReport:
    was_optimized: bool
    original_size: int
    optimized_size: int
    width: int
    height: int


def _open(asset: ImageAsset) -> Image.Image:
    """Decode image bytes, applying EXIF orientation.

    Raises:
        ValidationError: If the bytes are not a decodable image
    """
    try:
        image = Image.open(io.BytesIO(asset.data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Unsupported or corrupt image data: {e}") from e
    return ImageOps.exif_transpose(image) or image


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to RGB, compositing transparency over white."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _encode(image: Image.Image, fmt: str, quality: int) -> bytes:
    buffer = io.BytesIO()
    if fmt == "JPEG":
        _flatten(image).save(
            buffer, format="JPEG", quality=quality, optimize=True, progressive=True
        )
    elif fmt == "WEBP":
        image.save(buffer, format="WEBP", quality=quality)
    else:
        image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def normalize_image(
    asset: ImageAsset,
    max_dimension: int = 1200,
    max_size_kb: int = 400,
    quality: int = 85,
) -> tuple[ImageAsset, OptimizationReport]:
    """Constrain an image to a maximum resolution and file size.

    Aspect ratio is preserved and images are never enlarged. JPEG and WebP
    quality is stepped down until the size budget is met; PNG sources that
    remain over budget are converted to JPEG.

    Args:
        asset: Uploaded image
        max_dimension: Maximum width and height in pixels
        max_size_kb: Maximum encoded size in kilobytes
        quality: Starting encoder quality

    Returns:
        Tuple of (normalized asset, optimization report)

    Raises:
        ValidationError: If the bytes are not a decodable image
    """
    image = _open(asset)
    width, height = image.size
    max_bytes = max_size_kb * 1024

    needs_resize = width > max_dimension or height > max_dimension
    needs_compression = asset.size > max_bytes

    if not needs_resize and not needs_compression:
        return asset, OptimizationReport(False, asset.size, asset.size, width, height)

    logger.info(
        "image.optimizing",
        width=width,
        height=height,
        size_kb=round(asset.size / 1024, 2),
    )

    if needs_resize:
        image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    fmt = image.format or Image.open(io.BytesIO(asset.data)).format or "JPEG"
    fmt = fmt if fmt in _FORMAT_MIME else "JPEG"

    current_quality = quality
    data = _encode(image, fmt, current_quality)
    if len(data) > max_bytes and fmt == "PNG":
        fmt = "JPEG"
        data = _encode(image, fmt, current_quality)
    while len(data) > max_bytes and current_quality - QUALITY_STEP >= MIN_QUALITY:
        current_quality -= QUALITY_STEP
        data = _encode(image, fmt, current_quality)

    optimized = ImageAsset(data=data, mime_type=_FORMAT_MIME[fmt])
    report = OptimizationReport(True, asset.size, optimized.size, image.size[0], image.size[1])
    logger.info(
        "image.optimized",
        width=report.width,
        height=report.height,
        original_kb=round(report.original_size / 1024, 2),
        optimized_kb=round(report.optimized_size / 1024, 2),
        quality=current_quality,
    )
    return optimized, report


def to_delivery_format(asset: ImageAsset, quality: int = 92) -> ImageAsset:
    """Re-encode a generated image as the canonical delivery JPEG.

    Raises:
        ValidationError: If the bytes are not a decodable image
    """
    image = _open(asset)
    return ImageAsset(data=_encode(image, "JPEG", quality), mime_type=DELIVERY_MIME_TYPE)
