"""
Pillow-backed image codec helpers.

Decode/encode/resize/composite are delegated to Pillow; this module only
normalises errors and formats so callers can treat images as opaque buffers.
"""

from __future__ import annotations

from io import BytesIO
import logging
from typing import Any, Dict, Tuple

import numpy as np
from PIL import Image, ImageOps

from .errors import DecodeError

logger = logging.getLogger(__name__)

BASIC_TRANSPARENCY_NAME = "Basic Transparency"

_FORMATS = {
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "png": ("PNG", "image/png"),
    "webp": ("WEBP", "image/webp"),
}


def decode_image(image_bytes: bytes) -> Image.Image:
    """Fully decode an image; raise DecodeError on anything Pillow rejects."""
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise DecodeError(f"Invalid image data: {exc}") from exc
    return image


def resolve_format(fmt: str) -> Tuple[str, str]:
    """Map a caller format name to (Pillow format, content type)."""
    try:
        return _FORMATS[fmt.lower()]
    except KeyError:
        raise ValueError(f"Unsupported output format: {fmt}") from None


def encode_image(image: Image.Image, fmt: str = "png", quality: int = 90) -> Tuple[bytes, str]:
    pil_format, content_type = resolve_format(fmt)
    if pil_format == "JPEG" and image.mode != "RGB":
        image = image.convert("RGB")
    buf = BytesIO()
    if pil_format == "PNG":
        image.save(buf, format=pil_format)
    else:
        image.save(buf, format=pil_format, quality=quality)
    return buf.getvalue(), content_type


def cover_fit(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Scale and center-crop so `image` fills `size` without distortion."""
    if image.size == size:
        return image
    return ImageOps.fit(image, size, method=Image.LANCZOS, centering=(0.5, 0.5))


def composite_over(background: Image.Image, foreground: Image.Image) -> Image.Image:
    """Alpha-composite `foreground` above `background` (same size required)."""
    base = background.convert("RGBA")
    top = foreground.convert("RGBA")
    return Image.alpha_composite(base, top)


def basic_transparency(image_bytes: bytes, threshold: int = 240) -> bytes:
    """
    Make light pixels transparent with a fixed luminance cutoff.

    Pixels whose luminance is at or above `threshold` get alpha 0; everything
    else keeps its original alpha. The transform is deterministic, so the same
    input always produces byte-identical PNG output.
    """
    image = decode_image(image_bytes).convert("RGBA")
    rgba = np.array(image, dtype=np.uint8)
    luminance = np.array(image.convert("L"), dtype=np.uint8)
    rgba[..., 3] = np.where(luminance >= threshold, 0, rgba[..., 3]).astype(np.uint8)
    out = Image.fromarray(rgba)
    buf = BytesIO()
    out.save(buf, format="PNG")
    return buf.getvalue()


def validate_image(image_bytes: bytes) -> Dict[str, Any]:
    try:
        image = decode_image(image_bytes)
    except DecodeError as exc:
        return {"valid": False, "error": exc.message}
    return {
        "valid": True,
        "format": (image.format or "").lower() or None,
        "width": image.width,
        "height": image.height,
        "size": len(image_bytes),
        "hasAlpha": "A" in image.getbands() or "transparency" in image.info,
    }


def optimize_for_web(
    image_bytes: bytes,
    max_width: int = 2000,
    max_height: int = 2000,
    quality: int = 80,
    fmt: str = "webp",
) -> Dict[str, Any]:
    """Downscale to fit inside max dimensions (never enlarge) and re-encode."""
    image = decode_image(image_bytes)
    if image.width > max_width or image.height > max_height:
        image = image.copy()
        image.thumbnail((max_width, max_height), Image.LANCZOS)
    if fmt.lower() in ("jpeg", "jpg"):
        image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")

    optimized, content_type = encode_image(image, fmt, quality=quality)
    reduction = round((len(image_bytes) - len(optimized)) / len(image_bytes) * 100.0, 2)
    logger.debug("optimize_for_web: %d -> %d bytes (%.2f%%)", len(image_bytes), len(optimized), reduction)
    return {
        "success": True,
        "originalSize": len(image_bytes),
        "optimizedSize": len(optimized),
        "reduction": reduction,
        "format": fmt.lower(),
        "contentType": content_type,
        "buffer": optimized,
        "width": image.width,
        "height": image.height,
    }
