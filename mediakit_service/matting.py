"""
Pre- and post-processing around the local matting model.

Inputs are resized by the longest edge and normalised into the [-1, 1] space
matting networks expect; the predicted matte is cleaned up with edge-aware
OpenCV filtering before being stacked onto the original RGB pixels.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
import math
from typing import Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import DecodeError

logger = logging.getLogger(__name__)


@dataclass
class PreparedInput:
    array: np.ndarray  # (1, 3, H, W) float32
    original_image: Image.Image
    orig_size: Tuple[int, int]  # (width, height)
    resized_size: Tuple[int, int]


def compute_resize_dims(width: int, height: int, max_long_edge: int) -> Tuple[int, int]:
    """Preserve aspect ratio while constraining the longest edge."""
    if max_long_edge <= 0:
        return width, height
    long_edge = max(width, height)
    if long_edge <= max_long_edge:
        return width, height
    scale = max_long_edge / long_edge
    new_w = int(width * scale)
    new_h = int(height * scale)
    # Down/up sampling chains work best when dimensions are divisible by 32.
    new_w = max(32, math.ceil(new_w / 32) * 32)
    new_h = max(32, math.ceil(new_h / 32) * 32)
    return new_w, new_h


def prepare_input(image_bytes: bytes, max_long_edge: int) -> PreparedInput:
    try:
        image = Image.open(BytesIO(image_bytes)).convert("RGB")
    except Exception as exc:  # noqa: BLE001
        raise DecodeError("Invalid image data") from exc

    orig_w, orig_h = image.size
    new_w, new_h = compute_resize_dims(orig_w, orig_h, max_long_edge)
    resized = image.resize((new_w, new_h), Image.BILINEAR) if (new_w, new_h) != (orig_w, orig_h) else image

    im_np = np.asarray(resized).astype("float32") / 255.0
    im_np = (im_np - 0.5) / 0.5
    im_np = np.transpose(im_np, (2, 0, 1))[None, ...]  # HWC -> 1CHW

    return PreparedInput(
        array=np.ascontiguousarray(im_np),
        original_image=image,
        orig_size=(orig_w, orig_h),
        resized_size=(new_w, new_h),
    )


def _band_mask(alpha: np.ndarray, low: float, high: float) -> np.ndarray:
    return (alpha > low) & (alpha < high)


def keep_largest_component(alpha: np.ndarray, threshold: float = 0.05) -> np.ndarray:
    """Zero out all but the largest connected component above threshold."""
    mask = (alpha > threshold).astype(np.uint8)
    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
    if num_labels <= 2:
        return alpha
    largest_label = 1 + np.argmax(stats[1:, cv2.CC_STAT_AREA])
    logger.debug("matting: dropping %d stray components", num_labels - 2)
    return np.where(labels == largest_label, alpha, 0.0)


def _smooth_edge_band(
    alpha: np.ndarray,
    band_low: float,
    band_high: float,
    blend: float,
    bilateral_sigma_color: float,
) -> np.ndarray:
    """Limit smoothing to the uncertain edge band to avoid halos."""
    band = _band_mask(alpha, band_low, band_high)
    if not np.any(band):
        return alpha

    alpha_u8 = np.clip(alpha * 255.0, 0, 255).astype(np.uint8)
    median = cv2.medianBlur(alpha_u8, 3)
    bilateral = cv2.bilateralFilter(median, d=3, sigmaColor=bilateral_sigma_color, sigmaSpace=2)
    smooth = np.clip(bilateral.astype(np.float32) / 255.0, 0.0, 1.0)

    alpha_out = alpha.copy()
    alpha_out[band] = alpha[band] * (1.0 - blend) + smooth[band] * blend
    return alpha_out


def refine_alpha(
    alpha_raw: np.ndarray,
    cc_keep_threshold: float = 0.05,
    band_low: float = 0.08,
    band_high: float = 0.92,
    blend: float = 0.55,
    bilateral_sigma_color: float = 28.0,
    high_clip: float = 0.995,
) -> np.ndarray:
    alpha = np.clip(alpha_raw.astype(np.float32), 0.0, 1.0)
    alpha = np.power(alpha, 1.25)
    alpha = np.where(alpha < 0.03, 0.0, alpha)
    alpha = np.where(alpha > high_clip, 1.0, alpha).astype(np.float32)

    alpha = keep_largest_component(alpha, threshold=cc_keep_threshold)
    return _smooth_edge_band(
        alpha,
        band_low=band_low,
        band_high=band_high,
        blend=blend,
        bilateral_sigma_color=bilateral_sigma_color,
    )


def compose_rgba_png(rgb_image: Image.Image, alpha: np.ndarray) -> bytes:
    rgb_np = np.array(rgb_image.convert("RGB")).astype(np.uint8)
    if alpha.shape != rgb_np.shape[:2]:
        raise ValueError(f"alpha shape {alpha.shape} does not match image {rgb_np.shape[:2]}")
    alpha_u8 = np.clip(alpha * 255.0, 0, 255).astype(np.uint8)
    rgba = np.dstack((rgb_np, alpha_u8))
    buf = BytesIO()
    Image.fromarray(rgba).save(buf, format="PNG")
    return buf.getvalue()
