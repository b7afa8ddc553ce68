from __future__ import annotations

import logging
from typing import Sequence, Tuple

import cv2
import numpy as np

from bp_image import PixelBuffer

logger = logging.getLogger(__name__)

LUMA_WEIGHTS = (0.299, 0.587, 0.114)
SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)
MORPHOLOGY_MAX_PIXELS = 2_000_000
DEFAULT_MAX_DIMENSION = 4000

# Binarization modes: (adaptive threshold fraction k, enhance base, local contrast slope)
BINARIZE_MODES = {
    "aggressive": (0.2, 6.0, 2.0),
    "standard": (0.35, 5.0, 1.5),
    "conservative": (0.5, 4.0, 1.0),
}

DARK_PIXEL_CUTOFF = 100
BRIGHT_PIXEL_CUTOFF = 150


def _luma(buffer: PixelBuffer) -> np.ndarray:
    rgb = buffer.pixels[:, :, :3].astype(np.float32)
    r, g, b = LUMA_WEIGHTS
    return rgb[:, :, 0] * r + rgb[:, :, 1] * g + rgb[:, :, 2] * b


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def _from_gray(gray: np.ndarray, alpha: np.ndarray) -> PixelBuffer:
    channel = _to_uint8(gray)
    return PixelBuffer(np.dstack((channel, channel, channel, alpha)))


def grayscale(buffer: PixelBuffer) -> PixelBuffer:
    return _from_gray(_luma(buffer), buffer.alpha)


def upscale_to_target(
    buffer: PixelBuffer, target: int, max_dimension: int = DEFAULT_MAX_DIMENSION
) -> PixelBuffer:
    """Enlarge until the shorter side reaches ``target``, never past ``max_dimension``.

    Images whose shorter side already meets the target are returned as a copy.
    The result is never smaller than the input.
    """
    width, height = buffer.size
    if width >= target and height >= target:
        return PixelBuffer(buffer.pixels.copy())

    scale = max(target / width, target / height)
    if width * scale > max_dimension or height * scale > max_dimension:
        scale = min(scale, max_dimension / width, max_dimension / height)
    scale = max(scale, 1.0)
    new_width = max(width, int(width * scale))
    new_height = max(height, int(height * scale))
    if (new_width, new_height) == (width, height):
        return PixelBuffer(buffer.pixels.copy())

    resized = cv2.resize(
        buffer.pixels.copy(),
        (new_width, new_height),
        interpolation=cv2.INTER_CUBIC,
    )
    logger.debug("Upscaled image from %dx%d to %dx%d", width, height, new_width, new_height)
    return PixelBuffer(resized)


def sharpen(buffer: PixelBuffer) -> PixelBuffer:
    """3x3 Laplacian sharpen on RGB; border pixels are left untouched."""
    out = buffer.pixels.copy()
    if buffer.width < 3 or buffer.height < 3:
        return PixelBuffer(out)
    rgb = buffer.pixels[:, :, :3].astype(np.float32)
    filtered = cv2.filter2D(rgb, cv2.CV_32F, SHARPEN_KERNEL)
    out[1:-1, 1:-1, :3] = _to_uint8(filtered[1:-1, 1:-1])
    return PixelBuffer(out)


def intensity_histogram(gray: np.ndarray) -> np.ndarray:
    bins = np.clip(np.rint(gray), 0, 255).astype(np.int64).ravel()
    return np.bincount(bins, minlength=256)


def otsu_threshold(histogram: Sequence[int], total_pixels: int) -> int:
    """Cut point maximizing the between-class variance of a 256-bin histogram."""
    total_sum = 0.0
    for level in range(256):
        total_sum += level * float(histogram[level])

    sum_background = 0.0
    weight_background = 0.0
    max_variance = 0.0
    threshold = 0
    for level in range(256):
        weight_background += float(histogram[level])
        if weight_background == 0:
            continue
        weight_foreground = total_pixels - weight_background
        if weight_foreground == 0:
            break
        sum_background += level * float(histogram[level])
        mean_background = sum_background / weight_background
        mean_foreground = (total_sum - sum_background) / weight_foreground
        variance = (
            weight_background
            * weight_foreground
            * (mean_background - mean_foreground) ** 2
        )
        if variance > max_variance:
            max_variance = variance
            threshold = level
    return threshold


def classify_display(gray: np.ndarray) -> Tuple[bool, bool]:
    """Return ``(dark_text_on_light, bright_display_on_dark)``."""
    total = gray.size
    dark_count = int(np.count_nonzero(gray < DARK_PIXEL_CUTOFF))
    bright_count = int(np.count_nonzero(gray > BRIGHT_PIXEL_CUTOFF))
    dark_text = dark_count > total / 8 and bright_count < total / 10
    bright_display = bright_count > total / 15
    return dark_text, bright_display


def select_threshold(gray: np.ndarray, fraction: float, special_display: bool) -> float:
    """Otsu for classified displays, otherwise Otsu averaged with ``min + range * fraction``."""
    otsu = otsu_threshold(intensity_histogram(gray), gray.size)
    if special_display:
        return float(otsu)
    low = float(gray.min())
    value_range = (float(gray.max()) - low) or 1.0
    return (otsu + low + value_range * fraction) / 2.0


def binarize_enhance(buffer: PixelBuffer, mode: str = "standard") -> PixelBuffer:
    """Classify the display, pick a threshold, stretch, tone-map and binarize to {0, 255}."""
    try:
        fraction, enhance_base, contrast_slope = BINARIZE_MODES[mode]
    except KeyError as exc:
        raise ValueError(f"Unknown binarization mode: {mode}") from exc

    gray = _luma(buffer)
    dark_text, bright_display = classify_display(gray)

    flat = gray.ravel()
    low = float(flat.min())
    high = float(flat.max())
    median_index = flat.size // 2
    median = float(np.partition(flat, median_index)[median_index])
    value_range = (high - low) or 1.0

    threshold = select_threshold(gray, fraction, dark_text or bright_display)

    value = gray
    if dark_text:
        value = np.where(gray < threshold, 255.0 - gray, gray)

    local_contrast = np.abs(value - median) / value_range
    factor = enhance_base + local_contrast * contrast_slope
    enhanced = (value - low) / value_range * 255.0
    enhanced = np.clip(enhanced * factor, 0.0, 255.0)
    enhanced = 255.0 * (enhanced / 255.0) ** (1.0 / 1.5)

    if dark_text or bright_display:
        binary = np.where(enhanced < threshold, 255, 0)
        binary = np.where(value < threshold * 1.2, 255, binary)
    else:
        binary = np.where(enhanced > threshold, 255, 0)
    binary = np.where(value > threshold * 1.5, 255, binary)

    logger.debug(
        "Binarize mode=%s threshold=%.1f range=%.1f-%.1f dark_text=%s bright_display=%s",
        mode,
        threshold,
        low,
        high,
        dark_text,
        bright_display,
    )
    return _from_gray(binary.astype(np.float32), buffer.alpha)


def morphological_open(buffer: PixelBuffer) -> PixelBuffer:
    """3x3 erosion then dilation on RGB interior pixels; skipped on very large images."""
    out = buffer.pixels.copy()
    if buffer.width * buffer.height > MORPHOLOGY_MAX_PIXELS:
        logger.debug("Skipping morphological open on %dx%d image", buffer.width, buffer.height)
        return PixelBuffer(out)
    if buffer.width < 3 or buffer.height < 3:
        return PixelBuffer(out)

    kernel = np.ones((3, 3), dtype=np.uint8)
    rgb = np.ascontiguousarray(buffer.pixels[:, :, :3])
    eroded = rgb.copy()
    eroded[1:-1, 1:-1] = cv2.erode(rgb, kernel)[1:-1, 1:-1]
    dilated = cv2.dilate(eroded, kernel)
    out[1:-1, 1:-1, :3] = dilated[1:-1, 1:-1]
    return PixelBuffer(out)


def contrast_stretch(buffer: PixelBuffer, gain: float = 2.0) -> PixelBuffer:
    gray = _luma(buffer)
    low = float(gray.min())
    value_range = (float(gray.max()) - low) or 1.0
    return _from_gray((gray - low) / value_range * 255.0 * gain, buffer.alpha)


def edge_detect(buffer: PixelBuffer) -> PixelBuffer:
    """Sobel gradient magnitude (x2) on interior pixels; border pixels are copied."""
    out = buffer.pixels.copy()
    if buffer.width < 3 or buffer.height < 3:
        return PixelBuffer(out)
    gray = _luma(buffer)
    grad_x = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    grad_y = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    edges = _to_uint8(np.minimum(255.0, np.sqrt(grad_x**2 + grad_y**2) * 2.0))
    interior = edges[1:-1, 1:-1]
    out[1:-1, 1:-1, :3] = interior[:, :, np.newaxis]
    return PixelBuffer(out)


def invert(buffer: PixelBuffer) -> PixelBuffer:
    return _from_gray(255.0 - _luma(buffer), buffer.alpha)


def adjust_gamma(buffer: PixelBuffer, gamma: float) -> PixelBuffer:
    """Gamma < 1 lifts highlights, gamma > 1 deepens shadows."""
    gray = _luma(buffer)
    return _from_gray(255.0 * (gray / 255.0) ** gamma, buffer.alpha)


def brighten(buffer: PixelBuffer) -> PixelBuffer:
    return adjust_gamma(buffer, 0.7)


def darken(buffer: PixelBuffer) -> PixelBuffer:
    return adjust_gamma(buffer, 1.5)
