"""PixelBuffer: the RGBA image value shared by transforms and recognizers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image

from bp_models import InputImageError

MAX_IMAGE_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """Read-only ``(height, width, 4)`` uint8 array in RGBA order."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        pixels = self.pixels
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"PixelBuffer expects shape (h, w, 4), got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"PixelBuffer expects uint8 samples, got {pixels.dtype}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("PixelBuffer cannot be empty")
        pixels.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    @classmethod
    def from_rgba(cls, rgba: np.ndarray) -> "PixelBuffer":
        return cls(np.array(rgba, dtype=np.uint8, copy=True))

    @classmethod
    def from_cv2(cls, image: np.ndarray) -> "PixelBuffer":
        if image.dtype == np.uint16:
            image = (image >> 8).astype(np.uint8)
        elif image.dtype != np.uint8:
            raise InputImageError(f"Unsupported sample type: {image.dtype}")
        if image.ndim == 2:
            rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        elif image.shape[2] == 3:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        elif image.shape[2] == 4:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        else:
            raise InputImageError(f"Unsupported channel count: {image.shape[2]}")
        return cls(rgba)

    @classmethod
    def from_bytes(cls, payload: bytes) -> "PixelBuffer":
        if not payload:
            raise InputImageError("Image payload is empty")
        if len(payload) > MAX_IMAGE_BYTES:
            raise InputImageError(
                f"Image payload is {len(payload) / 1024 / 1024:.1f} MB; "
                f"the limit is {MAX_IMAGE_BYTES // (1024 * 1024)} MB"
            )
        encoded = np.frombuffer(payload, dtype=np.uint8)
        # IMREAD_COLOR applies the EXIF orientation tag and yields 8-bit BGR.
        image = cv2.imdecode(encoded, cv2.IMREAD_COLOR)
        if image is None:
            raise InputImageError("Payload is not a decodable image")
        return cls.from_cv2(image)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PixelBuffer":
        path = Path(path)
        if not path.is_file():
            raise InputImageError(f"Unable to read image at {path}")
        return cls.from_bytes(path.read_bytes())

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.pixels))

