from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np

from bp_image import PixelBuffer
from bp_models import RecognitionHints, RecognitionResult
from bp_recognizer import Recognizer


class ScriptedRecognizer(Recognizer):
    """Returns canned texts (or raises canned errors) in call order."""

    def __init__(self, script: Sequence[Union[str, Exception]], ready: bool = True) -> None:
        self.script = list(script)
        self.calls: list[tuple[Optional[RecognitionHints], Optional[float]]] = []
        self._ready = ready

    @property
    def is_ready(self) -> bool:
        return self._ready

    def start(self) -> None:
        self._ready = True

    def recognize(self, image, hints=None, timeout_s=None) -> RecognitionResult:
        assert isinstance(image, PixelBuffer)
        self.calls.append((hints, timeout_s))
        step = self.script.pop(0) if self.script else ""
        if isinstance(step, Exception):
            raise step
        return RecognitionResult(text=step, confidence=90.0)


def solid_image(width: int, height: int, value: int = 128) -> PixelBuffer:
    pixels = np.full((height, width, 4), value, dtype=np.uint8)
    pixels[:, :, 3] = 255
    return PixelBuffer(pixels)


def random_image(width: int, height: int, seed: int = 0) -> PixelBuffer:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    pixels[:, :, 3] = 255
    return PixelBuffer(pixels)
