from __future__ import annotations

import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from bp_image import PixelBuffer
from bp_models import (
    RecognitionFailed,
    RecognitionHints,
    RecognitionResult,
    RecognitionTimeout,
    RecognizerUnavailable,
)

try:
    import pytesseract
except Exception:
    pytesseract = None  # Surfaced as RecognizerUnavailable on start().

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognizerConfig:
    language: str = "eng"
    timeout_s: float = 90.0
    tesseract_cmd: Optional[str] = None

    def __post_init__(self) -> None:
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if not self.language:
            raise ValueError("language must not be empty")

    @classmethod
    def from_env(cls) -> "RecognizerConfig":
        timeout = os.getenv("BP_OCR_TIMEOUT_S")
        return cls(
            language=os.getenv("BP_OCR_LANGUAGE") or "eng",
            timeout_s=float(timeout) if timeout else 90.0,
            tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
        )


class Recognizer(ABC):
    """Narrow contract to an external text-recognition engine.

    Implementations are serially reusable: callers must not invoke
    ``recognize`` concurrently on the same instance.
    """

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def recognize(
        self,
        image: PixelBuffer,
        hints: Optional[RecognitionHints] = None,
        timeout_s: Optional[float] = None,
    ) -> RecognitionResult:
        raise NotImplementedError


def build_tesseract_config(hints: Optional[RecognitionHints]) -> str:
    if hints is None or hints.is_empty:
        return ""
    parts: list[str] = []
    if hints.engine_mode is not None:
        parts.append(f"--oem {hints.engine_mode}")
    if hints.page_seg_mode is not None:
        parts.append(f"--psm {hints.page_seg_mode}")
    if hints.char_whitelist:
        parts.append("-c " + shlex.quote(f"tessedit_char_whitelist={hints.char_whitelist}"))
    return " ".join(parts)


def _assemble_text(data: dict) -> tuple[str, float]:
    """Rebuild line-ordered text and the mean word confidence from ``image_to_data`` output."""
    lines: dict[tuple[int, int, int, int], list[str]] = {}
    confidences: list[float] = []
    for index, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        if not word:
            continue
        key = (
            int(data["page_num"][index]),
            int(data["block_num"][index]),
            int(data["par_num"][index]),
            int(data["line_num"][index]),
        )
        lines.setdefault(key, []).append(word)
        try:
            conf = float(data["conf"][index])
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confidences.append(conf)

    text = "\n".join(" ".join(lines[key]) for key in sorted(lines))
    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return text, max(0.0, min(100.0, confidence))


def _is_timeout(exc: RuntimeError) -> bool:
    # pytesseract signals a killed process with a bare RuntimeError.
    return "timeout" in str(exc).lower()


class TesseractRecognizer(Recognizer):
    def __init__(self, config: Optional[RecognizerConfig] = None) -> None:
        self.config = config or RecognizerConfig()
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    def start(self) -> None:
        if pytesseract is None:
            raise RecognizerUnavailable(
                "pytesseract is not installed. Install it with `pip install pytesseract`."
            )
        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd
        try:
            version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as exc:
            raise RecognizerUnavailable("tesseract binary not found on PATH") from exc
        logger.info("Tesseract %s ready (language=%s)", version, self.config.language)
        self._ready = True

    def _run(self, image, hints: Optional[RecognitionHints], timeout_s: float) -> dict:
        return pytesseract.image_to_data(
            image,
            lang=self.config.language,
            config=build_tesseract_config(hints),
            output_type=pytesseract.Output.DICT,
            timeout=timeout_s,
        )

    def recognize(
        self,
        image: PixelBuffer,
        hints: Optional[RecognitionHints] = None,
        timeout_s: Optional[float] = None,
    ) -> RecognitionResult:
        if not self._ready:
            raise RecognizerUnavailable("OCR engine has not been started")

        timeout = timeout_s or self.config.timeout_s
        pil_image = image.to_pil().convert("RGB")
        attempt: Optional[RecognitionHints] = hints
        errors: list[str] = []
        while True:
            try:
                data = self._run(pil_image, attempt, timeout)
                break
            except pytesseract.TesseractNotFoundError as exc:
                self._ready = False
                raise RecognizerUnavailable("tesseract binary disappeared") from exc
            except pytesseract.TesseractError as exc:
                errors.append(f"{build_tesseract_config(attempt) or '<no hints>'}: {exc}")
                narrower = attempt.narrowed() if attempt is not None else None
                if narrower is None:
                    raise RecognitionFailed(
                        "Recognizer rejected every hint set: " + " | ".join(errors)
                    ) from exc
                logger.warning("Engine rejected hints (%s); retrying with fewer hints", exc)
                attempt = narrower
            except RuntimeError as exc:
                if _is_timeout(exc):
                    raise RecognitionTimeout(
                        f"OCR recognition exceeded {timeout:.0f} s"
                    ) from exc
                raise RecognitionFailed(str(exc)) from exc

        text, confidence = _assemble_text(data)
        if not text.strip():
            raise RecognitionFailed("OCR produced no text")
        logger.debug("Recognized %r (confidence=%.1f)", text, confidence)
        return RecognitionResult(text=text, confidence=confidence)
