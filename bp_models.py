from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class BloodPressureOCRError(Exception):
    """Base class for every failure surfaced by the reading pipeline."""


class InputImageError(BloodPressureOCRError, ValueError):
    """Bad, empty or oversized image payload. Never retried."""


class RecognizerUnavailable(BloodPressureOCRError, RuntimeError):
    """Recognizer not started, missing, or terminated."""


class RecognitionFailed(BloodPressureOCRError, RuntimeError):
    """A single recognizer call failed or produced no text."""


class RecognitionTimeout(RecognitionFailed):
    pass


class NoReadingFound(BloodPressureOCRError, ValueError):
    """Recognized text did not contain a plausible reading."""

    def __init__(self, text: str) -> None:
        super().__init__(f'Unable to parse a blood pressure reading from OCR text: "{text}"')
        self.text = text


class UnrecognizableReading(BloodPressureOCRError, ValueError):
    """Every preprocessing strategy was exhausted without a valid reading."""


class FormulaError(BloodPressureOCRError, ValueError):
    MISSING_FORMULA = "missing_formula"
    MISSING_THRESHOLD = "missing_threshold"
    DISALLOWED = "disallowed"
    EVALUATION = "evaluation"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


DISPLAY_CHAR_WHITELIST = (
    "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz:/|\\- "
)


@dataclass(frozen=True)
class RecognitionHints:
    """Optional engine hints; ``None`` fields are left to the engine default."""

    char_whitelist: Optional[str] = None
    page_seg_mode: Optional[int] = None
    engine_mode: Optional[int] = None

    def narrowed(self) -> Optional["RecognitionHints"]:
        """Next hint set to try after the engine rejects this one."""
        if self.page_seg_mode is not None or self.engine_mode is not None:
            if self.char_whitelist is not None:
                return RecognitionHints(char_whitelist=self.char_whitelist)
            return RecognitionHints()
        if self.char_whitelist is not None:
            return RecognitionHints()
        return None

    @property
    def is_empty(self) -> bool:
        return self.char_whitelist is None and self.page_seg_mode is None and self.engine_mode is None


DEFAULT_HINTS = RecognitionHints(
    char_whitelist=DISPLAY_CHAR_WHITELIST, page_seg_mode=6, engine_mode=1
)


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: float


@dataclass(frozen=True)
class BloodPressureReading:
    systolic: int
    diastolic: int
    pulse: Optional[int] = None

    def as_dict(self) -> dict[str, Optional[int]]:
        return {"systolic": self.systolic, "diastolic": self.diastolic, "pulse": self.pulse}


@dataclass(frozen=True)
class ScoredCandidate:
    reading: BloodPressureReading
    raw_text: str
    score: float
    strategy_id: str = ""
