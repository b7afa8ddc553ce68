"""Turn loosely structured OCR text into a systolic/diastolic/pulse reading.

Methods are tried in a fixed order and the first one that yields a reading
wins; later methods are never consulted, even if they might rank higher.
Ranking across different OCR texts is the scorer's job, not the parser's.
"""

from __future__ import annotations

import itertools
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple

from bp_models import BloodPressureReading, NoReadingFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidityBand:
    systolic_min: int
    systolic_max: int
    diastolic_min: int
    diastolic_max: int
    min_difference: int
    max_difference: int

    def accepts(self, systolic: int, diastolic: int) -> bool:
        difference = systolic - diastolic
        return (
            self.systolic_min <= systolic <= self.systolic_max
            and self.diastolic_min <= diastolic <= self.diastolic_max
            and systolic > diastolic
            and self.min_difference <= difference <= self.max_difference
        )


STRICT_BAND = ValidityBand(80, 200, 50, 130, 20, 80)
LOOSE_BAND = ValidityBand(70, 250, 40, 150, 10, 100)

PULSE_RANGE = (40, 150)
TYPICAL_PULSE_RANGE = (60, 100)


def is_valid_blood_pressure(
    systolic: int, diastolic: int, band: ValidityBand = LOOSE_BAND
) -> bool:
    return band.accepts(systolic, diastolic)


_NUMBER_RE = re.compile(r"\d+")

# Labels as printed plus the usual misreadings (S->5, I->1, spaced letters).
_SYSTOLIC_PATTERNS = [
    re.compile(r"SYS[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"5Y5[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"SY5[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"S\s*Y\s*S[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"S\s*Y\s*5[:\s=]*(\d{2,3})", re.IGNORECASE),
]
_DIASTOLIC_PATTERNS = [
    re.compile(r"DIA[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"D1A[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"D\s*I\s*A[:\s=]*(\d{2,3})", re.IGNORECASE),
    re.compile(r"D\s*1\s*A[:\s=]*(\d{2,3})", re.IGNORECASE),
]
_PULSE_PATTERNS = [
    re.compile(r"PULSE[:\s=]*(\d+)", re.IGNORECASE),
    re.compile(r"PUL5E[:\s=]*(\d+)", re.IGNORECASE),
    re.compile(r"P\s*U\s*L\s*S\s*E[:\s=]*(\d+)", re.IGNORECASE),
    re.compile(r"P[:\s=]*(\d+)", re.IGNORECASE),
    re.compile(r"BPM[:\s=]*(\d+)", re.IGNORECASE),
    re.compile(r"/\s*min[:\s=]*(\d+)", re.IGNORECASE),
]
# "/" is often read as "|", "\", "I", "l" or "1"; some displays print no separator.
_SEPARATOR_PATTERNS = [
    re.compile(r"(\d{2,3})\s*/\s*(\d{2,3})"),
    re.compile(r"(\d{2,3})\s*[|\\]\s*(\d{2,3})"),
    re.compile(r"(\d{2,3})\s*[Il1]\s*(\d{2,3})"),
    re.compile(r"(\d{2,3})\s+(\d{2,3})"),
    re.compile(r"(\d{2,3})\s*:\s*(\d{2,3})"),
]


def _numbers(text: str) -> list[int]:
    return [int(token) for token in _NUMBER_RE.findall(text)]


def _first_labelled_value(patterns: Iterable[re.Pattern], text: str) -> Optional[int]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def _in_range(value: int, bounds: Tuple[int, int]) -> bool:
    return bounds[0] <= value <= bounds[1]


def extract_pulse(text: str, exclude: Sequence[int] = ()) -> Optional[int]:
    """Find the pulse by keyword, else the most pulse-like leftover number.

    ``exclude`` removes one occurrence per value from the fallback scan so the
    systolic and diastolic numbers are never reported as the pulse.
    """
    for pattern in _PULSE_PATTERNS:
        match = pattern.search(text)
        if match:
            pulse = int(match.group(1))
            if _in_range(pulse, PULSE_RANGE):
                return pulse

    remaining = _numbers(text)
    for value in exclude:
        if value in remaining:
            remaining.remove(value)
    candidates = [value for value in remaining if _in_range(value, PULSE_RANGE)]
    if not candidates:
        return None
    typical = [value for value in candidates if _in_range(value, TYPICAL_PULSE_RANGE)]
    return typical[0] if typical else candidates[0]


def _reading(text: str, systolic: int, diastolic: int) -> BloodPressureReading:
    return BloodPressureReading(
        systolic=systolic,
        diastolic=diastolic,
        pulse=extract_pulse(text, exclude=(systolic, diastolic)),
    )


def _two_largest(values: Iterable[int]) -> Optional[Tuple[int, int]]:
    ranked = sorted(values, reverse=True)
    if len(ranked) < 2:
        return None
    return ranked[0], ranked[1]


def parse_keyword_pair(text: str) -> Optional[BloodPressureReading]:
    systolic = _first_labelled_value(_SYSTOLIC_PATTERNS, text)
    diastolic = _first_labelled_value(_DIASTOLIC_PATTERNS, text)
    if systolic is None or diastolic is None:
        return None
    if not STRICT_BAND.accepts(systolic, diastolic):
        return None
    return _reading(text, systolic, diastolic)


def parse_partial_keyword(text: str) -> Optional[BloodPressureReading]:
    """One label matched: infer its partner from the nearest plausible number."""
    systolic = _first_labelled_value(_SYSTOLIC_PATTERNS, text)
    diastolic = _first_labelled_value(_DIASTOLIC_PATTERNS, text)
    if (systolic is None) == (diastolic is None):
        return None

    candidates = [value for value in _numbers(text) if 50 <= value <= 200]
    if len(candidates) < 2:
        return None

    if systolic is not None:
        partners = sorted(
            (value for value in candidates if value < systolic),
            key=lambda value: systolic - value,
        )
        for value in partners:
            if STRICT_BAND.accepts(systolic, value):
                return _reading(text, systolic, value)
    else:
        partners = sorted(
            (value for value in candidates if value > diastolic),
            key=lambda value: value - diastolic,
        )
        for value in partners:
            if STRICT_BAND.accepts(value, diastolic):
                return _reading(text, value, diastolic)
    return None


def parse_separator_pair(text: str) -> Optional[BloodPressureReading]:
    for pattern in _SEPARATOR_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        systolic, diastolic = int(match.group(1)), int(match.group(2))
        if systolic <= diastolic:
            systolic, diastolic = diastolic, systolic
        if STRICT_BAND.accepts(systolic, diastolic):
            return _reading(text, systolic, diastolic)
    return None


def parse_ranked_numbers(text: str) -> Optional[BloodPressureReading]:
    numbers = _numbers(text)
    if len(numbers) < 2:
        return None

    pair = _two_largest(value for value in numbers if 50 <= value <= 200)
    if pair is not None and STRICT_BAND.accepts(*pair):
        return _reading(text, *pair)

    pair = _two_largest(value for value in numbers if 40 <= value <= 250)
    if pair is not None:
        systolic, diastolic = pair
        if 60 <= systolic <= 250 and 30 <= diastolic <= 150 and systolic > diastolic:
            return _reading(text, systolic, diastolic)
    return None


def parse_pairwise_scan(text: str) -> Optional[BloodPressureReading]:
    numbers = _numbers(text)
    if len(numbers) < 3:
        return None

    for first, second in itertools.combinations(range(len(numbers)), 2):
        systolic = max(numbers[first], numbers[second])
        diastolic = min(numbers[first], numbers[second])
        if not LOOSE_BAND.accepts(systolic, diastolic):
            continue
        pulse = next(
            (
                value
                for index, value in enumerate(numbers)
                if index not in (first, second) and _in_range(value, PULSE_RANGE)
            ),
            None,
        )
        if pulse is None:
            pulse = extract_pulse(text, exclude=(systolic, diastolic))
        return BloodPressureReading(systolic=systolic, diastolic=diastolic, pulse=pulse)
    return None


def parse_extreme_tolerance(text: str) -> Optional[BloodPressureReading]:
    numbers = _numbers(text)
    if len(numbers) < 2:
        return None
    pair = _two_largest(value for value in numbers if 20 <= value <= 300)
    if pair is None:
        return None
    systolic, diastolic = pair
    if 50 <= systolic <= 300 and 20 <= diastolic <= 200 and systolic - diastolic >= 5:
        return _reading(text, systolic, diastolic)
    return None


def merge_split_digits(numbers: Sequence[int]) -> list[int]:
    """Rejoin numbers the recognizer split in two, e.g. ``13 8`` -> ``138``."""
    merged: list[int] = []
    index = 0
    while index < len(numbers):
        value = numbers[index]
        if value < 100 and index + 1 < len(numbers) and numbers[index + 1] < 10:
            joined = value * 10 + numbers[index + 1]
            if 50 <= joined <= 200:
                merged.append(joined)
                index += 2
                continue
        merged.append(value)
        index += 1
    return merged


def parse_merged_digits(text: str) -> Optional[BloodPressureReading]:
    numbers = _numbers(text)
    if len(numbers) < 2:
        return None
    pair = _two_largest(value for value in merge_split_digits(numbers) if 50 <= value <= 200)
    if pair is not None and STRICT_BAND.accepts(*pair):
        return _reading(text, *pair)
    return None


PARSE_METHODS: Tuple[Tuple[str, Callable[[str], Optional[BloodPressureReading]]], ...] = (
    ("keyword_pair", parse_keyword_pair),
    ("partial_keyword", parse_partial_keyword),
    ("separator_pair", parse_separator_pair),
    ("ranked_numbers", parse_ranked_numbers),
    ("pairwise_scan", parse_pairwise_scan),
    ("extreme_tolerance", parse_extreme_tolerance),
    ("merged_digits", parse_merged_digits),
)


def parse_reading(text: Optional[str], required: bool = True) -> Optional[BloodPressureReading]:
    """Run the method cascade; raise ``NoReadingFound`` or return ``None`` on failure."""
    cleaned = (text or "").strip()
    if cleaned:
        for name, method in PARSE_METHODS:
            reading = method(cleaned)
            if reading is not None:
                logger.debug("Parsed %s via %s", reading, name)
                return reading

    if required:
        raise NoReadingFound(cleaned)
    return None
