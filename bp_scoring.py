from __future__ import annotations

import re
from typing import Optional

from bp_models import BloodPressureReading, ScoredCandidate

BASE_SCORE = 100

SYSTOLIC_RANGE = (80, 200)
DIASTOLIC_RANGE = (50, 130)
DIFFERENCE_RANGE = (20, 80)
PULSE_RANGE = (40, 150)

_LABEL_RE = re.compile(r"SYS|DIA|mmHg", re.IGNORECASE)
_SLASH_PAIR_RE = re.compile(r"\d{2,3}\s*/\s*\d{2,3}")


def _outside(value: int, bounds: tuple[int, int]) -> bool:
    return not bounds[0] <= value <= bounds[1]


def score_candidate(reading: Optional[BloodPressureReading], raw_text: str) -> int:
    """Heuristic quality of a parsed reading given the text it came from.

    Unclamped; only meaningful relative to other candidates of the same run.
    """
    if reading is None:
        return 0

    score = BASE_SCORE
    if _outside(reading.systolic, SYSTOLIC_RANGE):
        score -= 30
    if _outside(reading.diastolic, DIASTOLIC_RANGE):
        score -= 30
    if reading.systolic <= reading.diastolic:
        score -= 20
    if _outside(reading.systolic - reading.diastolic, DIFFERENCE_RANGE):
        score -= 10

    text = raw_text or ""
    if _LABEL_RE.search(text):
        score += 20
    if _SLASH_PAIR_RE.search(text):
        score += 15
    if reading.pulse is not None and not _outside(reading.pulse, PULSE_RANGE):
        score += 10
    return score


def make_candidate(
    reading: BloodPressureReading, raw_text: str, strategy_id: str = ""
) -> ScoredCandidate:
    return ScoredCandidate(
        reading=reading,
        raw_text=raw_text,
        score=score_candidate(reading, raw_text),
        strategy_id=strategy_id,
    )
