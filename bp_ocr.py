"""Read a blood pressure monitor display from a photo.

Every strategy starts from the source image. The three baseline recipes
always run and the best-scoring reading among them wins. Only when none of
them parses do the fallback recipes run, in catalog order, until the first
one parses. If even that fails, a handful of recipes are recognized once
more and their texts are parsed together.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import asdict
from functools import reduce
from typing import Iterable, Iterator, Optional, Sequence

from bp_image import PixelBuffer
from bp_models import (
    BloodPressureOCRError,
    NoReadingFound,
    RecognitionFailed,
    RecognitionTimeout,
    RecognizerUnavailable,
    ScoredCandidate,
    UnrecognizableReading,
)
from bp_ocr_gemini import DEFAULT_MODEL, GeminiRecognizer
from bp_parser import parse_reading
from bp_recognizer import Recognizer, RecognizerConfig, TesseractRecognizer
from bp_scoring import make_candidate
from bp_strategies import LAST_RESORT_STRATEGIES, STRATEGY_CATALOG, StrategyDescriptor
from bp_threshold import assess_reading

logger = logging.getLogger(__name__)

COMBINED_STRATEGY_ID = "combined"


def _recognize_text(
    image: PixelBuffer, strategy: StrategyDescriptor, recognizer: Recognizer
) -> Optional[str]:
    prepared = strategy.prepare(image)
    logger.debug("Strategy %s prepared %dx%d image", strategy.id, *prepared.size)
    try:
        result = recognizer.recognize(
            prepared, strategy.recognition_hints, timeout_s=strategy.timeout_s
        )
    except RecognitionTimeout as exc:
        logger.warning("Strategy %s timed out: %s", strategy.id, exc)
        return None
    except RecognitionFailed as exc:
        logger.warning("Strategy %s recognition failed: %s", strategy.id, exc)
        return None
    logger.debug("Strategy %s text %r (confidence=%.1f)", strategy.id, result.text, result.confidence)
    return result.text


def _attempt(
    image: PixelBuffer,
    strategy: StrategyDescriptor,
    recognizer: Recognizer,
    required: bool,
) -> Optional[ScoredCandidate]:
    logger.info("Running strategy %s", strategy.id)
    text = _recognize_text(image, strategy, recognizer)
    if text is None:
        return None
    try:
        reading = parse_reading(text, required=required)
    except NoReadingFound as exc:
        logger.warning("Strategy %s: %s", strategy.id, exc)
        return None
    if reading is None:
        logger.info("Strategy %s produced no reading", strategy.id)
        return None

    candidate = make_candidate(reading, text, strategy.id)
    logger.info(
        "Strategy %s read %d/%d pulse=%s (score=%d)",
        strategy.id,
        reading.systolic,
        reading.diastolic,
        reading.pulse,
        candidate.score,
    )
    return candidate


def _keep_better(
    best: Optional[ScoredCandidate], candidate: Optional[ScoredCandidate]
) -> Optional[ScoredCandidate]:
    if candidate is None:
        return best
    if best is None or candidate.score > best.score:
        return candidate
    return best


def _combined_attempt(
    image: PixelBuffer,
    strategies: Iterable[StrategyDescriptor],
    recognizer: Recognizer,
) -> Optional[ScoredCandidate]:
    texts = [
        text
        for text in (_recognize_text(image, strategy, recognizer) for strategy in strategies)
        if text
    ]
    if not texts:
        return None
    combined = " ".join(texts)
    reading = parse_reading(combined, required=False)
    if reading is None:
        return None
    return make_candidate(reading, combined, COMBINED_STRATEGY_ID)


def recognize_reading(
    image: PixelBuffer,
    recognizer: Recognizer,
    strategies: Sequence[StrategyDescriptor] = STRATEGY_CATALOG,
    last_resort: Sequence[StrategyDescriptor] = LAST_RESORT_STRATEGIES,
) -> ScoredCandidate:
    """Search the strategy catalog for a validated reading.

    Raises ``RecognizerUnavailable`` if the recognizer is not started (or dies
    mid-run) and ``UnrecognizableReading`` once every strategy is exhausted.
    """
    if not recognizer.is_ready:
        raise RecognizerUnavailable("Recognizer must be started before reading an image")

    baseline = [strategy for strategy in strategies if strategy.baseline]
    fallbacks = [strategy for strategy in strategies if not strategy.baseline]

    best = reduce(
        _keep_better,
        (_attempt(image, strategy, recognizer, required=True) for strategy in baseline),
        None,
    )
    if best is not None:
        logger.info("Baseline winner %s (score=%d)", best.strategy_id, best.score)
        return best

    logger.info("No baseline strategy produced a reading; trying %d fallbacks", len(fallbacks))
    attempts: Iterator[Optional[ScoredCandidate]] = (
        _attempt(image, strategy, recognizer, required=False) for strategy in fallbacks
    )
    found = next((candidate for candidate in attempts if candidate is not None), None)
    if found is not None:
        logger.info("Fallback winner %s (score=%d)", found.strategy_id, found.score)
        return found

    logger.info("Every strategy failed; parsing combined text of %d recipes", len(last_resort))
    found = _combined_attempt(image, last_resort, recognizer)
    if found is not None:
        logger.info("Combined text yielded a reading (score=%d)", found.score)
        return found

    raise UnrecognizableReading(
        f"No preprocessing strategy produced a valid reading ({len(strategies)} tried)"
    )


def read_blood_pressure(
    image_path: str | os.PathLike, recognizer: Optional[Recognizer] = None
) -> ScoredCandidate:
    image = PixelBuffer.from_file(image_path)
    logger.info("Loaded %s (%dx%d)", image_path, image.width, image.height)
    if recognizer is None:
        recognizer = TesseractRecognizer(RecognizerConfig.from_env())
        recognizer.start()
    return recognize_reading(image, recognizer)


def build_recognizer(engine: str, api_key: Optional[str], model: str) -> Recognizer:
    if engine == "gemini":
        recognizer: Recognizer = GeminiRecognizer(api_key=api_key, model=model)
    else:
        recognizer = TesseractRecognizer(RecognizerConfig.from_env())
    recognizer.start()
    return recognizer


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Read blood pressure from a monitor photo.")
    parser.add_argument("--image", required=True, help="Path to image to read.")
    parser.add_argument("--engine", choices=("local", "gemini"), default="local")
    parser.add_argument("--api-key", default=os.getenv("GEMINI_API_KEY"))
    parser.add_argument("--model", default=DEFAULT_MODEL)
    parser.add_argument("--formula", default=os.getenv("BP_THRESHOLD_FORMULA"))
    parser.add_argument("--threshold", default=os.getenv("BP_THRESHOLD_VALUE"))
    parser.add_argument("--json", action="store_true", help="Print the result as JSON.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        recognizer = build_recognizer(args.engine, args.api_key, args.model)
        candidate = read_blood_pressure(args.image, recognizer)
        assessment = None
        if args.formula or args.threshold:
            assessment = assess_reading(candidate.reading, args.formula, args.threshold)
    except BloodPressureOCRError as exc:
        raise SystemExit(f"error: {exc}") from exc

    if isinstance(recognizer, GeminiRecognizer):
        logger.info("Estimated Gemini cost: $%.6f", recognizer.total_cost_usd)

    reading = candidate.reading
    if args.json:
        payload = dict(reading.as_dict())
        payload.update(
            score=candidate.score,
            strategy=candidate.strategy_id,
            raw_text=candidate.raw_text,
            assessment=asdict(assessment) if assessment is not None else None,
        )
        print(json.dumps(payload, ensure_ascii=False))
        return 0

    print(f"systolic={reading.systolic} diastolic={reading.diastolic} pulse={reading.pulse}")
    print(f"score={candidate.score} strategy={candidate.strategy_id}")
    if assessment is not None:
        status = "normal" if assessment.is_normal else "abnormal"
        print(
            f"assessment={status} (formula={assessment.formula_result:.2f}, "
            f"difference={assessment.difference:.2f}, threshold={assessment.threshold:g})"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
