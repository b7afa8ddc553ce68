from __future__ import annotations

import argparse
import csv
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from bp_models import BloodPressureOCRError, RecognizerUnavailable
from bp_ocr import build_recognizer, read_blood_pressure
from bp_ocr_gemini import DEFAULT_MODEL, GeminiRecognizer

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png"}
CSV_COLUMNS = ["image", "systolic", "diastolic", "pulse", "score", "strategy", "raw_text", "error"]

logger = logging.getLogger(__name__)


def list_images(directory: Path) -> list[Path]:
    return sorted(path for path in directory.iterdir() if path.suffix.lower() in IMAGE_SUFFIXES)


def evaluate_directory(images: Iterable[Path], recognizer, output: Path) -> tuple[int, int]:
    """Write one CSV row per image; returns ``(read, failed)`` counts."""
    read = failed = 0
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_COLUMNS)
        for image in images:
            try:
                candidate = read_blood_pressure(image, recognizer)
            except RecognizerUnavailable:
                raise
            except BloodPressureOCRError as exc:
                failed += 1
                logger.warning("%s: %s", image.name, exc)
                writer.writerow([image.name, "", "", "", "", "", "", str(exc)])
                continue

            read += 1
            reading = candidate.reading
            writer.writerow(
                [
                    image.name,
                    reading.systolic,
                    reading.diastolic,
                    "" if reading.pulse is None else reading.pulse,
                    candidate.score,
                    candidate.strategy_id,
                    candidate.raw_text.replace("\n", " "),
                    "",
                ]
            )
            print(f"{image.name}: {reading.systolic}/{reading.diastolic} pulse={reading.pulse}")
    return read, failed


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run blood pressure OCR over tests_photos.")
    parser.add_argument(
        "--tests-dir",
        type=Path,
        default=Path("tests_photos"),
        help="Directory containing test photos.",
    )
    parser.add_argument("--engine", choices=("local", "gemini"), default="local")
    parser.add_argument("--api-key", default=os.getenv("GEMINI_API_KEY"))
    parser.add_argument("--model", default=DEFAULT_MODEL)
    parser.add_argument("--output", type=Path, default=Path("data/bp_ocr_results.csv"))
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.tests_dir.is_dir():
        raise SystemExit(f"Not a directory: {args.tests_dir}")
    images = list_images(args.tests_dir)
    if not images:
        raise SystemExit(f"No images found in {args.tests_dir}")

    try:
        recognizer = build_recognizer(args.engine, args.api_key, args.model)
        read, failed = evaluate_directory(images, recognizer, args.output)
    except RecognizerUnavailable as exc:
        raise SystemExit(f"error: {exc}") from exc

    if isinstance(recognizer, GeminiRecognizer):
        print(f"Estimated cost: ${recognizer.total_cost_usd:.6f}")
    print(f"Read {read}/{read + failed} images. Saved results to {args.output}")


if __name__ == "__main__":
    main()
