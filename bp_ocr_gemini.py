from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from bp_image import PixelBuffer
from bp_models import (
    RecognitionFailed,
    RecognitionHints,
    RecognitionResult,
    RecognitionTimeout,
    RecognizerUnavailable,
)
from bp_recognizer import Recognizer

try:
    import google.generativeai as genai
    from google.api_core import exceptions as google_exceptions
except Exception as exc:  # pragma: no cover - optional dependency
    genai = None
    google_exceptions = None
    _GENAI_IMPORT_ERROR = exc
else:
    _GENAI_IMPORT_ERROR = None

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_INPUT_PRICE_PER_MILLION = 0.35
DEFAULT_OUTPUT_PRICE_PER_MILLION = 1.05

_PROMPT = (
    "You are transcribing the screen of a digital blood pressure monitor. "
    "Copy every character shown on the display exactly as printed, keeping labels "
    "such as SYS, DIA, PULSE and mmHg, one display row per line. Do not interpret "
    "or correct the numbers. Return JSON only with keys: text (string) and "
    "confidence (0-100, how legible the display is)."
)


def _extract_json(text: str) -> Optional[dict[str, Any]]:
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        return payload

    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def _parse_confidence(value: Any) -> float:
    if isinstance(value, (int, float)):
        return max(0.0, min(100.0, float(value)))
    if isinstance(value, str):
        match = re.search(r"\d+(?:\.\d+)?", value)
        if match:
            return max(0.0, min(100.0, float(match.group(0))))
    return 0.0


def _usage_token_count(usage: Any, field: str) -> Optional[int]:
    if usage is None:
        return None
    if isinstance(usage, dict):
        value = usage.get(field)
    else:
        value = getattr(usage, field, None)
    return int(value) if value is not None else None


def _estimate_cost(
    prompt_tokens: Optional[int],
    output_tokens: Optional[int],
    input_price_per_million: float,
    output_price_per_million: float,
) -> Optional[float]:
    if prompt_tokens is None or output_tokens is None:
        return None
    cost = (prompt_tokens / 1_000_000) * input_price_per_million
    cost += (output_tokens / 1_000_000) * output_price_per_million
    return cost


def _prompt_for(hints: Optional[RecognitionHints]) -> str:
    if hints is None or not hints.char_whitelist:
        return _PROMPT
    return _PROMPT + f' Only these characters can appear: "{hints.char_whitelist}".'


class GeminiRecognizer(Recognizer):
    """Recognizer backed by a Gemini vision model.

    Page segmentation and engine mode hints have no equivalent here; only the
    character whitelist is forwarded, as part of the prompt.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        input_price_per_million: float = DEFAULT_INPUT_PRICE_PER_MILLION,
        output_price_per_million: float = DEFAULT_OUTPUT_PRICE_PER_MILLION,
        timeout_s: float = 90.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.input_price_per_million = input_price_per_million
        self.output_price_per_million = output_price_per_million
        self.timeout_s = timeout_s
        self.total_cost_usd = 0.0
        self._model_instance = None

    @property
    def is_ready(self) -> bool:
        return self._model_instance is not None

    def start(self) -> None:
        if genai is None:
            raise RecognizerUnavailable(
                "google-generativeai is not installed. "
                "Install it with `pip install google-generativeai`."
            ) from _GENAI_IMPORT_ERROR
        if not self.api_key:
            raise RecognizerUnavailable("Missing API key. Set GEMINI_API_KEY or pass --api-key.")
        genai.configure(api_key=self.api_key)
        self._model_instance = genai.GenerativeModel(self.model)
        logger.info("Gemini recognizer ready (model=%s)", self.model)

    def recognize(
        self,
        image: PixelBuffer,
        hints: Optional[RecognitionHints] = None,
        timeout_s: Optional[float] = None,
    ) -> RecognitionResult:
        if self._model_instance is None:
            raise RecognizerUnavailable("Gemini recognizer has not been started")

        timeout = timeout_s or self.timeout_s
        try:
            response = self._model_instance.generate_content(
                [_prompt_for(hints), image.to_pil().convert("RGB")],
                generation_config=genai.types.GenerationConfig(
                    temperature=0,
                    max_output_tokens=200,
                    response_mime_type="application/json",
                ),
                request_options={"timeout": timeout},
            )
        except google_exceptions.DeadlineExceeded as exc:
            raise RecognitionTimeout(f"Gemini OCR exceeded {timeout:.0f} s") from exc
        except google_exceptions.GoogleAPIError as exc:
            raise RecognitionFailed(f"Gemini OCR request failed: {exc}") from exc
        except TimeoutError as exc:
            raise RecognitionTimeout(f"Gemini OCR exceeded {timeout:.0f} s") from exc
        except OSError as exc:
            # Transport errors the client does not wrap, e.g. a dropped connection.
            raise RecognitionFailed(f"Gemini OCR transport error: {exc}") from exc

        try:
            raw_text = response.text or ""
        except ValueError as exc:
            # Raised by the client when the candidate was blocked or empty.
            raise RecognitionFailed(f"Gemini OCR returned no text: {exc}") from exc

        usage = getattr(response, "usage_metadata", None)
        cost = _estimate_cost(
            _usage_token_count(usage, "prompt_token_count"),
            _usage_token_count(usage, "candidates_token_count"),
            self.input_price_per_million,
            self.output_price_per_million,
        )
        if cost is not None:
            self.total_cost_usd += cost

        payload = _extract_json(raw_text)
        if payload is None:
            text, confidence = raw_text, 0.0
        else:
            text = str(payload.get("text") or "")
            confidence = _parse_confidence(payload.get("confidence"))

        if not text.strip():
            raise RecognitionFailed("Gemini OCR produced no text")
        logger.debug("Gemini recognized %r (confidence=%.1f, cost=%s)", text, confidence, cost)
        return RecognitionResult(text=text, confidence=confidence)
