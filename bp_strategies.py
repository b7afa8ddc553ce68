"""Preprocessing recipes and the static, ordered strategy catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Tuple

import bp_transforms as tf
from bp_image import PixelBuffer
from bp_models import DEFAULT_HINTS, DISPLAY_CHAR_WHITELIST, RecognitionHints

BINARIZE_TARGET = 3000
GRAYSCALE_TARGET = 3000
CONTRAST_ONLY_TARGET = 2500
MINIMAL_TARGET = 2000

DEFAULT_TIMEOUT_S = 90.0
SWEEP_TIMEOUT_S = 60.0
SWEEP_PAGE_SEG_MODES = (6, 7, 8, 11, 12)


class PreprocessingMode(str, Enum):
    BINARIZE_AGGRESSIVE = "binarize_aggressive"
    BINARIZE_STANDARD = "binarize_standard"
    BINARIZE_CONSERVATIVE = "binarize_conservative"
    DOUBLE_SHARPEN = "double_sharpen"
    GRAYSCALE = "grayscale"
    GRAYSCALE_CONTRAST = "grayscale_contrast"
    MINIMAL = "minimal"
    CONTRAST_ONLY = "contrast_only"
    RAW = "raw"
    INVERT = "invert"
    BRIGHTEN = "brighten"
    DARKEN = "darken"
    EDGES = "edges"
    GRAYSCALE_INVERT = "grayscale_invert"
    GRAYSCALE_BRIGHTEN = "grayscale_brighten"
    GRAYSCALE_DARKEN = "grayscale_darken"


def _binarized(mode: str) -> Callable[[PixelBuffer], PixelBuffer]:
    def recipe(image: PixelBuffer) -> PixelBuffer:
        image = tf.upscale_to_target(image, BINARIZE_TARGET)
        image = tf.grayscale(image)
        image = tf.sharpen(image)
        image = tf.binarize_enhance(image, mode)
        return tf.morphological_open(image)

    return recipe


def _grayscale(image: PixelBuffer) -> PixelBuffer:
    return tf.grayscale(tf.upscale_to_target(image, GRAYSCALE_TARGET))


def _upscaled(step: Callable[[PixelBuffer], PixelBuffer]) -> Callable[[PixelBuffer], PixelBuffer]:
    def recipe(image: PixelBuffer) -> PixelBuffer:
        return step(tf.upscale_to_target(image, GRAYSCALE_TARGET))

    return recipe


def _after_grayscale(
    step: Callable[[PixelBuffer], PixelBuffer]
) -> Callable[[PixelBuffer], PixelBuffer]:
    def recipe(image: PixelBuffer) -> PixelBuffer:
        return step(_grayscale(image))

    return recipe


RECIPES: dict[PreprocessingMode, Callable[[PixelBuffer], PixelBuffer]] = {
    PreprocessingMode.BINARIZE_AGGRESSIVE: _binarized("aggressive"),
    PreprocessingMode.BINARIZE_STANDARD: _binarized("standard"),
    PreprocessingMode.BINARIZE_CONSERVATIVE: _binarized("conservative"),
    PreprocessingMode.DOUBLE_SHARPEN: lambda image: tf.sharpen(_binarized("aggressive")(image)),
    PreprocessingMode.GRAYSCALE: _grayscale,
    PreprocessingMode.GRAYSCALE_CONTRAST: _upscaled(lambda image: tf.contrast_stretch(image, 3.0)),
    PreprocessingMode.MINIMAL: lambda image: tf.upscale_to_target(image, MINIMAL_TARGET),
    PreprocessingMode.CONTRAST_ONLY: lambda image: tf.contrast_stretch(
        tf.upscale_to_target(image, CONTRAST_ONLY_TARGET), 2.0
    ),
    PreprocessingMode.RAW: lambda image: image,
    PreprocessingMode.INVERT: _upscaled(tf.invert),
    PreprocessingMode.BRIGHTEN: _upscaled(tf.brighten),
    PreprocessingMode.DARKEN: _upscaled(tf.darken),
    PreprocessingMode.EDGES: _upscaled(tf.edge_detect),
    PreprocessingMode.GRAYSCALE_INVERT: _after_grayscale(tf.invert),
    PreprocessingMode.GRAYSCALE_BRIGHTEN: _after_grayscale(tf.brighten),
    PreprocessingMode.GRAYSCALE_DARKEN: _after_grayscale(tf.darken),
}


def preprocess(image: PixelBuffer, mode: PreprocessingMode) -> PixelBuffer:
    return RECIPES[mode](image)


@dataclass(frozen=True)
class StrategyDescriptor:
    id: str
    preprocessing_mode: PreprocessingMode
    recognition_hints: Optional[RecognitionHints] = DEFAULT_HINTS
    timeout_s: float = DEFAULT_TIMEOUT_S
    baseline: bool = False
    recipe: Optional[Callable[[PixelBuffer], PixelBuffer]] = field(
        default=None, compare=False, repr=False
    )

    def prepare(self, image: PixelBuffer) -> PixelBuffer:
        if self.recipe is not None:
            return self.recipe(image)
        return preprocess(image, self.preprocessing_mode)


def _whitelist_with_psm(page_seg_mode: int) -> RecognitionHints:
    return RecognitionHints(char_whitelist=DISPLAY_CHAR_WHITELIST, page_seg_mode=page_seg_mode)


def build_strategy_catalog() -> Tuple[StrategyDescriptor, ...]:
    baseline = (
        StrategyDescriptor("aggressive", PreprocessingMode.BINARIZE_AGGRESSIVE, baseline=True),
        StrategyDescriptor("standard", PreprocessingMode.BINARIZE_STANDARD, baseline=True),
        StrategyDescriptor("conservative", PreprocessingMode.BINARIZE_CONSERVATIVE, baseline=True),
    )
    fallbacks = (
        StrategyDescriptor("double_sharpen", PreprocessingMode.DOUBLE_SHARPEN),
        StrategyDescriptor("grayscale", PreprocessingMode.GRAYSCALE),
        StrategyDescriptor("grayscale_contrast", PreprocessingMode.GRAYSCALE_CONTRAST),
        StrategyDescriptor("minimal", PreprocessingMode.MINIMAL),
        StrategyDescriptor("contrast_only", PreprocessingMode.CONTRAST_ONLY),
        StrategyDescriptor("raw", PreprocessingMode.RAW),
        StrategyDescriptor(
            "grayscale_single_word", PreprocessingMode.GRAYSCALE, _whitelist_with_psm(8)
        ),
        StrategyDescriptor("invert", PreprocessingMode.INVERT),
        StrategyDescriptor("brighten", PreprocessingMode.BRIGHTEN),
        StrategyDescriptor("darken", PreprocessingMode.DARKEN),
        StrategyDescriptor("edges", PreprocessingMode.EDGES),
        StrategyDescriptor("grayscale_invert", PreprocessingMode.GRAYSCALE_INVERT),
        StrategyDescriptor("grayscale_brighten", PreprocessingMode.GRAYSCALE_BRIGHTEN),
        StrategyDescriptor("grayscale_darken", PreprocessingMode.GRAYSCALE_DARKEN),
    )
    sweep = tuple(
        StrategyDescriptor(
            f"psm_sweep_{psm}",
            PreprocessingMode.GRAYSCALE,
            _whitelist_with_psm(psm),
            timeout_s=SWEEP_TIMEOUT_S,
        )
        for psm in SWEEP_PAGE_SEG_MODES
    )
    return baseline + fallbacks + sweep


# Re-run when every strategy failed; their texts are concatenated and parsed once more.
LAST_RESORT_MODES = (
    PreprocessingMode.BINARIZE_AGGRESSIVE,
    PreprocessingMode.BINARIZE_STANDARD,
    PreprocessingMode.BINARIZE_CONSERVATIVE,
    PreprocessingMode.MINIMAL,
    PreprocessingMode.CONTRAST_ONLY,
    PreprocessingMode.RAW,
)


def build_last_resort_strategies() -> Tuple[StrategyDescriptor, ...]:
    return tuple(
        StrategyDescriptor(f"last_resort_{mode.value}", mode) for mode in LAST_RESORT_MODES
    )


STRATEGY_CATALOG = build_strategy_catalog()
LAST_RESORT_STRATEGIES = build_last_resort_strategies()
