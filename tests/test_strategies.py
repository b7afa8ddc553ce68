from bp_models import DEFAULT_HINTS, DISPLAY_CHAR_WHITELIST
from bp_strategies import (
    LAST_RESORT_STRATEGIES,
    RECIPES,
    STRATEGY_CATALOG,
    SWEEP_TIMEOUT_S,
    PreprocessingMode,
    StrategyDescriptor,
    build_strategy_catalog,
    preprocess,
)
from conftest import solid_image


def test_every_mode_has_a_recipe():
    assert set(RECIPES) == set(PreprocessingMode)


def test_catalog_order():
    ids = [strategy.id for strategy in STRATEGY_CATALOG]
    assert ids[:3] == ["aggressive", "standard", "conservative"]
    assert ids[3:9] == ["double_sharpen", "grayscale", "grayscale_contrast", "minimal", "contrast_only", "raw"]
    assert ids[-5:] == [f"psm_sweep_{psm}" for psm in (6, 7, 8, 11, 12)]
    assert len(ids) == len(set(ids)) == 22


def test_only_binarized_recipes_are_baseline():
    baseline = [strategy for strategy in STRATEGY_CATALOG if strategy.baseline]
    assert [strategy.preprocessing_mode for strategy in baseline] == [
        PreprocessingMode.BINARIZE_AGGRESSIVE,
        PreprocessingMode.BINARIZE_STANDARD,
        PreprocessingMode.BINARIZE_CONSERVATIVE,
    ]


def test_default_hints_and_sweep_overrides():
    by_id = {strategy.id: strategy for strategy in STRATEGY_CATALOG}
    assert by_id["standard"].recognition_hints == DEFAULT_HINTS
    assert by_id["standard"].timeout_s == 90.0

    sweep = by_id["psm_sweep_11"]
    assert sweep.recognition_hints.page_seg_mode == 11
    assert sweep.recognition_hints.char_whitelist == DISPLAY_CHAR_WHITELIST
    assert sweep.recognition_hints.engine_mode is None
    assert sweep.timeout_s == SWEEP_TIMEOUT_S


def test_catalog_is_stable():
    assert build_strategy_catalog() == STRATEGY_CATALOG


def test_last_resort_strategies():
    assert [strategy.preprocessing_mode for strategy in LAST_RESORT_STRATEGIES] == [
        PreprocessingMode.BINARIZE_AGGRESSIVE,
        PreprocessingMode.BINARIZE_STANDARD,
        PreprocessingMode.BINARIZE_CONSERVATIVE,
        PreprocessingMode.MINIMAL,
        PreprocessingMode.CONTRAST_ONLY,
        PreprocessingMode.RAW,
    ]


def test_raw_and_minimal_recipes():
    image = solid_image(40, 30)
    assert preprocess(image, PreprocessingMode.RAW) is image
    assert preprocess(image, PreprocessingMode.MINIMAL).size == (2666, 2000)


def test_recipe_override():
    replacement = solid_image(2, 2)
    strategy = StrategyDescriptor("custom", PreprocessingMode.GRAYSCALE, recipe=lambda image: replacement)
    assert strategy.prepare(solid_image(5, 5)) is replacement
