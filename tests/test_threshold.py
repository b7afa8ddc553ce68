import pytest

from bp_models import BloodPressureReading, FormulaError
from bp_threshold import assess_reading, evaluate_formula


def test_spreadsheet_formula_is_evaluated():
    assert evaluate_formula("=0.5*x+80", diastolic=80, systolic=120) == 120.0
    assert evaluate_formula("  = (y - x) / 2 ", diastolic=80, systolic=120) == 20.0


def test_typographic_operators_are_accepted():
    assert evaluate_formula("x×2÷4 − -y", diastolic=80, systolic=120) == 160.0


@pytest.mark.parametrize(
    "formula",
    ["__import__('os').system('ls')", "x**2", "z + 1", "x; y", "[x, y]", "x if y else 0", "'80'", "True + x"],
)
def test_non_arithmetic_content_is_rejected(formula):
    with pytest.raises(FormulaError) as excinfo:
        evaluate_formula(formula, 80, 120)
    assert excinfo.value.reason == FormulaError.DISALLOWED


def test_division_by_zero():
    with pytest.raises(FormulaError) as excinfo:
        evaluate_formula("y / (x - 80)", 80, 120)
    assert excinfo.value.reason == FormulaError.EVALUATION


@pytest.mark.parametrize("formula", [None, "", "   ", "="])
def test_missing_formula(formula):
    with pytest.raises(FormulaError) as excinfo:
        assess_reading(BloodPressureReading(120, 80), formula, 10)
    assert excinfo.value.reason == FormulaError.MISSING_FORMULA


@pytest.mark.parametrize("threshold", [None, "", "ten", float("nan")])
def test_missing_threshold(threshold):
    with pytest.raises(FormulaError) as excinfo:
        assess_reading(BloodPressureReading(120, 80), "x + 40", threshold)
    assert excinfo.value.reason == FormulaError.MISSING_THRESHOLD


def test_assessment_compares_against_systolic():
    reading = BloodPressureReading(systolic=130, diastolic=80)

    abnormal = assess_reading(reading, "x + 40", "5")
    assert abnormal.formula_result == 120.0
    assert abnormal.difference == 10.0
    assert abnormal.threshold == 5.0
    assert not abnormal.is_normal

    assert assess_reading(reading, "x + 40", 10).is_normal
