"""Normal/abnormal assessment of a reading against an externally supplied formula.

The formula is a small arithmetic expression over ``x`` (diastolic) and
``y`` (systolic), typically copied out of a spreadsheet cell, e.g.
``=0.5*x+70``. A reading is normal when ``|formula(x, y) - y| <= threshold``.
"""

from __future__ import annotations

import ast
import logging
import math
import operator
from dataclasses import dataclass
from typing import Optional, Union

from bp_models import BloodPressureReading, FormulaError

logger = logging.getLogger(__name__)

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_SPREADSHEET_SYMBOLS = str.maketrans({"×": "*", "÷": "/", "−": "-"})


@dataclass(frozen=True)
class ThresholdAssessment:
    is_normal: bool
    formula_result: float
    difference: float
    threshold: float


def _normalise(formula: str) -> str:
    text = formula.strip()
    if text.startswith("="):
        text = text[1:].strip()
    return " ".join(text.translate(_SPREADSHEET_SYMBOLS).split())


def _check(node: ast.AST) -> None:
    """Reject anything that is not plain arithmetic over x and y."""
    if isinstance(node, ast.Expression):
        _check(node.body)
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY_OPERATORS:
            raise FormulaError(FormulaError.DISALLOWED, f"Operator {type(node.op).__name__} is not allowed")
        _check(node.left)
        _check(node.right)
    elif isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY_OPERATORS:
            raise FormulaError(FormulaError.DISALLOWED, f"Operator {type(node.op).__name__} is not allowed")
        _check(node.operand)
    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(FormulaError.DISALLOWED, f"Constant {node.value!r} is not a number")
    elif isinstance(node, ast.Name):
        if node.id not in ("x", "y"):
            raise FormulaError(FormulaError.DISALLOWED, f"Unknown name {node.id!r}; only x and y are allowed")
    else:
        raise FormulaError(FormulaError.DISALLOWED, f"{type(node).__name__} is not allowed in a formula")


def _evaluate(node: ast.AST, variables: dict[str, float]) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, variables)
    if isinstance(node, ast.BinOp):
        return _BINARY_OPERATORS[type(node.op)](
            _evaluate(node.left, variables), _evaluate(node.right, variables)
        )
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPERATORS[type(node.op)](_evaluate(node.operand, variables))
    if isinstance(node, ast.Name):
        return variables[node.id]
    return node.value


def evaluate_formula(formula: Optional[str], diastolic: float, systolic: float) -> float:
    if formula is None or not str(formula).strip():
        raise FormulaError(FormulaError.MISSING_FORMULA, "No comparison formula was supplied")

    expression = _normalise(str(formula))
    if not expression:
        raise FormulaError(FormulaError.MISSING_FORMULA, "No comparison formula was supplied")
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise FormulaError(FormulaError.DISALLOWED, f"Formula {expression!r} is not arithmetic") from exc
    _check(tree)

    try:
        result = float(_evaluate(tree, {"x": float(diastolic), "y": float(systolic)}))
    except (ZeroDivisionError, OverflowError) as exc:
        raise FormulaError(FormulaError.EVALUATION, f"Formula {expression!r} failed: {exc}") from exc
    if math.isnan(result) or math.isinf(result):
        raise FormulaError(FormulaError.EVALUATION, f"Formula {expression!r} is not a finite number")
    return result


def _parse_threshold(threshold: Union[str, float, int, None]) -> float:
    if threshold is None or (isinstance(threshold, str) and not threshold.strip()):
        raise FormulaError(FormulaError.MISSING_THRESHOLD, "No threshold value was supplied")
    try:
        value = float(threshold)
    except (TypeError, ValueError) as exc:
        raise FormulaError(
            FormulaError.MISSING_THRESHOLD, f"Threshold {threshold!r} is not a number"
        ) from exc
    if math.isnan(value):
        raise FormulaError(FormulaError.MISSING_THRESHOLD, "Threshold is not a number")
    return value


def assess_reading(
    reading: BloodPressureReading,
    formula: Optional[str],
    threshold: Union[str, float, int, None],
) -> ThresholdAssessment:
    if formula is None or not str(formula).strip():
        raise FormulaError(FormulaError.MISSING_FORMULA, "No comparison formula was supplied")
    limit = _parse_threshold(threshold)
    result = evaluate_formula(formula, reading.diastolic, reading.systolic)
    difference = abs(result - reading.systolic)
    assessment = ThresholdAssessment(
        is_normal=difference <= limit,
        formula_result=result,
        difference=difference,
        threshold=limit,
    )
    logger.info(
        "Formula %s with x=%d y=%d gave %.2f (difference %.2f, threshold %.2f): %s",
        formula,
        reading.diastolic,
        reading.systolic,
        result,
        difference,
        limit,
        "normal" if assessment.is_normal else "abnormal",
    )
    return assessment
