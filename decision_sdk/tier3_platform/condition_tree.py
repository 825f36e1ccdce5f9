"""
decision_sdk.tier3_platform.condition_tree
────────────────────────────────────────────
Three-valued evaluation of nested boolean expressions.

An expression is either a leaf (handed to the caller's leaf evaluator) or a
list whose head may be ``"and"``, ``"or"`` or ``"not"``. A list with any
other head is an implicit ``or`` over all of its elements, e.g.
``["and", "1", ["or", "2", "3"]]`` or ``["1", "2"]``.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable

from decision_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)

AND_CONDITION = "and"
OR_CONDITION = "or"
NOT_CONDITION = "not"

OPERATORS = (AND_CONDITION, OR_CONDITION, NOT_CONDITION)


class Ternary(Enum):
    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, value: "Ternary | bool | None") -> "Ternary":
        if isinstance(value, Ternary):
            return value
        if value is None:
            return cls.UNKNOWN
        return cls.TRUE if value else cls.FALSE

    def __bool__(self) -> bool:
        return self is Ternary.TRUE

    def __invert__(self) -> "Ternary":
        if self is Ternary.UNKNOWN:
            return self
        return Ternary.FALSE if self is Ternary.TRUE else Ternary.TRUE

    def to_optional(self) -> bool | None:
        if self is Ternary.UNKNOWN:
            return None
        return self is Ternary.TRUE


LeafEvaluator = Callable[[Any], "Ternary | bool | None"]


def evaluate(expression: Any, leaf_evaluator: LeafEvaluator) -> Ternary:
    """Evaluate *expression*, resolving leaves with *leaf_evaluator*."""
    if isinstance(expression, list):
        if expression and expression[0] in OPERATORS:
            operator, operands = expression[0], expression[1:]
        else:
            operator, operands = OR_CONDITION, expression

        if operator == AND_CONDITION:
            return _and(operands, leaf_evaluator)
        if operator == NOT_CONDITION:
            return _not(operands, leaf_evaluator)
        return _or(operands, leaf_evaluator)

    return _leaf(expression, leaf_evaluator)


def _leaf(leaf: Any, leaf_evaluator: LeafEvaluator) -> Ternary:
    try:
        return Ternary.of(leaf_evaluator(leaf))
    except Exception as exc:
        logger.error("condition_evaluator_error", leaf=repr(leaf), error=str(exc))
        return Ternary.UNKNOWN


def _and(operands: list[Any], leaf_evaluator: LeafEvaluator) -> Ternary:
    saw_unknown = False
    for operand in operands:
        result = evaluate(operand, leaf_evaluator)
        if result is Ternary.FALSE:
            return Ternary.FALSE
        if result is Ternary.UNKNOWN:
            saw_unknown = True
    return Ternary.UNKNOWN if saw_unknown else Ternary.TRUE


def _or(operands: list[Any], leaf_evaluator: LeafEvaluator) -> Ternary:
    saw_unknown = False
    for operand in operands:
        result = evaluate(operand, leaf_evaluator)
        if result is Ternary.TRUE:
            return Ternary.TRUE
        if result is Ternary.UNKNOWN:
            saw_unknown = True
    return Ternary.UNKNOWN if saw_unknown else Ternary.FALSE


def _not(operands: list[Any], leaf_evaluator: LeafEvaluator) -> Ternary:
    if not operands:
        return Ternary.UNKNOWN
    return ~evaluate(operands[0], leaf_evaluator)


__sdk_export__ = {
    "exports": ["Ternary", "evaluate"],
    "description": "Three-valued and/or/not tree evaluation",
    "tier": "tier3_platform",
    "module": "condition_tree",
}
