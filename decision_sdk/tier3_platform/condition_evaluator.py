"""
decision_sdk.tier3_platform.condition_evaluator
─────────────────────────────────────────────────
Evaluates a single ``custom_attribute`` condition against user attributes.

Each match type accepts specific value categories. Whenever the condition
value, the attribute or their pairing can't be compared, the result is
UNKNOWN rather than FALSE, and the specific UnknownReason is logged.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Callable

from decision_sdk.tier0_core.logging import get_logger
from decision_sdk.tier0_core.models import Condition
from decision_sdk.tier3_platform.condition_tree import Ternary
from decision_sdk.tier3_platform.semver import compare_version

logger = get_logger(__name__)

EXACT_MATCH_TYPE = "exact"
EXISTS_MATCH_TYPE = "exists"
GREATER_THAN_MATCH_TYPE = "gt"
GREATER_OR_EQUAL_MATCH_TYPE = "ge"
LESS_THAN_MATCH_TYPE = "lt"
LESS_OR_EQUAL_MATCH_TYPE = "le"
SUBSTRING_MATCH_TYPE = "substring"
SEMVER_EQ_MATCH_TYPE = "semver_eq"
SEMVER_GT_MATCH_TYPE = "semver_gt"
SEMVER_GE_MATCH_TYPE = "semver_ge"
SEMVER_LT_MATCH_TYPE = "semver_lt"
SEMVER_LE_MATCH_TYPE = "semver_le"

MAX_SAFE_INTEGER = 2 ** 53


class UnknownReason(str, Enum):
    """Why a condition could not be evaluated. Diagnostic only."""
    UNKNOWN_MATCH_TYPE = "unknown_match_type"
    MISSING_ATTRIBUTE = "missing_attribute"
    NULL_ATTRIBUTE = "null_attribute"
    UNEXPECTED_CONDITION_VALUE = "unexpected_condition_value"
    UNEXPECTED_TYPE = "unexpected_type"
    OUT_OF_BOUNDS = "out_of_bounds"
    INVALID_VERSION = "invalid_version"


_QUIET_REASONS = frozenset({UnknownReason.MISSING_ATTRIBUTE, UnknownReason.NULL_ATTRIBUTE})


class _Unknown(Exception):
    def __init__(self, reason: UnknownReason) -> None:
        super().__init__(reason.value)
        self.reason = reason


# ── Value categories ──────────────────────────────────────────────────────────

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_finite_number(value: Any) -> bool:
    return is_number(value) and math.isfinite(value)


def is_safe_number(value: Any) -> bool:
    return is_number(value) and abs(value) <= MAX_SAFE_INTEGER


def _category(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


def _valid_for_exact(value: Any) -> bool:
    return isinstance(value, (str, bool)) or is_finite_number(value)


# ── Match evaluators ──────────────────────────────────────────────────────────

def _attribute(condition: Condition, attributes: dict[str, Any]) -> Any:
    value = attributes.get(condition.name)
    if value is None:
        raise _Unknown(UnknownReason.NULL_ATTRIBUTE)
    return value


def _exact(condition: Condition, attributes: dict[str, Any]) -> bool:
    expected = condition.value
    if not _valid_for_exact(expected) or (is_number(expected) and not is_safe_number(expected)):
        raise _Unknown(UnknownReason.UNEXPECTED_CONDITION_VALUE)

    actual = _attribute(condition, attributes)
    if not _valid_for_exact(actual) or _category(actual) != _category(expected):
        raise _Unknown(UnknownReason.UNEXPECTED_TYPE)
    if is_number(actual) and not is_safe_number(actual):
        raise _Unknown(UnknownReason.OUT_OF_BOUNDS)
    return actual == expected


def _exists(condition: Condition, attributes: dict[str, Any]) -> bool:
    return attributes.get(condition.name) is not None


def _numeric_operands(condition: Condition, attributes: dict[str, Any]) -> tuple[float, float]:
    expected = condition.value
    if not is_safe_number(expected):
        raise _Unknown(UnknownReason.UNEXPECTED_CONDITION_VALUE)

    actual = _attribute(condition, attributes)
    if not is_number(actual):
        raise _Unknown(UnknownReason.UNEXPECTED_TYPE)
    if not is_safe_number(actual):
        raise _Unknown(UnknownReason.OUT_OF_BOUNDS)
    return actual, expected


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Condition, dict[str, Any]], bool]:
    def evaluator(condition: Condition, attributes: dict[str, Any]) -> bool:
        actual, expected = _numeric_operands(condition, attributes)
        return compare(actual, expected)
    return evaluator


def _substring(condition: Condition, attributes: dict[str, Any]) -> bool:
    if not isinstance(condition.value, str):
        raise _Unknown(UnknownReason.UNEXPECTED_CONDITION_VALUE)
    actual = _attribute(condition, attributes)
    if not isinstance(actual, str):
        raise _Unknown(UnknownReason.UNEXPECTED_TYPE)
    return condition.value in actual


def _semver(compare: Callable[[int], bool]) -> Callable[[Condition, dict[str, Any]], bool]:
    def evaluator(condition: Condition, attributes: dict[str, Any]) -> bool:
        if not isinstance(condition.value, str):
            raise _Unknown(UnknownReason.UNEXPECTED_CONDITION_VALUE)
        actual = _attribute(condition, attributes)
        if not isinstance(actual, str):
            raise _Unknown(UnknownReason.UNEXPECTED_TYPE)
        result = compare_version(condition.value, actual)
        if result is None:
            raise _Unknown(UnknownReason.INVALID_VERSION)
        return compare(result)
    return evaluator


EVALUATORS_BY_MATCH_TYPE: dict[str, Callable[[Condition, dict[str, Any]], bool]] = {
    EXACT_MATCH_TYPE: _exact,
    EXISTS_MATCH_TYPE: _exists,
    GREATER_THAN_MATCH_TYPE: _numeric(lambda a, e: a > e),
    GREATER_OR_EQUAL_MATCH_TYPE: _numeric(lambda a, e: a >= e),
    LESS_THAN_MATCH_TYPE: _numeric(lambda a, e: a < e),
    LESS_OR_EQUAL_MATCH_TYPE: _numeric(lambda a, e: a <= e),
    SUBSTRING_MATCH_TYPE: _substring,
    SEMVER_EQ_MATCH_TYPE: _semver(lambda r: r == 0),
    SEMVER_GT_MATCH_TYPE: _semver(lambda r: r > 0),
    SEMVER_GE_MATCH_TYPE: _semver(lambda r: r >= 0),
    SEMVER_LT_MATCH_TYPE: _semver(lambda r: r < 0),
    SEMVER_LE_MATCH_TYPE: _semver(lambda r: r <= 0),
}


# ── Public API ────────────────────────────────────────────────────────────────

def evaluate(condition: Condition, attributes: dict[str, Any] | None) -> Ternary:
    """
    Evaluate *condition* against *attributes*.

    TRUE/FALSE when the comparison could be carried out, UNKNOWN otherwise.
    """
    attributes = attributes or {}
    match = condition.match or EXACT_MATCH_TYPE

    evaluator = EVALUATORS_BY_MATCH_TYPE.get(match)
    try:
        if evaluator is None:
            raise _Unknown(UnknownReason.UNKNOWN_MATCH_TYPE)
        if condition.name not in attributes and match != EXISTS_MATCH_TYPE:
            raise _Unknown(UnknownReason.MISSING_ATTRIBUTE)
        return Ternary.of(evaluator(condition, attributes))
    except _Unknown as unknown:
        log = logger.debug if unknown.reason in _QUIET_REASONS else logger.warning
        log(
            "condition_evaluated_unknown",
            reason=unknown.reason.value,
            condition=condition.model_dump(),
            attribute_type=_category(attributes.get(condition.name)),
        )
        return Ternary.UNKNOWN


__sdk_export__ = {
    "exports": ["evaluate", "UnknownReason", "EVALUATORS_BY_MATCH_TYPE"],
    "description": "custom_attribute condition evaluation (exact, exists, numeric, substring, semver)",
    "tier": "tier3_platform",
    "module": "condition_evaluator",
}
