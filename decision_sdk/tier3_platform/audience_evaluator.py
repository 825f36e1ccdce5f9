"""
decision_sdk.tier3_platform.audience_evaluator
────────────────────────────────────────────────
Resolves the audience ids in an experiment's audience expression and decides
whether the user belongs. Audience ids are leaves of an outer condition tree;
each audience carries its own inner tree whose leaves are Conditions.

Only a definite TRUE admits the user. An unresolvable audience id, an unknown
condition type or a failing leaf evaluator all count as UNKNOWN.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping

from decision_sdk.tier0_core.logging import get_logger
from decision_sdk.tier0_core.models import CUSTOM_ATTRIBUTE_CONDITION_TYPE, Audience, Condition
from decision_sdk.tier3_platform import condition_evaluator, condition_tree
from decision_sdk.tier3_platform.condition_tree import Ternary

logger = get_logger(__name__)

ConditionEvaluator = Callable[[Condition, dict[str, Any]], "Ternary | bool | None"]


class AudienceEvaluator:
    """
    Usage::

        evaluator = AudienceEvaluator()
        evaluator.evaluate(["or", "11155", "11156"], config.audiences_by_id, attrs)

    Extra condition types may be plugged in through *condition_evaluators*;
    built-in types cannot be overridden.
    """

    def __init__(self, condition_evaluators: Mapping[str, ConditionEvaluator] | None = None) -> None:
        self._evaluators: dict[str, ConditionEvaluator] = {
            **(condition_evaluators or {}),
            CUSTOM_ATTRIBUTE_CONDITION_TYPE: condition_evaluator.evaluate,
        }

    def evaluate(
        self,
        audience_conditions: Any,
        audiences_by_id: Mapping[str, Audience],
        attributes: dict[str, Any] | None,
    ) -> bool:
        """True if *attributes* satisfy *audience_conditions*."""
        if not audience_conditions:
            return True

        attributes = attributes or {}

        def evaluate_audience(audience_id: Any) -> Ternary:
            audience = audiences_by_id.get(audience_id) if isinstance(audience_id, str) else None
            if audience is None:
                logger.warning("audience_not_found", audience_id=audience_id)
                return Ternary.UNKNOWN
            result = condition_tree.evaluate(
                audience.conditions,
                lambda condition: self.evaluate_condition(condition, attributes),
            )
            logger.debug("audience_evaluated", audience_id=audience_id, result=result.value.upper())
            return result

        return bool(condition_tree.evaluate(audience_conditions, evaluate_audience))

    def evaluate_condition(self, condition: Any, attributes: dict[str, Any]) -> Ternary:
        """Dispatch one leaf condition to the evaluator for its type."""
        if not isinstance(condition, Condition):
            logger.warning("malformed_condition", condition=repr(condition))
            return Ternary.UNKNOWN
        evaluator = self._evaluators.get(condition.type)
        if evaluator is None:
            logger.warning("unknown_condition_type", condition=condition.model_dump())
            return Ternary.UNKNOWN
        try:
            return Ternary.of(evaluator(condition, attributes))
        except Exception as exc:
            logger.error(
                "condition_evaluator_error",
                condition_type=condition.type,
                error=str(exc),
            )
            return Ternary.UNKNOWN


__sdk_export__ = {
    "exports": ["AudienceEvaluator"],
    "description": "Audience resolution and combination over condition trees",
    "tier": "tier3_platform",
    "module": "audience_evaluator",
}
