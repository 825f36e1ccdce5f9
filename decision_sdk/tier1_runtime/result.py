"""
decision_sdk.tier1_runtime.result
───────────────────────────────────
Decision results. Every decision step returns its value together with the
ordered trace of reasons explaining how it got there. Reasons are purely
observational and never feed back into control flow.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from decision_sdk.tier0_core.models import Experiment, Variation

T = TypeVar("T")


@dataclass(frozen=True)
class DecisionReason:
    """A %-style message template and its arguments, rendered lazily."""
    template: str
    args: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.template % self.args if self.args else self.template


@dataclass
class DecisionResult(Generic[T]):
    result: T
    reasons: list[DecisionReason] = field(default_factory=list)

    def messages(self) -> list[str]:
        return [str(r) for r in self.reasons]


class ReasonLog:
    """Accumulates reasons across the steps of one decision."""

    def __init__(self) -> None:
        self.reasons: list[DecisionReason] = []

    def add(self, template: str, *args: Any) -> None:
        self.reasons.append(DecisionReason(template, args))

    def extend(self, other: DecisionResult[Any]) -> None:
        self.reasons.extend(other.reasons)

    def result(self, value: T) -> DecisionResult[T]:
        return DecisionResult(value, list(self.reasons))


class DecisionSource(str, Enum):
    FEATURE_TEST = "feature-test"
    ROLLOUT = "rollout"


@dataclass(frozen=True)
class Decision:
    """Feature-level outcome."""
    experiment: Experiment | None
    variation: Variation | None
    source: DecisionSource

    @property
    def enabled(self) -> bool:
        return bool(self.variation and self.variation.feature_enabled)


__sdk_export__ = {
    "exports": [
        "DecisionReason", "DecisionResult", "ReasonLog", "DecisionSource", "Decision",
    ],
    "description": "Decision results with diagnostic reasons",
    "tier": "tier1_runtime",
    "module": "result",
}
