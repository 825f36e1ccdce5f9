"""
decision_sdk.tier1_runtime.context
────────────────────────────────────
User context: the identity, attributes and per-flag forced decisions a
decision is computed for. Decision calls bind the user id into the structlog
context for their duration so every trace line carries it.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from decision_sdk.tier0_core.logging import bind_context, unbind_context

# Reserved attribute names that steer the engine instead of targeting.
BUCKETING_ID_ATTRIBUTE = "$opt_bucketing_id"
STICKY_BUCKETING_ATTRIBUTE = "$opt_experiment_bucket_map"


class DecideOption(str, Enum):
    IGNORE_USER_PROFILE_SERVICE = "IGNORE_USER_PROFILE_SERVICE"
    INCLUDE_REASONS = "INCLUDE_REASONS"


# ── Domain model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ForcedDecisionKey:
    """Identifies a forced decision: a flag, optionally narrowed to one rule."""
    flag_key: str
    rule_key: str | None = None


@dataclass(frozen=True)
class ForcedDecision:
    variation_key: str


@dataclass
class UserContext:
    """Everything known about the user being decided for."""
    user_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    forced_decisions: dict[ForcedDecisionKey, ForcedDecision] = field(default_factory=dict)

    def get_user_id(self) -> str:
        return self.user_id

    def get_attributes(self) -> dict[str, Any]:
        return self.attributes

    def set_forced_decision(self, key: ForcedDecisionKey, decision: ForcedDecision) -> bool:
        self.forced_decisions[key] = decision
        return True

    def get_forced_decision(self, key: ForcedDecisionKey) -> ForcedDecision | None:
        return self.forced_decisions.get(key)

    def remove_forced_decision(self, key: ForcedDecisionKey) -> bool:
        return self.forced_decisions.pop(key, None) is not None

    def remove_all_forced_decisions(self) -> bool:
        self.forced_decisions.clear()
        return True


# ── Log context ───────────────────────────────────────────────────────────────

@contextmanager
def bound_user(user: UserContext) -> Iterator[UserContext]:
    """Bind ``user_id`` to every log line emitted inside the block."""
    bind_context(user_id=user.user_id)
    try:
        yield user
    finally:
        unbind_context("user_id")


__sdk_export__ = {
    "exports": [
        "UserContext", "ForcedDecisionKey", "ForcedDecision", "DecideOption",
        "bound_user",
    ],
    "description": "User context, forced decisions and decide options",
    "tier": "tier1_runtime",
    "module": "context",
}
