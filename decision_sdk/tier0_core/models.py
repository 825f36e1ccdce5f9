"""
decision_sdk.tier0_core.models
────────────────────────────────
Datafile entity models. Every entity is an immutable Pydantic v2 model that
accepts the datafile's camelCase keys as well as snake_case field names, and
ignores keys it does not know about.

Entities are owned by a ProjectConfig and referenced, never copied, for the
lifetime of a decision call.
"""
from __future__ import annotations

import json
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

RUNNING_STATUS = "Running"

GROUP_POLICY_RANDOM = "random"
GROUP_POLICY_OVERLAPPING = "overlapping"

CUSTOM_ATTRIBUTE_CONDITION_TYPE = "custom_attribute"


class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# ── Traffic & variations ──────────────────────────────────────────────────────

class TrafficAllocation(_Entity):
    """One (entity id, cumulative upper bound) pair of a traffic partition."""
    entity_id: str = Field(alias="entityId")
    end_of_range: int = Field(alias="endOfRange")


class VariableUsage(_Entity):
    id: str
    value: str


class Variation(_Entity):
    id: str
    key: str
    feature_enabled: bool = Field(default=False, alias="featureEnabled")
    variables: list[VariableUsage] = Field(default_factory=list)


# ── Experiments & groups ──────────────────────────────────────────────────────

class Experiment(_Entity):
    """An A/B test or a rollout delivery rule."""

    id: str
    key: str
    status: str = RUNNING_STATUS
    layer_id: str = Field(default="", alias="layerId")
    audience_ids: list[str] = Field(default_factory=list, alias="audienceIds")
    audience_conditions: Any = Field(default=None, alias="audienceConditions")
    traffic_allocation: list[TrafficAllocation] = Field(
        default_factory=list, alias="trafficAllocation"
    )
    variations: list[Variation] = Field(default_factory=list)
    forced_variations: dict[str, str] = Field(
        default_factory=dict, alias="forcedVariations"
    )
    group_id: str | None = Field(default=None, alias="groupId")

    @cached_property
    def variation_id_map(self) -> dict[str, Variation]:
        return {v.id: v for v in self.variations}

    @cached_property
    def variation_key_map(self) -> dict[str, Variation]:
        return {v.key: v for v in self.variations}

    @property
    def audience_expression(self) -> Any:
        """Audience conditions when present, else the flat audience id list."""
        if self.audience_conditions is not None:
            return self.audience_conditions
        return self.audience_ids

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING_STATUS


class Group(_Entity):
    """Experiments sharing one traffic space."""
    id: str
    policy: str = GROUP_POLICY_RANDOM
    experiments: list[Experiment] = Field(default_factory=list)
    traffic_allocation: list[TrafficAllocation] = Field(
        default_factory=list, alias="trafficAllocation"
    )


# ── Audiences ─────────────────────────────────────────────────────────────────

class Condition(_Entity):
    """A single leaf predicate over one user attribute."""
    name: str = ""
    type: str = CUSTOM_ATTRIBUTE_CONDITION_TYPE
    match: str | None = None
    value: Any = None


def decode_conditions(raw: Any) -> Any:
    """
    Turn a datafile condition expression into a tree whose leaves are
    Condition models. Legacy audiences carry the whole tree as one JSON
    string; operator names and other bare strings inside it stay as they are.
    """
    if isinstance(raw, str):
        raw = json.loads(raw)
    return _condition_tree(raw)


def _condition_tree(node: Any) -> Any:
    if isinstance(node, list):
        return [_condition_tree(item) for item in node]
    if isinstance(node, dict):
        return Condition.model_validate(node)
    return node


class Audience(_Entity):
    id: str
    name: str = ""
    conditions: Any = None

    @field_validator("conditions", mode="before")
    @classmethod
    def _decode(cls, v: Any) -> Any:
        return decode_conditions(v)


# ── Features & rollouts ───────────────────────────────────────────────────────

class Rollout(_Entity):
    """Ordered delivery rules; the last rule is the "everyone else" fallback."""
    id: str
    experiments: list[Experiment] = Field(default_factory=list)


class FeatureFlag(_Entity):
    id: str
    key: str
    experiment_ids: list[str] = Field(default_factory=list, alias="experimentIds")
    rollout_id: str | None = Field(default=None, alias="rolloutId")
    variables: list[dict[str, Any]] = Field(default_factory=list)


# ── Sticky bucketing record ───────────────────────────────────────────────────

class UserProfile(BaseModel):
    """Persisted sticky-bucketing record: experiment id → {"variation_id": ...}."""
    model_config = ConfigDict(extra="ignore")

    user_id: str
    experiment_bucket_map: dict[str, dict[str, Any]] = Field(default_factory=dict)


# ── Datafile envelope ─────────────────────────────────────────────────────────

class Datafile(_Entity):
    version: str = "4"
    revision: str = ""
    project_id: str = Field(default="", alias="projectId")
    account_id: str = Field(default="", alias="accountId")
    experiments: list[Experiment] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    audiences: list[Audience] = Field(default_factory=list)
    typed_audiences: list[Audience] = Field(default_factory=list, alias="typedAudiences")
    rollouts: list[Rollout] = Field(default_factory=list)
    feature_flags: list[FeatureFlag] = Field(default_factory=list, alias="featureFlags")


__sdk_export__ = {
    "exports": [
        "TrafficAllocation", "Variation", "Experiment", "Group", "Condition",
        "Audience", "Rollout", "FeatureFlag", "UserProfile", "Datafile",
    ],
    "description": "Immutable datafile entity models",
    "tier": "tier0_core",
    "module": "models",
}
