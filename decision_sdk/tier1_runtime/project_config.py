"""
decision_sdk.tier1_runtime.project_config
───────────────────────────────────────────
Read-only, indexed view over a parsed datafile. Built once per datafile
revision and shared by every decision call; nothing here mutates after
construction, so a ProjectConfig is safe to read from any number of threads.
"""
from __future__ import annotations

from typing import Any

from decision_sdk.tier0_core.errors import InvalidExperimentError
from decision_sdk.tier0_core.models import (
    Audience,
    Datafile,
    Experiment,
    FeatureFlag,
    Group,
    Rollout,
    Variation,
)
from decision_sdk.tier1_runtime.validate import validate_input


class ProjectConfig:
    """
    Indexes experiments, variations, groups, audiences, rollouts and flags.

    Usage::

        config = ProjectConfig.from_datafile(json.loads(raw))
        experiment = config.get_experiment_from_key("checkout_test")
    """

    def __init__(self, datafile: Datafile) -> None:
        self.datafile = datafile
        self.revision = datafile.revision

        self.group_id_map: dict[str, Group] = {g.id: g for g in datafile.groups}

        experiments: list[Experiment] = list(datafile.experiments)
        for group in datafile.groups:
            for experiment in group.experiments:
                experiments.append(experiment.model_copy(update={"group_id": group.id}))

        self.rollout_id_map: dict[str, Rollout] = {r.id: r for r in datafile.rollouts}
        rules = [rule for r in datafile.rollouts for rule in r.experiments]

        self.experiment_id_map: dict[str, Experiment] = {}
        self.experiment_key_map: dict[str, Experiment] = {}
        for experiment in experiments + rules:
            self.experiment_id_map[experiment.id] = experiment
            self.experiment_key_map[experiment.key] = experiment

        self.variation_id_map: dict[str, Variation] = {}
        for experiment in self.experiment_id_map.values():
            for variation in experiment.variations:
                self.variation_id_map[variation.id] = variation

        # typedAudiences take precedence over legacy audiences with the same id
        self.audiences_by_id: dict[str, Audience] = {a.id: a for a in datafile.audiences}
        self.audiences_by_id.update({a.id: a for a in datafile.typed_audiences})

        self.feature_key_map: dict[str, FeatureFlag] = {
            f.key: f for f in datafile.feature_flags
        }
        self.flag_variations_map: dict[str, list[Variation]] = {
            f.key: self._collect_flag_variations(f) for f in datafile.feature_flags
        }

    @classmethod
    def from_datafile(cls, data: dict[str, Any]) -> "ProjectConfig":
        """Validate a decoded datafile and index it. Raises ValidationError."""
        return cls(validate_input(Datafile, data))

    def _collect_flag_variations(self, feature: FeatureFlag) -> list[Variation]:
        rules: list[Experiment] = []
        for experiment_id in feature.experiment_ids:
            experiment = self.experiment_id_map.get(experiment_id)
            if experiment is not None:
                rules.append(experiment)
        rollout = self.rollout_id_map.get(feature.rollout_id or "")
        if rollout is not None:
            rules.extend(rollout.experiments)

        seen: set[str] = set()
        variations: list[Variation] = []
        for rule in rules:
            for variation in rule.variations:
                if variation.id not in seen:
                    seen.add(variation.id)
                    variations.append(variation)
        return variations

    # ── Lookups ───────────────────────────────────────────────────────────────

    def get_experiment_from_key(self, experiment_key: str) -> Experiment:
        experiment = self.experiment_key_map.get(experiment_key)
        if experiment is None:
            raise InvalidExperimentError(
                user_message=f"Experiment key {experiment_key!r} is not in datafile.",
                experiment_key=experiment_key,
            )
        return experiment

    def get_experiment_from_id(self, experiment_id: str) -> Experiment:
        experiment = self.experiment_id_map.get(experiment_id)
        if experiment is None:
            raise InvalidExperimentError(
                user_message=f"Experiment ID {experiment_id!r} is not in datafile.",
                experiment_id=experiment_id,
            )
        return experiment

    def get_variation_from_id(self, variation_id: str) -> Variation | None:
        return self.variation_id_map.get(variation_id)

    def get_variation_key_from_id(self, variation_id: str) -> str | None:
        variation = self.variation_id_map.get(variation_id)
        return variation.key if variation else None

    def get_flag_variation_by_key(self, flag_key: str, variation_key: str) -> Variation | None:
        for variation in self.flag_variations_map.get(flag_key, []):
            if variation.key == variation_key:
                return variation
        return None

    def get_feature_from_key(self, feature_key: str) -> FeatureFlag | None:
        return self.feature_key_map.get(feature_key)

    def is_active(self, experiment: Experiment) -> bool:
        return experiment.is_running


__sdk_export__ = {
    "exports": ["ProjectConfig"],
    "description": "Indexed read-only view over a datafile",
    "tier": "tier1_runtime",
    "module": "project_config",
}
