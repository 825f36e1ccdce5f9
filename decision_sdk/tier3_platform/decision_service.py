"""
decision_sdk.tier3_platform.decision_service
──────────────────────────────────────────────
Decides which variation a user sees for an experiment, and which experiment
or rollout rule serves a feature flag.

Experiment pipeline (first matching step wins):

    running? → forced variation → whitelist → sticky profile
             → audience gate → bucketing → persist to profile

Feature pipeline: each attached experiment in order (user-context forced
decisions first), then the rollout's delivery rules. A user who matches a
targeted rule's audience but falls outside its allocation goes straight to
the final "everyone else" rule.

Each call reads the user profile at most once before deciding and saves it
at most once after deciding.

Usage::

    service = get_decision_service()
    result = service.get_variation(config, experiment, UserContext("user-1"))
    result.result     # "treatment" | None
    result.messages() # human-readable trace
"""
from __future__ import annotations

import json
from typing import Any, Collection, Mapping

from decision_sdk.tier0_core.config import get_config
from decision_sdk.tier0_core.errors import (
    InvalidExperimentError,
    InvalidUserIdError,
    UserNotInForcedVariationError,
)
from decision_sdk.tier0_core.logging import get_logger
from decision_sdk.tier0_core.models import Experiment, FeatureFlag, Variation
from decision_sdk.tier1_runtime.context import (
    BUCKETING_ID_ATTRIBUTE,
    STICKY_BUCKETING_ATTRIBUTE,
    DecideOption,
    ForcedDecisionKey,
    UserContext,
    bound_user,
)
from decision_sdk.tier1_runtime.project_config import ProjectConfig
from decision_sdk.tier1_runtime.result import (
    Decision,
    DecisionResult,
    DecisionSource,
    ReasonLog,
)
from decision_sdk.tier2_reliability.forced_variations import ForcedVariationStore
from decision_sdk.tier2_reliability.user_profile import (
    UserProfileService,
    UserProfileTracker,
    get_user_profile_service,
    resolve_experiment_bucket_map,
    save_profile,
)
from decision_sdk.tier3_platform import bucketer
from decision_sdk.tier3_platform.audience_evaluator import AudienceEvaluator, ConditionEvaluator

logger = get_logger(__name__)

EXPERIMENT_EVALUATION = "experiment"
RULE_EVALUATION = "rule"
EVERYONE_ELSE = "Everyone Else"

# ── Reason templates ──────────────────────────────────────────────────────────

EXPERIMENT_NOT_RUNNING = "Experiment %s is not running."
RETURNING_STORED_VARIATION = (
    'Returning previously activated variation "%s" of experiment "%s" for user "%s" from user profile.'
)
USER_NOT_IN_EXPERIMENT = "User %s does not meet conditions to be in experiment %s."
USER_HAS_NO_VARIATION = "User %s is in no variation of experiment %s."
USER_HAS_VARIATION = "User %s is in variation %s of experiment %s."
USER_FORCED_IN_VARIATION = "User %s is forced in variation %s."
FORCED_BUCKETING_FAILED = "Variation key %s is not in datafile. Not activating user %s."
EVALUATING_AUDIENCES_COMBINED = 'Evaluating audiences for %s "%s": %s.'
AUDIENCE_EVALUATION_RESULT_COMBINED = "Audiences for %s %s collectively evaluated to %s."
USER_IN_ROLLOUT = "User %s is in rollout of feature %s."
USER_NOT_IN_ROLLOUT = "User %s is not in rollout of feature %s."
FEATURE_HAS_NO_EXPERIMENTS = "Feature %s is not attached to any experiments."
USER_MEETS_CONDITIONS_FOR_TARGETING_RULE = "User %s meets conditions for targeting rule %s."
USER_DOESNT_MEET_CONDITIONS_FOR_TARGETING_RULE = "User %s does not meet conditions for targeting rule %s."
USER_NOT_BUCKETED_INTO_TARGETING_RULE = (
    "User %s not bucketed into targeting rule %s due to traffic allocation. Trying everyone rule."
)
USER_BUCKETED_INTO_TARGETING_RULE = "User %s bucketed into targeting rule %s."
NO_ROLLOUT_EXISTS = "There is no rollout of feature %s."
INVALID_ROLLOUT_ID = "Invalid rollout ID %s attached to feature %s"
ROLLOUT_HAS_NO_EXPERIMENTS = "Rollout of feature %s has no experiments"
USER_HAS_FORCED_VARIATION = "Variation %s is mapped to experiment %s and user %s in the forced variation map."
USER_HAS_FORCED_DECISION_WITH_RULE_SPECIFIED = (
    "Variation (%s) is mapped to flag (%s), rule (%s) and user (%s) in the forced decision map."
)
USER_HAS_FORCED_DECISION_WITH_NO_RULE_SPECIFIED = (
    "Variation (%s) is mapped to flag (%s) and user (%s) in the forced decision map."
)
USER_HAS_FORCED_DECISION_WITH_RULE_SPECIFIED_BUT_INVALID = (
    "Invalid variation is mapped to flag (%s), rule (%s) and user (%s) in the forced decision map."
)
USER_HAS_FORCED_DECISION_WITH_NO_RULE_SPECIFIED_BUT_INVALID = (
    "Invalid variation is mapped to flag (%s) and user (%s) in the forced decision map."
)


class DecisionService:
    """
    Stateless apart from the forced-variation store it owns; share one
    instance across threads.
    """

    def __init__(
        self,
        user_profile_service: UserProfileService | None = None,
        forced_variations: ForcedVariationStore | None = None,
        condition_evaluators: Mapping[str, ConditionEvaluator] | None = None,
    ) -> None:
        self.user_profile_service = user_profile_service
        self.forced_variations = forced_variations if forced_variations is not None else ForcedVariationStore()
        self.audience_evaluator = AudienceEvaluator(condition_evaluators)

    # ── Experiment pipeline ───────────────────────────────────────────────────

    def get_variation(
        self,
        config: ProjectConfig,
        experiment: Experiment,
        user: UserContext,
        options: Collection[DecideOption] = (),
    ) -> DecisionResult[str | None]:
        """Variation key *user* is assigned for *experiment*, or None."""
        ignore_ups = self._should_ignore_user_profile(options)
        with bound_user(user):
            tracker = self._load_tracker(user, ignore_ups)
            result = self._resolve_variation(config, experiment, user, ignore_ups, tracker)
            if not ignore_ups:
                save_profile(self.user_profile_service, user.user_id, tracker)
        return self._with_reasons(result, options)

    def _resolve_variation(
        self,
        config: ProjectConfig,
        experiment: Experiment,
        user: UserContext,
        ignore_ups: bool,
        tracker: UserProfileTracker,
    ) -> DecisionResult[str | None]:
        reasons = ReasonLog()
        user_id = user.user_id

        if not config.is_active(experiment):
            logger.info("experiment_not_running", experiment_key=experiment.key)
            reasons.add(EXPERIMENT_NOT_RUNNING, experiment.key)
            return reasons.result(None)

        forced = self._get_forced_variation_for(config, experiment, user_id)
        reasons.extend(forced)
        if forced.result:
            return reasons.result(forced.result)

        whitelisted = self._get_whitelisted_variation(experiment, user_id)
        reasons.extend(whitelisted)
        if whitelisted.result:
            return reasons.result(whitelisted.result.key)

        if not ignore_ups:
            stored = self._get_stored_variation(config, experiment, user_id, tracker)
            if stored is not None:
                logger.info(
                    "returning_stored_variation",
                    variation_key=stored.key,
                    experiment_key=experiment.key,
                )
                reasons.add(RETURNING_STORED_VARIATION, stored.key, experiment.key, user_id)
                return reasons.result(stored.key)

        in_audience = self._check_audience(config, experiment, EXPERIMENT_EVALUATION, user, experiment.key)
        reasons.extend(in_audience)
        if not in_audience.result:
            logger.info("user_not_in_experiment", experiment_key=experiment.key)
            reasons.add(USER_NOT_IN_EXPERIMENT, user_id, experiment.key)
            return reasons.result(None)

        variation = self._bucket(config, experiment, user, reasons)
        if variation is None:
            logger.debug("user_has_no_variation", experiment_key=experiment.key)
            reasons.add(USER_HAS_NO_VARIATION, user_id, experiment.key)
            return reasons.result(None)

        logger.info("user_bucketed", variation_key=variation.key, experiment_key=experiment.key)
        reasons.add(USER_HAS_VARIATION, user_id, variation.key, experiment.key)
        if not ignore_ups:
            tracker.update(experiment.id, variation.id)
        return reasons.result(variation.key)

    def _get_whitelisted_variation(self, experiment: Experiment, user_id: str) -> DecisionResult[Variation | None]:
        reasons = ReasonLog()
        variation_key = experiment.forced_variations.get(user_id)
        if variation_key is None:
            return reasons.result(None)

        variation = experiment.variation_key_map.get(variation_key)
        if variation is None:
            logger.error("forced_bucketing_failed", variation_key=variation_key, experiment_key=experiment.key)
            reasons.add(FORCED_BUCKETING_FAILED, variation_key, user_id)
            return reasons.result(None)

        logger.info("user_forced_in_variation", variation_key=variation_key, experiment_key=experiment.key)
        reasons.add(USER_FORCED_IN_VARIATION, user_id, variation_key)
        return reasons.result(variation)

    def _get_stored_variation(
        self,
        config: ProjectConfig,
        experiment: Experiment,
        user_id: str,
        tracker: UserProfileTracker,
    ) -> Variation | None:
        variation_id = tracker.stored_variation_id(experiment.id)
        if variation_id is None:
            return None
        variation = config.get_variation_from_id(variation_id)
        if variation is None:
            logger.info(
                "saved_variation_not_found",
                variation_id=variation_id,
                experiment_key=experiment.key,
            )
        return variation

    def _check_audience(
        self,
        config: ProjectConfig,
        experiment: Experiment,
        evaluation_type: str,
        user: UserContext,
        logging_key: str,
    ) -> DecisionResult[bool]:
        reasons = ReasonLog()
        conditions = experiment.audience_expression
        logger.debug(
            "evaluating_audiences",
            evaluation_type=evaluation_type,
            key=logging_key,
            conditions=conditions,
            attributes=user.attributes,
        )
        reasons.add(EVALUATING_AUDIENCES_COMBINED, evaluation_type, logging_key, json.dumps(conditions))

        passed = self.audience_evaluator.evaluate(conditions, config.audiences_by_id, user.attributes)
        logger.info(
            "audience_evaluation_result",
            evaluation_type=evaluation_type,
            key=logging_key,
            result=passed,
        )
        reasons.add(AUDIENCE_EVALUATION_RESULT_COMBINED, evaluation_type, logging_key, str(passed).upper())
        return reasons.result(passed)

    def _bucket(
        self,
        config: ProjectConfig,
        experiment: Experiment,
        user: UserContext,
        reasons: ReasonLog,
    ) -> Variation | None:
        bucketing_id = self._get_bucketing_id(user.user_id, user.attributes)
        bucketed = bucketer.bucket(user.user_id, bucketing_id, experiment, config)
        reasons.extend(bucketed)
        if not bucketed.result:
            return None
        return experiment.variation_id_map.get(bucketed.result)

    def _get_bucketing_id(self, user_id: str, attributes: dict[str, Any] | None) -> str:
        """``$opt_bucketing_id`` when it is a string, otherwise the user id."""
        if not attributes or BUCKETING_ID_ATTRIBUTE not in attributes:
            return user_id
        bucketing_id = attributes[BUCKETING_ID_ATTRIBUTE]
        if isinstance(bucketing_id, str):
            logger.debug("valid_bucketing_id", bucketing_id=bucketing_id)
            return bucketing_id
        logger.warning("bucketing_id_not_string", bucketing_id_type=type(bucketing_id).__name__)
        return user_id

    # ── Feature pipeline ──────────────────────────────────────────────────────

    def get_variation_for_feature(
        self,
        config: ProjectConfig,
        feature: FeatureFlag,
        user: UserContext,
        options: Collection[DecideOption] = (),
    ) -> DecisionResult[Decision]:
        return self.get_variations_for_feature_list(config, [feature], user, options)[0]

    def get_variations_for_feature_list(
        self,
        config: ProjectConfig,
        features: list[FeatureFlag],
        user: UserContext,
        options: Collection[DecideOption] = (),
    ) -> list[DecisionResult[Decision]]:
        """Decide several flags with one profile lookup and one save."""
        ignore_ups = self._should_ignore_user_profile(options)
        decisions: list[DecisionResult[Decision]] = []

        with bound_user(user):
            tracker = self._load_tracker(user, ignore_ups)

            for feature in features:
                reasons = ReasonLog()
                experiment_decision = self._get_variation_for_feature_experiment(
                    config, feature, user, ignore_ups, tracker
                )
                reasons.extend(experiment_decision)
                if experiment_decision.result.variation is not None:
                    decisions.append(reasons.result(experiment_decision.result))
                    continue

                rollout_decision = self._get_variation_for_rollout(config, feature, user)
                reasons.extend(rollout_decision)
                if rollout_decision.result.variation is not None:
                    logger.debug("user_in_rollout", feature_key=feature.key)
                    reasons.add(USER_IN_ROLLOUT, user.user_id, feature.key)
                else:
                    logger.debug("user_not_in_rollout", feature_key=feature.key)
                    reasons.add(USER_NOT_IN_ROLLOUT, user.user_id, feature.key)
                decisions.append(reasons.result(rollout_decision.result))

            if not ignore_ups:
                save_profile(self.user_profile_service, user.user_id, tracker)

        return [self._with_reasons(decision, options) for decision in decisions]

    def _get_variation_for_feature_experiment(
        self,
        config: ProjectConfig,
        feature: FeatureFlag,
        user: UserContext,
        ignore_ups: bool,
        tracker: UserProfileTracker,
    ) -> DecisionResult[Decision]:
        reasons = ReasonLog()

        if not feature.experiment_ids:
            logger.debug("feature_has_no_experiments", feature_key=feature.key)
            reasons.add(FEATURE_HAS_NO_EXPERIMENTS, feature.key)

        for experiment_id in feature.experiment_ids:
            experiment = config.experiment_id_map.get(experiment_id)
            if experiment is None:
                logger.error("experiment_id_not_in_datafile", experiment_id=experiment_id, feature_key=feature.key)
                continue

            decision = self.get_variation_from_experiment_rule(
                config, feature.key, experiment, user, ignore_ups, tracker
            )
            reasons.extend(decision)
            if decision.result:
                variation = experiment.variation_key_map.get(decision.result)
                if variation is None:
                    variation = config.get_flag_variation_by_key(feature.key, decision.result)
                return reasons.result(Decision(experiment, variation, DecisionSource.FEATURE_TEST))

        return reasons.result(Decision(None, None, DecisionSource.FEATURE_TEST))

    def get_variation_from_experiment_rule(
        self,
        config: ProjectConfig,
        flag_key: str,
        rule: Experiment,
        user: UserContext,
        ignore_ups: bool,
        tracker: UserProfileTracker,
    ) -> DecisionResult[str | None]:
        """User-context forced decision for (flag, rule), else the experiment pipeline."""
        reasons = ReasonLog()
        forced = self.find_validated_forced_decision(config, user, flag_key, rule.key)
        reasons.extend(forced)
        if forced.result is not None:
            return reasons.result(forced.result.key)

        decision = self._resolve_variation(config, rule, user, ignore_ups, tracker)
        reasons.extend(decision)
        return reasons.result(decision.result)

    def _get_variation_for_rollout(
        self,
        config: ProjectConfig,
        feature: FeatureFlag,
        user: UserContext,
    ) -> DecisionResult[Decision]:
        reasons = ReasonLog()
        no_decision = Decision(None, None, DecisionSource.ROLLOUT)

        if not feature.rollout_id:
            logger.debug("no_rollout_exists", feature_key=feature.key)
            reasons.add(NO_ROLLOUT_EXISTS, feature.key)
            return reasons.result(no_decision)

        rollout = config.rollout_id_map.get(feature.rollout_id)
        if rollout is None:
            logger.error("invalid_rollout_id", rollout_id=feature.rollout_id, feature_key=feature.key)
            reasons.add(INVALID_ROLLOUT_ID, feature.rollout_id, feature.key)
            return reasons.result(no_decision)

        rules = rollout.experiments
        if not rules:
            logger.error("rollout_has_no_experiments", rollout_id=feature.rollout_id)
            reasons.add(ROLLOUT_HAS_NO_EXPERIMENTS, feature.rollout_id)
            return reasons.result(no_decision)

        index = 0
        while index < len(rules):
            decision, skip_to_everyone_else = self.get_variation_from_delivery_rule(
                config, feature.key, rules, index, user
            )
            reasons.extend(decision)
            if decision.result is not None:
                rule = config.experiment_id_map.get(rules[index].id, rules[index])
                return reasons.result(Decision(rule, decision.result, DecisionSource.ROLLOUT))
            index = len(rules) - 1 if skip_to_everyone_else else index + 1

        return reasons.result(no_decision)

    def get_variation_from_delivery_rule(
        self,
        config: ProjectConfig,
        flag_key: str,
        rules: list[Experiment],
        rule_index: int,
        user: UserContext,
    ) -> tuple[DecisionResult[Variation | None], bool]:
        """
        Evaluate one delivery rule. Returns the variation (or None) and
        whether the caller should jump straight to the final rule.

        The final rule is the "everyone else" fallback and is bucketed
        without an audience check.
        """
        reasons = ReasonLog()
        rule = rules[rule_index]

        forced = self.find_validated_forced_decision(config, user, flag_key, rule.key)
        reasons.extend(forced)
        if forced.result is not None:
            return reasons.result(forced.result), False

        user_id = user.user_id
        everyone_else = rule_index == len(rules) - 1
        logging_key = EVERYONE_ELSE if everyone_else else str(rule_index + 1)

        if not everyone_else:
            in_audience = self._check_audience(config, rule, RULE_EVALUATION, user, logging_key)
            reasons.extend(in_audience)
            if not in_audience.result:
                logger.debug("user_doesnt_meet_rule_conditions", rule=logging_key)
                reasons.add(USER_DOESNT_MEET_CONDITIONS_FOR_TARGETING_RULE, user_id, logging_key)
                return reasons.result(None), False

        logger.debug("user_meets_rule_conditions", rule=logging_key)
        reasons.add(USER_MEETS_CONDITIONS_FOR_TARGETING_RULE, user_id, logging_key)

        variation = self._bucket(config, rule, user, reasons)
        if variation is not None:
            logger.debug("user_bucketed_into_rule", rule=logging_key)
            reasons.add(USER_BUCKETED_INTO_TARGETING_RULE, user_id, logging_key)
            return reasons.result(variation), False

        if everyone_else:
            return reasons.result(None), False

        logger.debug("user_not_bucketed_into_rule", rule=logging_key)
        reasons.add(USER_NOT_BUCKETED_INTO_TARGETING_RULE, user_id, logging_key)
        return reasons.result(None), True

    # ── Forced decisions (user context) ───────────────────────────────────────

    def find_validated_forced_decision(
        self,
        config: ProjectConfig,
        user: UserContext,
        flag_key: str,
        rule_key: str | None = None,
    ) -> DecisionResult[Variation | None]:
        """The user's forced decision for (flag, rule), if its variation belongs to the flag."""
        reasons = ReasonLog()
        forced = user.get_forced_decision(ForcedDecisionKey(flag_key, rule_key))
        if forced is None:
            return reasons.result(None)

        user_id = user.user_id
        variation = config.get_flag_variation_by_key(flag_key, forced.variation_key)
        if variation is not None:
            logger.info(
                "forced_decision_applied",
                variation_key=forced.variation_key,
                flag_key=flag_key,
                rule_key=rule_key,
            )
            if rule_key:
                reasons.add(
                    USER_HAS_FORCED_DECISION_WITH_RULE_SPECIFIED,
                    forced.variation_key, flag_key, rule_key, user_id,
                )
            else:
                reasons.add(USER_HAS_FORCED_DECISION_WITH_NO_RULE_SPECIFIED, forced.variation_key, flag_key, user_id)
        else:
            logger.info("forced_decision_invalid", flag_key=flag_key, rule_key=rule_key)
            if rule_key:
                reasons.add(USER_HAS_FORCED_DECISION_WITH_RULE_SPECIFIED_BUT_INVALID, flag_key, rule_key, user_id)
            else:
                reasons.add(USER_HAS_FORCED_DECISION_WITH_NO_RULE_SPECIFIED_BUT_INVALID, flag_key, user_id)
        return reasons.result(variation)

    # ── Forced variations (process-wide) ──────────────────────────────────────

    def set_forced_variation(
        self,
        config: ProjectConfig,
        experiment_key: str,
        user_id: str,
        variation_key: str | None,
    ) -> bool:
        """
        Force *user_id* into *variation_key* for *experiment_key*; ``None``
        clears the mapping. Returns False if anything could not be resolved.
        """
        if variation_key is not None and (not isinstance(variation_key, str) or not variation_key):
            logger.error("invalid_variation_key", experiment_key=experiment_key)
            return False

        try:
            experiment = config.get_experiment_from_key(experiment_key)
        except InvalidExperimentError as exc:
            logger.error("forced_variation_experiment_not_found", experiment_key=experiment_key, error=str(exc))
            return False

        if variation_key is None:
            try:
                self.forced_variations.remove(user_id, experiment.id)
            except (InvalidUserIdError, UserNotInForcedVariationError) as exc:
                logger.error("forced_variation_remove_failed", experiment_key=experiment_key, error=str(exc))
                return False
            return True

        variation = experiment.variation_key_map.get(variation_key)
        if variation is None:
            logger.error(
                "no_variation_for_experiment_key",
                variation_key=variation_key,
                experiment_key=experiment_key,
            )
            return False

        return self.forced_variations.set(user_id, experiment.id, variation.id)

    def get_forced_variation(
        self,
        config: ProjectConfig,
        experiment_key: str,
        user_id: str,
    ) -> DecisionResult[str | None]:
        """Forced variation key for (user, experiment), or None."""
        if not self.forced_variations.has_user(user_id):
            logger.debug("user_has_no_forced_variation", user_id=user_id)
            return DecisionResult(None)

        try:
            experiment = config.get_experiment_from_key(experiment_key)
        except InvalidExperimentError as exc:
            logger.error("forced_variation_experiment_not_found", experiment_key=experiment_key)
            reasons = ReasonLog()
            reasons.add(exc.user_message)
            return reasons.result(None)

        return self._get_forced_variation_for(config, experiment, user_id)

    def _get_forced_variation_for(
        self,
        config: ProjectConfig,
        experiment: Experiment,
        user_id: str,
    ) -> DecisionResult[str | None]:
        reasons = ReasonLog()
        variation_id = self.forced_variations.get(user_id, experiment.id)
        if variation_id is None:
            return reasons.result(None)

        variation_key = config.get_variation_key_from_id(variation_id)
        if variation_key is None:
            logger.debug("forced_variation_not_in_datafile", variation_id=variation_id, experiment_key=experiment.key)
            return reasons.result(None)

        logger.debug("user_has_forced_variation", variation_key=variation_key, experiment_key=experiment.key)
        reasons.add(USER_HAS_FORCED_VARIATION, variation_key, experiment.key, user_id)
        return reasons.result(variation_key)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _should_ignore_user_profile(self, options: Collection[DecideOption]) -> bool:
        return DecideOption.IGNORE_USER_PROFILE_SERVICE in options or get_config().ignore_user_profile_service

    def _with_reasons(self, result: DecisionResult[Any], options: Collection[DecideOption]) -> DecisionResult[Any]:
        """Drop the reason trace unless the caller or the settings ask for it."""
        if DecideOption.INCLUDE_REASONS in options or get_config().include_reasons:
            return result
        return DecisionResult(result.result)

    def _load_tracker(self, user: UserContext, ignore_ups: bool) -> UserProfileTracker:
        tracker = UserProfileTracker()
        if not ignore_ups:
            tracker.user_profile = resolve_experiment_bucket_map(
                self.user_profile_service,
                user.user_id,
                user.attributes,
                STICKY_BUCKETING_ATTRIBUTE,
            )
        return tracker


# ── Provider factory ───────────────────────────────────────────────────────────

_service: DecisionService | None = None


def get_decision_service() -> DecisionService:
    """Process-wide service wired to the configured user profile backend."""
    global _service
    if _service is None:
        _service = DecisionService(user_profile_service=get_user_profile_service())
    return _service


def _reset_decision_service() -> None:
    global _service
    _service = None


__sdk_export__ = {
    "exports": ["DecisionService", "get_decision_service"],
    "description": "Experiment and feature/rollout decision pipelines",
    "tier": "tier3_platform",
    "module": "decision_service",
}
