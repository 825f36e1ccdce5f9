"""
decision_sdk.tier3_platform.bucketer
──────────────────────────────────────
Deterministic traffic assignment. A user is hashed onto a bucket value in
[0, 10000) and handed the first entity whose range covers that value. Every
SDK implementation must compute the same bucket for the same key, so the
hash recipe is fixed: MurmurHash3 x86 32-bit, seed 1, over UTF-8 bytes.

Requires no external service; works entirely in-process.
"""
from __future__ import annotations

import mmh3

from decision_sdk.tier0_core.errors import InvalidBucketingIdError, InvalidGroupError
from decision_sdk.tier0_core.logging import get_logger
from decision_sdk.tier0_core.models import GROUP_POLICY_RANDOM, Experiment, Group, TrafficAllocation
from decision_sdk.tier1_runtime.project_config import ProjectConfig
from decision_sdk.tier1_runtime.result import DecisionResult, ReasonLog

logger = get_logger(__name__)

HASH_SEED = 1
MAX_HASH_VALUE = 2 ** 32
MAX_TRAFFIC_VALUE = 10000

USER_NOT_IN_ANY_EXPERIMENT = "User %s is not in any experiment of group %s."
USER_NOT_BUCKETED_INTO_EXPERIMENT_IN_GROUP = "User %s is not in experiment %s of group %s."
USER_BUCKETED_INTO_EXPERIMENT_IN_GROUP = "User %s is in experiment %s of group %s."
USER_ASSIGNED_TO_EXPERIMENT_BUCKET = "Assigned bucket %s to user with bucketing ID %s."
INVALID_VARIATION_ID = "Bucketed into an invalid variation ID. Returning null."


def generate_bucket_value(bucketing_key: str) -> int:
    """
    Map *bucketing_key* onto an integer in [0, MAX_TRAFFIC_VALUE).

    Raises InvalidBucketingIdError for anything but a string.
    """
    if not isinstance(bucketing_key, str):
        raise InvalidBucketingIdError(
            user_message="Unable to generate hash for bucketing ID.",
            detail=f"Bucketing key must be a string, got {type(bucketing_key).__name__}.",
        )
    hash_value = mmh3.hash(bucketing_key, HASH_SEED, signed=False)
    ratio = hash_value / MAX_HASH_VALUE
    return int(ratio * MAX_TRAFFIC_VALUE)


def find_bucket(bucket_value: int, traffic_allocation: list[TrafficAllocation]) -> str | None:
    """Entity id of the first range whose upper bound exceeds *bucket_value*."""
    for allocation in traffic_allocation:
        if bucket_value < allocation.end_of_range:
            return allocation.entity_id
    return None


def bucket_user_into_experiment(group: Group, bucketing_id: str, user_id: str) -> str | None:
    """Experiment id the user falls into within a mutually exclusive group."""
    bucket_value = generate_bucket_value(f"{bucketing_id}{group.id}")
    logger.debug("user_assigned_to_group_bucket", bucket_value=bucket_value, user_id=user_id, group_id=group.id)
    return find_bucket(bucket_value, group.traffic_allocation)


def bucket(
    user_id: str,
    bucketing_id: str,
    experiment: Experiment,
    config: ProjectConfig,
) -> DecisionResult[str | None]:
    """
    Variation id the user is bucketed into for *experiment*, or None.

    Raises InvalidGroupError if the experiment names a group the datafile
    does not define.
    """
    reasons = ReasonLog()

    if experiment.group_id:
        group = config.group_id_map.get(experiment.group_id)
        if group is None:
            raise InvalidGroupError(
                user_message=f"Group ID {experiment.group_id!r} is not in datafile.",
                group_id=experiment.group_id,
                experiment_key=experiment.key,
            )
        if group.policy == GROUP_POLICY_RANDOM:
            bucketed_experiment_id = bucket_user_into_experiment(group, bucketing_id, user_id)

            if bucketed_experiment_id is None:
                logger.info("user_not_in_any_experiment_of_group", user_id=user_id, group_id=group.id)
                reasons.add(USER_NOT_IN_ANY_EXPERIMENT, user_id, group.id)
                return reasons.result(None)

            if bucketed_experiment_id != experiment.id:
                logger.info(
                    "user_not_in_experiment_of_group",
                    user_id=user_id,
                    experiment_key=experiment.key,
                    group_id=group.id,
                )
                reasons.add(USER_NOT_BUCKETED_INTO_EXPERIMENT_IN_GROUP, user_id, experiment.key, group.id)
                return reasons.result(None)

            logger.info(
                "user_in_experiment_of_group",
                user_id=user_id,
                experiment_key=experiment.key,
                group_id=group.id,
            )
            reasons.add(USER_BUCKETED_INTO_EXPERIMENT_IN_GROUP, user_id, experiment.key, group.id)

    bucket_value = generate_bucket_value(f"{bucketing_id}{experiment.id}")
    logger.debug("user_assigned_to_experiment_bucket", bucket_value=bucket_value, user_id=user_id)
    reasons.add(USER_ASSIGNED_TO_EXPERIMENT_BUCKET, bucket_value, user_id)

    entity_id = find_bucket(bucket_value, experiment.traffic_allocation)
    if entity_id is not None and entity_id not in experiment.variation_id_map:
        if entity_id:
            logger.warning("invalid_variation_id", entity_id=entity_id, experiment_key=experiment.key)
            reasons.add(INVALID_VARIATION_ID)
        return reasons.result(None)

    return reasons.result(entity_id)


__sdk_export__ = {
    "exports": ["generate_bucket_value", "find_bucket", "bucket", "bucket_user_into_experiment"],
    "description": "MurmurHash3 bucketing over traffic allocations",
    "tier": "tier3_platform",
    "module": "bucketer",
}
