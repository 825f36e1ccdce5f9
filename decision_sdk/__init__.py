"""
decision_sdk
────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from decision_sdk.tier0_core.logging import get_logger
from decision_sdk.tier0_core.errors import (
    DecisionError,
    InvalidBucketingIdError,
    InvalidGroupError,
    InvalidExperimentError,
    ValidationError,
    ConfigurationError,
)
from decision_sdk.tier0_core.config import get_config, DecisionConfig
from decision_sdk.tier0_core.models import (
    Audience,
    Condition,
    Datafile,
    Experiment,
    FeatureFlag,
    Rollout,
    Variation,
)

from decision_sdk.tier1_runtime.project_config import ProjectConfig
from decision_sdk.tier1_runtime.context import (
    DecideOption,
    ForcedDecision,
    ForcedDecisionKey,
    UserContext,
)
from decision_sdk.tier1_runtime.result import Decision, DecisionResult, DecisionSource

from decision_sdk.tier2_reliability.forced_variations import ForcedVariationStore
from decision_sdk.tier2_reliability.user_profile import (
    InMemoryUserProfileService,
    UserProfileService,
    get_user_profile_service,
)

from decision_sdk.tier3_platform.bucketer import generate_bucket_value
from decision_sdk.tier3_platform.condition_tree import Ternary
from decision_sdk.tier3_platform.audience_evaluator import AudienceEvaluator
from decision_sdk.tier3_platform.decision_service import DecisionService, get_decision_service

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "DecisionError", "InvalidBucketingIdError", "InvalidGroupError",
    "InvalidExperimentError", "ValidationError", "ConfigurationError",
    # config
    "get_config", "DecisionConfig",
    # models
    "Audience", "Condition", "Datafile", "Experiment", "FeatureFlag",
    "Rollout", "Variation",
    # project config
    "ProjectConfig",
    # context
    "DecideOption", "ForcedDecision", "ForcedDecisionKey", "UserContext",
    # results
    "Decision", "DecisionResult", "DecisionSource",
    # stores
    "ForcedVariationStore", "InMemoryUserProfileService", "UserProfileService",
    "get_user_profile_service",
    # engine
    "generate_bucket_value", "Ternary", "AudienceEvaluator",
    "DecisionService", "get_decision_service",
]
