"""
decision_sdk test configuration.

All tests run without an external sticky-bucketing store by default.
Override by setting environment variables before running pytest.
"""
from __future__ import annotations

import copy
import json
import os

import pytest

# ── Force test settings ───────────────────────────────────────────────────
# These must be set before any decision_sdk modules are imported.

os.environ.setdefault("DECISION_LOG_LEVEL", "DEBUG")
os.environ.setdefault("DECISION_LOG_FORMAT", "console")
os.environ.setdefault("DECISION_ERROR_BACKEND", "none")
os.environ.setdefault("DECISION_USER_PROFILE_BACKEND", "none")


# ── Datafile ───────────────────────────────────────────────────────────────

def _variation(id_: str, key: str, enabled: bool = False) -> dict:
    return {"id": id_, "key": key, "featureEnabled": enabled, "variables": []}


def _full(entity_id: str) -> list[dict]:
    return [{"entityId": entity_id, "endOfRange": 10000}]


DATAFILE: dict = {
    "version": "4",
    "revision": "42",
    "projectId": "111001",
    "accountId": "12001",
    "audiences": [
        {
            "id": "11154",
            "name": "chrome_users",
            "conditions": json.dumps(
                ["and", ["or", ["or", {"name": "browser_type", "type": "custom_attribute", "value": "chrome"}]]]
            ),
        },
        {"id": "20001", "name": "legacy_adults", "conditions": "[\"or\"]"},
    ],
    "typedAudiences": [
        {
            "id": "20001",
            "name": "adults",
            "conditions": ["and", {"name": "age", "type": "custom_attribute", "match": "ge", "value": 18}],
        },
        {
            "id": "20002",
            "name": "us_users",
            "conditions": ["or", {"name": "country", "type": "custom_attribute", "match": "exact", "value": "US"}],
        },
        {
            "id": "20003",
            "name": "beta_plan",
            "conditions": ["or", {"name": "plan", "type": "custom_attribute", "match": "exact", "value": "beta"}],
        },
    ],
    "experiments": [
        {
            "id": "111127",
            "key": "checkout_test",
            "status": "Running",
            "layerId": "4",
            "audienceIds": [],
            "trafficAllocation": _full("111128"),
            "variations": [_variation("111128", "control"), _variation("111129", "treatment", True)],
            "forcedVariations": {"vip_user": "treatment", "broken_user": "missing_variation"},
        },
        {
            "id": "111130",
            "key": "paused_test",
            "status": "Paused",
            "audienceIds": [],
            "trafficAllocation": _full("111131"),
            "variations": [_variation("111131", "only")],
        },
        {
            "id": "111140",
            "key": "audience_test",
            "status": "Running",
            "audienceIds": ["11154"],
            "trafficAllocation": _full("111141"),
            "variations": [_variation("111141", "on", True)],
        },
        {
            "id": "111150",
            "key": "empty_allocation_test",
            "status": "Running",
            "audienceIds": [],
            "trafficAllocation": [],
            "variations": [_variation("111151", "unreachable")],
        },
        {
            "id": "222001",
            "key": "feature_test",
            "status": "Running",
            "audienceIds": ["20003"],
            "trafficAllocation": _full("222002"),
            "variations": [_variation("222002", "variation_a", True), _variation("222003", "variation_b")],
        },
    ],
    "groups": [
        {
            "id": "19228",
            "policy": "random",
            "trafficAllocation": [{"entityId": "32222", "endOfRange": 10000}],
            "experiments": [
                {
                    "id": "32222",
                    "key": "group_exp_1",
                    "status": "Running",
                    "audienceIds": [],
                    "trafficAllocation": _full("32223"),
                    "variations": [_variation("32223", "group_var_1")],
                },
                {
                    "id": "32224",
                    "key": "group_exp_2",
                    "status": "Running",
                    "audienceIds": [],
                    "trafficAllocation": _full("32225"),
                    "variations": [_variation("32225", "group_var_2")],
                },
            ],
        }
    ],
    "rollouts": [
        {
            "id": "rollout_1",
            "experiments": [
                {
                    "id": "300001",
                    "key": "rule_us",
                    "status": "Running",
                    "audienceIds": ["20002"],
                    "trafficAllocation": [],
                    "variations": [_variation("300002", "us_on", True)],
                },
                {
                    "id": "300003",
                    "key": "rule_adult",
                    "status": "Running",
                    "audienceIds": ["20001"],
                    "trafficAllocation": _full("300004"),
                    "variations": [_variation("300004", "adult_on", True)],
                },
                {
                    "id": "300005",
                    "key": "everyone_else",
                    "status": "Running",
                    "audienceIds": ["20002"],
                    "trafficAllocation": _full("300006"),
                    "variations": [_variation("300006", "everyone_on", True)],
                },
            ],
        },
        {"id": "rollout_empty", "experiments": []},
    ],
    "featureFlags": [
        {"id": "f1", "key": "checkout_flag", "experimentIds": ["222001"], "rolloutId": "rollout_1", "variables": []},
        {"id": "f2", "key": "no_rollout_flag", "experimentIds": [], "rolloutId": "", "variables": []},
        {"id": "f3", "key": "bad_rollout_flag", "experimentIds": [], "rolloutId": "missing", "variables": []},
        {"id": "f4", "key": "empty_rollout_flag", "experimentIds": [], "rolloutId": "rollout_empty", "variables": []},
    ],
}


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """
    Reset cached config and provider singletons between tests.
    This ensures each test sees its own env vars with no state bleed.
    """
    from decision_sdk.tier0_core.config import _reset_config
    from decision_sdk.tier0_core.logging import clear_context
    from decision_sdk.tier2_reliability.user_profile import _reset_user_profile_service
    from decision_sdk.tier3_platform.decision_service import _reset_decision_service

    _reset_config()
    _reset_user_profile_service()
    _reset_decision_service()

    yield

    _reset_config()
    _reset_user_profile_service()
    _reset_decision_service()
    clear_context()


@pytest.fixture
def datafile() -> dict:
    """A fresh copy of the test datafile, safe to mutate."""
    return copy.deepcopy(DATAFILE)


@pytest.fixture
def config(datafile):
    from decision_sdk.tier1_runtime.project_config import ProjectConfig
    return ProjectConfig.from_datafile(datafile)


@pytest.fixture
def profile_service():
    from decision_sdk.tier2_reliability.user_profile import InMemoryUserProfileService
    return InMemoryUserProfileService()


@pytest.fixture
def decision_service(profile_service):
    from decision_sdk.tier3_platform.decision_service import DecisionService
    return DecisionService(user_profile_service=profile_service)


class RecordingProfileService:
    """Profile store that counts calls and can be told to fail."""

    def __init__(self, profile: dict | None = None, fail: bool = False) -> None:
        self.profile = profile
        self.fail = fail
        self.lookups: list[str] = []
        self.saves: list[dict] = []

    def lookup(self, user_id: str) -> dict | None:
        self.lookups.append(user_id)
        if self.fail:
            raise RuntimeError("profile store unavailable")
        return copy.deepcopy(self.profile)

    def save(self, user_profile: dict) -> None:
        self.saves.append(copy.deepcopy(user_profile))
        if self.fail:
            raise RuntimeError("profile store unavailable")
        self.profile = copy.deepcopy(user_profile)


@pytest.fixture
def recording_service_factory():
    return RecordingProfileService
