"""Tests for tier2_reliability modules."""
from __future__ import annotations

import threading

import pytest

from decision_sdk.tier0_core.config import _reset_config
from decision_sdk.tier0_core.errors import InvalidUserIdError, UserNotInForcedVariationError
from decision_sdk.tier2_reliability.fallback import with_fallback
from decision_sdk.tier2_reliability.forced_variations import ForcedVariationStore
from decision_sdk.tier2_reliability.user_profile import (
    InMemoryUserProfileService,
    UserProfileService,
    UserProfileTracker,
    _reset_user_profile_service,
    get_user_profile_service,
    load_profile,
    resolve_experiment_bucket_map,
    save_profile,
)

STICKY = "$opt_experiment_bucket_map"


# ── fallback ───────────────────────────────────────────────────────────────

class TestFallback:
    def test_returns_value_on_success(self):
        @with_fallback(default="fallback")
        def ok() -> str:
            return "primary"

        assert ok() == "primary"

    def test_returns_default_on_error(self):
        @with_fallback(default="fallback")
        def broken() -> str:
            raise RuntimeError("down")

        assert broken() == "fallback"

    def test_reraise_types_propagate(self):
        @with_fallback(default=None, reraise=KeyError)
        def broken() -> None:
            raise KeyError("x")

        with pytest.raises(KeyError):
            broken()

    def test_preserves_name(self):
        @with_fallback(default=None)
        def named() -> None:
            return None

        assert named.__name__ == "named"


# ── forced_variations ──────────────────────────────────────────────────────

class TestForcedVariationStore:
    def test_set_and_get(self):
        store = ForcedVariationStore()
        assert store.set("u1", "exp1", "var1") is True
        assert store.get("u1", "exp1") == "var1"
        assert store.get("u1", "exp2") is None
        assert store.get("u2", "exp1") is None

    def test_overwrite(self):
        store = ForcedVariationStore()
        store.set("u1", "exp1", "var1")
        store.set("u1", "exp1", "var2")
        assert store.get("u1", "exp1") == "var2"

    def test_none_removes(self):
        store = ForcedVariationStore()
        store.set("u1", "exp1", "var1")
        assert store.set("u1", "exp1", None) is True
        assert store.get("u1", "exp1") is None
        assert store.has_user("u1")

    def test_removing_unknown_user_fails(self):
        store = ForcedVariationStore()
        assert store.set("ghost", "exp1", None) is False
        with pytest.raises(UserNotInForcedVariationError):
            store.remove("ghost", "exp1")

    def test_invalid_user_id(self):
        store = ForcedVariationStore()
        assert store.set("", "exp1", "var1") is False
        with pytest.raises(InvalidUserIdError):
            store.remove("", "exp1")

    def test_clear_and_snapshot(self):
        store = ForcedVariationStore()
        store.set("u1", "exp1", "var1")
        snap = store.snapshot()
        snap["u1"]["exp1"] = "mutated"
        assert store.get("u1", "exp1") == "var1"
        store.clear()
        assert store.snapshot() == {}

    def test_concurrent_writers(self):
        store = ForcedVariationStore()

        def writer(worker: int) -> None:
            for i in range(200):
                store.set(f"user-{i % 10}", f"exp-{worker}-{i}", f"var-{i}")

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = store.snapshot()
        assert len(snap) == 10
        assert sum(len(exps) for exps in snap.values()) == 8 * 200


# ── user_profile ───────────────────────────────────────────────────────────

class TestInMemoryUserProfileService:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryUserProfileService(), UserProfileService)

    def test_round_trip_is_copied(self):
        service = InMemoryUserProfileService()
        profile = {"user_id": "u1", "experiment_bucket_map": {"e1": {"variation_id": "v1"}}}
        service.save(profile)
        profile["experiment_bucket_map"]["e1"]["variation_id"] = "mutated"
        assert service.lookup("u1")["experiment_bucket_map"]["e1"]["variation_id"] == "v1"
        assert service.lookup("u2") is None

    def test_clear(self):
        service = InMemoryUserProfileService()
        service.save({"user_id": "u1", "experiment_bucket_map": {}})
        service.clear()
        assert service.lookup("u1") is None


class TestUserProfileTracker:
    def test_stored_variation_id(self):
        tracker = UserProfileTracker({"e1": {"variation_id": "v1"}, "e2": "garbage"})
        assert tracker.stored_variation_id("e1") == "v1"
        assert tracker.stored_variation_id("e2") is None
        assert tracker.stored_variation_id("e3") is None

    def test_update_marks_profile(self):
        tracker = UserProfileTracker({})
        tracker.update("e1", "v1")
        assert tracker.is_profile_updated
        assert tracker.user_profile == {"e1": {"variation_id": "v1"}}

    def test_update_without_profile_is_noop(self):
        tracker = UserProfileTracker()
        tracker.update("e1", "v1")
        assert tracker.user_profile is None
        assert not tracker.is_profile_updated


class TestProfileLoading:
    def test_no_service(self):
        assert load_profile(None, "u1") == {}

    def test_miss(self, recording_service_factory):
        assert load_profile(recording_service_factory(), "u1") == {}

    def test_lookup_failure_is_tolerated(self, recording_service_factory):
        service = recording_service_factory(fail=True)
        assert load_profile(service, "u1") == {}
        assert service.lookups == ["u1"]

    def test_invalid_record_is_ignored(self, recording_service_factory):
        service = recording_service_factory(profile={"experiment_bucket_map": "nope"})
        assert load_profile(service, "u1") == {}

    def test_attribute_map_wins(self, recording_service_factory):
        service = recording_service_factory(
            profile={
                "user_id": "u1",
                "experiment_bucket_map": {"e1": {"variation_id": "stored"}, "e2": {"variation_id": "kept"}},
            }
        )
        merged = resolve_experiment_bucket_map(
            service, "u1", {STICKY: {"e1": {"variation_id": "attr"}}}, STICKY
        )
        assert merged == {"e1": {"variation_id": "attr"}, "e2": {"variation_id": "kept"}}

    def test_non_dict_attribute_map_ignored(self):
        assert resolve_experiment_bucket_map(None, "u1", {STICKY: "bad"}, STICKY) == {}


class TestProfileSaving:
    def test_saves_only_when_updated(self, recording_service_factory):
        service = recording_service_factory()
        tracker = UserProfileTracker({})
        assert save_profile(service, "u1", tracker) is False
        tracker.update("e1", "v1")
        assert save_profile(service, "u1", tracker) is True
        assert service.saves == [{"user_id": "u1", "experiment_bucket_map": {"e1": {"variation_id": "v1"}}}]

    def test_save_failure_is_tolerated(self, recording_service_factory):
        service = recording_service_factory(fail=True)
        tracker = UserProfileTracker({})
        tracker.update("e1", "v1")
        assert save_profile(service, "u1", tracker) is False
        assert len(service.saves) == 1


class TestUserProfileProvider:
    def test_none_backend(self):
        assert get_user_profile_service() is None

    def test_memory_backend(self, monkeypatch):
        monkeypatch.setenv("DECISION_USER_PROFILE_BACKEND", "memory")
        _reset_config()
        _reset_user_profile_service()
        service = get_user_profile_service()
        assert isinstance(service, InMemoryUserProfileService)
        assert get_user_profile_service() is service
