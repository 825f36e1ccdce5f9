"""
decision_sdk.tier2_reliability.user_profile
─────────────────────────────────────────────
Sticky bucketing. The host may plug in a store that remembers which
variation a user was bucketed into, so repeat visits keep their treatment
even after traffic allocation changes.

The store is an external collaborator: lookups and saves may raise, and any
failure is logged and treated as "no stored profile" / "saved".

Backed by: any object implementing UserProfileService, or in-memory.
Select via: DECISION_USER_PROFILE_BACKEND=none|memory
"""
from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from decision_sdk.tier0_core.config import get_config
from decision_sdk.tier0_core.errors import UserProfileError, ValidationError
from decision_sdk.tier0_core.logging import get_logger
from decision_sdk.tier0_core.models import UserProfile
from decision_sdk.tier1_runtime.validate import validate_input
from decision_sdk.tier2_reliability.fallback import with_fallback

logger = get_logger(__name__)

ExperimentBucketMap = dict[str, dict[str, str]]


# ── Protocol ───────────────────────────────────────────────────────────────

@runtime_checkable
class UserProfileService(Protocol):
    """Host-supplied sticky-bucketing store."""

    def lookup(self, user_id: str) -> dict[str, Any] | None: ...

    def save(self, user_profile: dict[str, Any]) -> None: ...


# ── In-memory store (tests and single-process hosts) ───────────────────────

class InMemoryUserProfileService:
    """Thread-safe in-process profile store."""

    def __init__(self) -> None:
        self._profiles: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def lookup(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            profile = self._profiles.get(user_id)
            return copy.deepcopy(profile) if profile is not None else None

    def save(self, user_profile: dict[str, Any]) -> None:
        with self._lock:
            self._profiles[user_profile["user_id"]] = copy.deepcopy(user_profile)

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()


# ── Per-call tracker ───────────────────────────────────────────────────────

@dataclass
class UserProfileTracker:
    """
    The experiment bucket map read once at the start of a decision call and
    written back once at the end, if any fresh bucketing happened.
    """
    user_profile: ExperimentBucketMap | None = None
    is_profile_updated: bool = False

    def stored_variation_id(self, experiment_id: str) -> str | None:
        if not self.user_profile:
            return None
        decision = self.user_profile.get(experiment_id)
        if not isinstance(decision, dict):
            return None
        return decision.get("variation_id")

    def update(self, experiment_id: str, variation_id: str) -> None:
        if self.user_profile is None:
            return
        self.user_profile[experiment_id] = {"variation_id": variation_id}
        self.is_profile_updated = True


def load_profile(service: UserProfileService | None, user_id: str) -> ExperimentBucketMap:
    """Read the stored bucket map for *user_id*; empty on miss or failure."""
    if service is None:
        return {}
    raw = _safe_lookup(service, user_id)
    if raw is None:
        return {}
    try:
        profile = validate_input(UserProfile, raw)
    except ValidationError as exc:
        logger.error("user_profile_invalid", user_id=user_id, fields=exc.fields)
        return {}
    return dict(profile.experiment_bucket_map)


def resolve_experiment_bucket_map(
    service: UserProfileService | None,
    user_id: str,
    attributes: dict[str, Any] | None,
    sticky_attribute: str,
) -> ExperimentBucketMap:
    """Stored bucket map overlaid with the attribute-supplied map; attributes win."""
    merged = load_profile(service, user_id)
    attribute_map = (attributes or {}).get(sticky_attribute)
    if isinstance(attribute_map, dict):
        merged.update(attribute_map)
    return merged


def save_profile(
    service: UserProfileService | None,
    user_id: str,
    tracker: UserProfileTracker,
) -> bool:
    """Persist the tracker's bucket map if it changed. Returns True if saved."""
    if service is None or tracker.user_profile is None or not tracker.is_profile_updated:
        return False
    profile = UserProfile(user_id=user_id, experiment_bucket_map=tracker.user_profile)
    saved = _safe_save(service, profile.model_dump())
    if saved:
        logger.info("saved_user_variation", user_id=user_id)
    return saved


@with_fallback(default=None, event="user_profile_lookup_failed")
def _safe_lookup(service: UserProfileService, user_id: str) -> dict[str, Any] | None:
    try:
        return service.lookup(user_id)
    except Exception as exc:
        raise UserProfileError(
            user_message=f"Error while looking up user profile for user ID {user_id!r}.",
            detail=str(exc),
            user_id=user_id,
        ) from exc


@with_fallback(default=False, event="user_profile_save_failed")
def _safe_save(service: UserProfileService, profile: dict[str, Any]) -> bool:
    try:
        service.save(profile)
    except Exception as exc:
        raise UserProfileError(
            user_message=f"Error while saving user profile for user ID {profile['user_id']!r}.",
            detail=str(exc),
            user_id=profile["user_id"],
        ) from exc
    return True


# ── Provider factory ───────────────────────────────────────────────────────

_service: UserProfileService | None = None
_resolved = False


def get_user_profile_service() -> UserProfileService | None:
    """Return the configured store, or None when sticky bucketing is off."""
    global _service, _resolved
    if _resolved:
        return _service

    backend = get_config().user_profile_backend
    if backend == "memory":
        _service = InMemoryUserProfileService()
    else:
        _service = None
    _resolved = True
    return _service


def _reset_user_profile_service() -> None:
    global _service, _resolved
    _service = None
    _resolved = False


__sdk_export__ = {
    "exports": [
        "UserProfileService", "InMemoryUserProfileService", "UserProfileTracker",
        "get_user_profile_service",
    ],
    "description": "Sticky-bucketing store protocol and per-call tracker",
    "tier": "tier2_reliability",
    "module": "user_profile",
}
