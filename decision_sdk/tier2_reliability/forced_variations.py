"""
decision_sdk.tier2_reliability.forced_variations
──────────────────────────────────────────────────
Process-local forced-variation map: user id → experiment id → variation id.

Created empty, mutated only through explicit set/remove calls, never
persisted and never expired. A single lock guards the nested map so that
concurrent decisions for the same user cannot observe a half-written entry.
"""
from __future__ import annotations

import threading

from decision_sdk.tier0_core.errors import InvalidUserIdError, UserNotInForcedVariationError
from decision_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)


class ForcedVariationStore:
    """Thread-safe nested map of forced variations."""

    def __init__(self) -> None:
        self._map: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def set(self, user_id: str, experiment_id: str, variation_id: str | None) -> bool:
        """
        Force *user_id* into *variation_id* for *experiment_id*.
        Passing ``None`` removes the mapping instead. Returns False when a
        removal targets a user that was never forced.
        """
        if variation_id is None:
            try:
                self.remove(user_id, experiment_id)
            except (InvalidUserIdError, UserNotInForcedVariationError) as exc:
                logger.error("forced_variation_remove_failed", experiment_id=experiment_id, error=str(exc))
                return False
            return True

        if not isinstance(user_id, str) or not user_id:
            logger.error("forced_variation_invalid_user_id", user_id=user_id)
            return False

        with self._lock:
            self._map.setdefault(user_id, {})[experiment_id] = variation_id
        logger.debug(
            "user_mapped_to_forced_variation",
            variation_id=variation_id,
            experiment_id=experiment_id,
            user_id=user_id,
        )
        return True

    def get(self, user_id: str, experiment_id: str) -> str | None:
        with self._lock:
            experiments = self._map.get(user_id)
            if experiments is None:
                return None
            return experiments.get(experiment_id)

    def has_user(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._map

    def remove(self, user_id: str, experiment_id: str) -> None:
        """Raises if the user id is invalid or has never been forced."""
        if not isinstance(user_id, str) or not user_id:
            raise InvalidUserIdError(user_message="Provided user ID is in an invalid format.")
        with self._lock:
            experiments = self._map.get(user_id)
            if experiments is None:
                raise UserNotInForcedVariationError(
                    user_message=f"User {user_id!r} is not in the forced variation map.",
                    user_id=user_id,
                )
            experiments.pop(experiment_id, None)
        logger.debug("forced_variation_removed", experiment_id=experiment_id, user_id=user_id)

    def clear(self) -> None:
        with self._lock:
            self._map.clear()

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Deep copy of the current map, for diagnostics."""
        with self._lock:
            return {user: dict(exps) for user, exps in self._map.items()}


__sdk_export__ = {
    "exports": ["ForcedVariationStore"],
    "description": "Lock-guarded process-local forced-variation map",
    "tier": "tier2_reliability",
    "module": "forced_variations",
}
