"""
decision_sdk.tier0_core.errors
───────────────────────────────
Standard error taxonomy for the decision engine. Only configuration-integrity
defects raise out of a decision call (a non-string bucketing key, a group id
missing from the datafile). Every "user not eligible" outcome is a ``None``
result, never an exception.

Minimal stack: Sentry OSS (optional)
Select via:    DECISION_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import os
from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class DecisionError(Exception):
    """
    Base class for all decision engine errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to SDK consumers
    - detail: internal context, never shown to users
    """

    code: str = "decision_error"
    fatal: bool = False

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected decision error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Fatal configuration-integrity errors ──────────────────────────────────────

class InvalidBucketingIdError(DecisionError):
    """The bucketing key handed to the hash function is not a string."""
    code = "invalid_bucketing_id"
    fatal = True


class InvalidGroupError(DecisionError):
    """An experiment references a group id absent from the datafile."""
    code = "invalid_group_id"
    fatal = True


# ── Recoverable bookkeeping errors (caught inside the service) ───────────────

class InvalidExperimentError(DecisionError):
    """Experiment key or id is not present in the datafile."""
    code = "invalid_experiment"


class InvalidUserIdError(DecisionError):
    """User id is empty or not a string."""
    code = "invalid_user_id"


class UserNotInForcedVariationError(DecisionError):
    """No forced variation has ever been set for this user."""
    code = "user_not_in_forced_variation"


class UserProfileError(DecisionError):
    """The external sticky-bucketing store failed on lookup or save."""
    code = "user_profile_error"


# ── Input / settings errors ───────────────────────────────────────────────────

class ValidationError(DecisionError):
    """Datafile validation failure."""
    code = "validation_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class ConfigurationError(DecisionError):
    """Misconfigured SDK settings detected at startup."""
    code = "configuration_error"
    fatal = True


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: DecisionError) -> None:
    """Send error to configured backend. Called automatically by DecisionError.__init__."""
    backend = os.getenv("DECISION_ERROR_BACKEND", "none").lower()
    if backend == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: DecisionError) -> None:
    import sentry_sdk

    if error.fatal:
        sentry_sdk.capture_exception(error)
    else:
        sentry_sdk.capture_message(
            str(error),
            level="warning",
            extras={"code": error.code, **error.metadata},
        )


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry. Call once at application startup."""
    import sentry_sdk
    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["DECISION_ERROR_BACKEND"] = "sentry"


__sdk_export__ = {
    "exports": [
        "DecisionError", "InvalidBucketingIdError", "InvalidGroupError",
        "InvalidExperimentError", "InvalidUserIdError",
        "UserNotInForcedVariationError", "UserProfileError",
        "ValidationError", "ConfigurationError",
    ],
    "description": "Error taxonomy for the decision engine",
    "tier": "tier0_core",
    "module": "errors",
}
