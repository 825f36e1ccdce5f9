"""
decision_sdk.tier0_core.config
────────────────────────────────
Typed SDK settings with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; invalid values raise
ConfigurationError on first access, not mid-decision.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from decision_sdk.tier0_core.errors import ConfigurationError


class DecisionConfig(BaseSettings):
    """
    Typed decision engine settings.
    All env vars are prefixed with DECISION_ unless overridden.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="DECISION_LOG_LEVEL")
    log_format: str = Field(default="json", alias="DECISION_LOG_FORMAT")

    # ── Error reporting ───────────────────────────────────────────────────────
    error_backend: str = Field(default="none", alias="DECISION_ERROR_BACKEND")

    # ── Sticky bucketing ──────────────────────────────────────────────────────
    user_profile_backend: str = Field(default="none", alias="DECISION_USER_PROFILE_BACKEND")
    ignore_user_profile_service: bool = Field(
        default=False, alias="DECISION_IGNORE_USER_PROFILE_SERVICE"
    )

    # ── Diagnostics ───────────────────────────────────────────────────────────
    # Public decision calls return their reason trace only when this is on or
    # DecideOption.INCLUDE_REASONS is passed.
    include_reasons: bool = Field(default=True, alias="DECISION_INCLUDE_REASONS")

    @field_validator("user_profile_backend")
    @classmethod
    def validate_user_profile_backend(cls, v: str) -> str:
        allowed = {"none", "memory"}
        if v.lower() not in allowed:
            raise ValueError(f"user_profile_backend must be one of {allowed}, got {v!r}")
        return v.lower()


@lru_cache(maxsize=1)
def get_config() -> DecisionConfig:
    """
    Return the singleton SDK config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    try:
        return DecisionConfig()
    except PydanticValidationError as exc:
        raise ConfigurationError(
            user_message="Invalid decision SDK settings.",
            detail=str(exc),
        ) from exc


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__sdk_export__ = {
    "exports": ["get_config", "DecisionConfig"],
    "description": "pydantic-settings configuration for the decision engine",
    "tier": "tier0_core",
    "module": "config",
}
