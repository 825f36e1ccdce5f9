"""
decision_sdk.tier1_runtime.validate
──────────────────────────────────────
Datafile and store-record validation via Pydantic v2. Raises the SDK's
ValidationError (not raw Pydantic errors) so callers handle one error type.
"""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from decision_sdk.tier0_core.errors import ValidationError

T = TypeVar("T", bound=BaseModel)


def validate_input(model: Type[T], data: Any) -> T:
    """
    Validate raw data against a Pydantic model.
    Raises decision_sdk ValidationError (not Pydantic's) on failure.

    Usage:
        profile = validate_input(UserProfile, store.lookup(user_id))
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        raise ValidationError(
            code="validation_error",
            user_message=f"{model.__name__} validation failed.",
            fields=fields,
        ) from exc


__sdk_export__ = {
    "exports": ["validate_input"],
    "description": "Pydantic v2 validation raising the SDK ValidationError",
    "tier": "tier1_runtime",
    "module": "validate",
}
