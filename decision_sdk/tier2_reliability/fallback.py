"""
decision_sdk.tier2_reliability.fallback
─────────────────────────────────────────
Standardized fallback behaviour at external boundaries. When a call into a
host-supplied collaborator (the sticky-bucketing store) raises, the decision
proceeds with a default value and the failure is logged instead of being
surfaced to the host application.
"""
from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from decision_sdk.tier0_core.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


def with_fallback(
    default: Any,
    *,
    event: str = "fallback_triggered",
    log_errors: bool = True,
    reraise: type[Exception] | tuple[type[Exception], ...] | None = None,
) -> Callable[[F], F]:
    """
    Decorator: on any exception, return *default* instead of raising.

    Args:
        default: Value to return when the wrapped function raises.
        event: Log event name emitted on failure.
        log_errors: Whether to log the exception (default True).
        reraise: Exception type(s) that should still be raised (not caught).

    Usage::

        @with_fallback(default=None, event="user_profile_lookup_failed")
        def lookup(user_id: str) -> dict | None: ...
    """
    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if reraise and isinstance(exc, reraise):
                    raise
                if log_errors:
                    logger.error(
                        event,
                        function=fn.__qualname__,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                return default

        return wrapper  # type: ignore[return-value]

    return decorator


__all__ = ["with_fallback"]
