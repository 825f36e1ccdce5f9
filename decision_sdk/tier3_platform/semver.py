"""
decision_sdk.tier3_platform.semver
────────────────────────────────────
Semantic version comparison for ``semver_*`` audience conditions.

A version is up to three dot-separated numeric components, optionally
followed by a ``-pre.release`` or ``+build`` suffix which is kept as one
trailing non-numeric component. Comparison only runs up to the length of the
condition's version, so a target of "2.0" is met by "2.0.0" and "2.0.5".
"""
from __future__ import annotations

import re

from decision_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)

PRE_RELEASE_DELIMITER = "-"
BUILD_DELIMITER = "+"

_DIGITS = re.compile(r"^\d+$")
_LEADING_INT = re.compile(r"^[+-]?\d+")
_WHITESPACE = re.compile(r"\s")


def _is_number(part: str) -> bool:
    return bool(_DIGITS.match(part))


def _leading_int(part: str) -> int | None:
    """Integer prefix of *part* (``1beta`` gives 1), or None when it has none."""
    match = _LEADING_INT.match(part)
    return int(match.group()) if match else None


def is_pre_release(version: str) -> bool:
    """True if a ``-`` appears and comes before any ``+``."""
    pre = version.find(PRE_RELEASE_DELIMITER)
    build = version.find(BUILD_DELIMITER)
    if pre < 0:
        return False
    return build < 0 or pre < build


def is_build(version: str) -> bool:
    """True if a ``+`` appears and comes before any ``-``."""
    pre = version.find(PRE_RELEASE_DELIMITER)
    build = version.find(BUILD_DELIMITER)
    if build < 0:
        return False
    return pre < 0 or build < pre


def split_version(version: str) -> list[str] | None:
    """Version components, or None if *version* is malformed."""
    if _WHITESPACE.search(version):
        logger.warning("invalid_semantic_version", version=version)
        return None

    prefix, suffix = version, ""
    if is_pre_release(version):
        prefix, _, suffix = version.partition(PRE_RELEASE_DELIMITER)
    elif is_build(version):
        prefix, _, suffix = version.partition(BUILD_DELIMITER)

    parts = prefix.split(".")
    if len(parts) > 3 or not all(_is_number(p) for p in parts):
        logger.warning("invalid_semantic_version", version=version)
        return None

    if suffix:
        parts.append(suffix)
    return parts


def compare_version(condition_version: str, user_version: str) -> int | None:
    """
    Compare *user_version* against *condition_version*.

    Returns 0 if equal, 1 if the user version is greater, -1 if it is
    smaller, None if either version is malformed.
    """
    user_parts = split_version(user_version)
    condition_parts = split_version(condition_version)
    if user_parts is None or condition_parts is None:
        return None

    condition_pre = is_pre_release(condition_version)
    user_pre = is_pre_release(user_version)

    for idx, condition_part in enumerate(condition_parts):
        if idx >= len(user_parts):
            return 1 if condition_pre or is_build(condition_version) else -1

        user_part = user_parts[idx]
        if not _is_number(user_part):
            if user_part < condition_part:
                return 1 if condition_pre and not user_pre else -1
            if user_part > condition_part:
                return -1 if not condition_pre and user_pre else 1
        else:
            user_number = int(user_part)
            condition_number = _leading_int(condition_part)
            # a tag with no integer prefix cannot order against a number
            if condition_number is None:
                continue
            if user_number > condition_number:
                return 1
            if user_number < condition_number:
                return -1

    if user_pre and not condition_pre:
        return -1
    return 0


__sdk_export__ = {
    "exports": ["compare_version", "split_version"],
    "description": "Semantic version parsing and comparison",
    "tier": "tier3_platform",
    "module": "semver",
}
