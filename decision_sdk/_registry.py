"""
decision_sdk._registry
─────────────────────────
Internal module registry: the single source of truth for which modules
exist and what each one exports.

Adding a new module:
  1. Implement it in the right tier
  2. Add ``__sdk_export__`` to the module (exports, description, tier, module)
  3. Add one tuple to TIER_MODULES below

After step 3 the module shows up in ``collect_exports()``; the stable
top-level API in ``decision_sdk/__init__.py`` still needs an explicit import.
"""
from __future__ import annotations

import importlib
from typing import Any

# ---------------------------------------------------------------------------
# Ordered list of (tier_path, module_name). Lower tiers never import from
# higher ones.
# ---------------------------------------------------------------------------
TIER_MODULES: list[tuple[str, str]] = [
    # tier0_core: foundational layer
    ("tier0_core", "logging"),
    ("tier0_core", "errors"),
    ("tier0_core", "config"),
    ("tier0_core", "models"),
    # tier1_runtime: per-decision state
    ("tier1_runtime", "validate"),
    ("tier1_runtime", "project_config"),
    ("tier1_runtime", "context"),
    ("tier1_runtime", "result"),
    # tier2_reliability: external stores and shared mutable state
    ("tier2_reliability", "fallback"),
    ("tier2_reliability", "forced_variations"),
    ("tier2_reliability", "user_profile"),
    # tier3_platform: the decision engine
    ("tier3_platform", "bucketer"),
    ("tier3_platform", "semver"),
    ("tier3_platform", "condition_tree"),
    ("tier3_platform", "condition_evaluator"),
    ("tier3_platform", "audience_evaluator"),
    ("tier3_platform", "decision_service"),
]


def collect_exports() -> dict[str, dict[str, Any]]:
    """
    Import every registered module and return its ``__sdk_export__`` metadata,
    keyed by ``"<tier>.<module>"``.

    Raises ImportError if a registered module cannot be imported, and
    AttributeError if a declared export does not exist on its module.
    """
    exports: dict[str, dict[str, Any]] = {}

    for tier_path, module_name in TIER_MODULES:
        mod = importlib.import_module(f"decision_sdk.{tier_path}.{module_name}")
        meta: dict[str, Any] = getattr(mod, "__sdk_export__", None) or {}
        for name in meta.get("exports", []):
            if not hasattr(mod, name):
                raise AttributeError(f"{mod.__name__} declares missing export {name!r}")
        exports[f"{tier_path}.{module_name}"] = meta

    return exports
