"""Packaged plan defaults and the merge that layers a plan file over them."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from cloud_provisioner.config.env import resolve_plan_env
from cloud_provisioner.config.models import PlanConfig

DEFAULTS_DIR = Path(__file__).parent / "defaults"


def load_defaults(name: str = "plan") -> dict[str, Any]:
    """Raw defaults mapping; ``${VAR}`` references are left for the merge."""
    path = DEFAULTS_DIR / f"{name}.yaml"
    if not path.exists():
        msg = f"Defaults file '{name}' not found at {path}"
        raise FileNotFoundError(msg)
    with path.open() as f:
        return yaml.safe_load(f) or {}


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively deep-merge *overrides* into *base* (non-mutating).

    Lists, including ``steps``, are replaced wholesale.
    """
    merged: dict[str, Any] = {**base}
    for key, value in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_plan_config(
    overrides: dict[str, Any],
    *,
    defaults: str = "plan",
) -> PlanConfig:
    """Merge *overrides* over the defaults, resolve env references once, validate.

    Resolving after the merge means a default the plan overrides never has
    to be resolvable.
    """
    merged = merge_configs(load_defaults(defaults), overrides)
    return PlanConfig.model_validate(resolve_plan_env(merged))
