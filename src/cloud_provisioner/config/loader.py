"""Plan file loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from cloud_provisioner.config.defaults import build_plan_config
from cloud_provisioner.config.models import PlanConfig


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a YAML mapping from *path* without resolving env references."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}"
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        msg += f": {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return data


def load_plan_config(
    path: str | Path,
    *,
    defaults: str = "plan",
) -> PlanConfig:
    """Load a plan file, layered over the packaged defaults.

    Unset environment variables and validation failures are both reported
    as ``ValueError`` naming *path*.
    """
    overrides = load_yaml(path)
    try:
        return build_plan_config(overrides, defaults=defaults)
    except ValueError as exc:
        msg = f"Invalid plan config ({path}):\n{exc}"
        raise ValueError(msg) from exc
