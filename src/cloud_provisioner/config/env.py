"""``${VAR}`` / ``${VAR:-default}`` substitution for plan data."""

from __future__ import annotations

import os
import re
from typing import Any

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")


def _resolve_env_str(value: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{var_name}' is not set and no default provided"
        raise ValueError(msg)

    return _ENV_PATTERN.sub(_replace, value)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _resolve_env_str(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def resolve_plan_env(data: dict[str, Any]) -> dict[str, Any]:
    """Resolve a merged plan mapping section by section.

    Failures name the section (``client``, ``policy``...) or, inside
    ``steps``, the step they occurred in.
    """
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        if key == "steps" and isinstance(value, list):
            resolved[key] = [_resolve_step(i, step) for i, step in enumerate(value)]
            continue
        try:
            resolved[key] = resolve_env_vars(value)
        except ValueError as exc:
            msg = f"{key}: {exc}"
            raise ValueError(msg) from exc
    return resolved


def _resolve_step(index: int, step: Any) -> Any:
    try:
        return resolve_env_vars(step)
    except ValueError as exc:
        step_id = step.get("step_id") if isinstance(step, dict) else None
        label = f"step '{step_id}'" if step_id else f"steps[{index}]"
        msg = f"{label}: {exc}"
        raise ValueError(msg) from exc
