"""
Layered configuration merging for trigger payloads.

Org owner secrets are the base layer; the selected environment's
secrets override them.  On redeploy the original run's environment is
layered over the application's current environment.

All functions return new dicts and never mutate their inputs.
"""
from __future__ import annotations

import copy
from typing import Any, Mapping


def deep_merge(base: Mapping[str, Any] | None, override: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Recursively merge ``override`` onto a copy of ``base``.

    Keys present in both take the override value, except when both values
    are mappings, in which case they are merged recursively.
    ``None`` on either side counts as an empty mapping.
    """
    result: dict[str, Any] = copy.deepcopy(dict(base or {}))
    for key, value in (override or {}).items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def merge_secrets(
    owner_secrets: Mapping[str, Any] | None,
    env_secrets: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Org owner secrets overlaid with environment-scoped secrets."""
    return deep_merge(owner_secrets, env_secrets)


def merge_environment(
    app_environment: Mapping[str, Any] | None,
    override_environment: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Application environment map overlaid with per-run overrides."""
    return deep_merge(app_environment, override_environment)


def select_env_name(environment: Mapping[str, Any] | None, env_name: str | None = None) -> str | None:
    """Explicit ``env_name`` if given, else the first declared environment."""
    if env_name:
        return env_name
    return next(iter(environment or {}), None)


def env_secrets(environment: Mapping[str, Any] | None, env_name: str | None) -> dict[str, Any]:
    """Secrets declared on one environment (empty when absent)."""
    if not env_name:
        return {}
    env = (environment or {}).get(env_name) or {}
    return dict(env.get("secrets") or {})
