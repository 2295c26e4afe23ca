"""Environment variable readers shared by the config loaders."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import InvalidConfigurationError, MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence


def require_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Return the named variables, raising once for every missing or blank one."""

    values: dict[str, str] = {}
    missing: list[str] = []
    for name in names:
        value = optional_env(name)
        if value is None:
            missing.append(name)
        else:
            values[name] = value

    if missing:
        raise MissingConfigurationError(f"Missing configuration for: {', '.join(sorted(missing))}")
    return values


def optional_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = optional_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise InvalidConfigurationError(name, raw, "a number") from exc
    if value < minimum:
        raise InvalidConfigurationError(name, raw, f"a number >= {minimum}")
    return value
