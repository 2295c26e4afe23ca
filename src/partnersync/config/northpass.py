"""Northpass LMS configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

NORTHPASS_BASE_URL = "https://api.northpass.com"
NORTHPASS_TIMEOUT_SECONDS = 30.0
NORTHPASS_CALLS_PER_SECOND = 8
NORTHPASS_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class NorthpassConfig:
    api_key: str
    resilience: ResilienceConfig
    page_size: int = NORTHPASS_PAGE_SIZE

    @property
    def instance_key(self) -> str:
        """Identifies the LMS instance for run serialization."""

        return self.resilience.base_url or NORTHPASS_BASE_URL


def get_northpass_config(*, resilience: ResilienceConfig | None = None) -> NorthpassConfig:
    values = require_env_vars(("NORTHPASS_API_KEY",))
    api_key = values["NORTHPASS_API_KEY"]
    base_url = optional_env("NORTHPASS_BASE_URL", NORTHPASS_BASE_URL)
    return NorthpassConfig(
        api_key=api_key,
        resilience=resilience
        or ResilienceConfig(
            name="northpass",
            base_url=base_url,
            timeout_seconds=NORTHPASS_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=NORTHPASS_CALLS_PER_SECOND, per_seconds=1.0),
            default_headers={
                "X-Api-Key": api_key,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        ),
    )
