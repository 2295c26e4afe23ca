"""Retry and throttling settings for the LMS HTTP client."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

import httpx
from httpx_retries import Retry

if TYPE_CHECKING:
    from collections.abc import Mapping

ResponseHook = Callable[[httpx.Response], Awaitable[None] | None]

# POST is absent: a create that timed out may already exist upstream
IDEMPOTENT_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD", "OPTIONS", "PATCH", "DELETE"})
THROTTLED_OR_UNAVAILABLE: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
TRANSIENT_ERRORS: Final[tuple[type[httpx.HTTPError], ...]] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """How often a single LMS call is retried before its failure is reported."""

    attempts: int = 3
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0
    allowed_methods: frozenset[str] = IDEMPOTENT_METHODS
    status_forcelist: frozenset[int] = THROTTLED_OR_UNAVAILABLE

    def build(self) -> Retry:
        return Retry(
            total=self.attempts,
            backoff_factor=self.backoff_factor,
            max_backoff_wait=self.max_backoff_wait,
            respect_retry_after_header=True,
            allowed_methods=sorted(self.allowed_methods),
            status_forcelist=sorted(self.status_forcelist),
            retry_on_exceptions=TRANSIENT_ERRORS,
        )


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    response_hooks: tuple[ResponseHook, ...] = ()
    default_headers: Mapping[str, str] | None = None
