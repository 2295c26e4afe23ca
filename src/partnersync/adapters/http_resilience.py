"""Rate-limited, retrying HTTP client shared by the LMS adapter."""

from __future__ import annotations

import time
from contextlib import AbstractAsyncContextManager, nullcontext
from logging import getLogger
from typing import TYPE_CHECKING, TypedDict, Unpack

import httpx
from aiolimiter import AsyncLimiter
from httpx_retries import RetryTransport

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from partnersync.config.http_resilience import ResilienceConfig, ResponseHook

log = getLogger(__name__)

type QueryParams = Mapping[str, str | int]


class JsonRequest(TypedDict, total=False):
    params: QueryParams | None
    json: object


class AsyncClientOptions(TypedDict, total=False):
    base_url: str
    timeout: float
    headers: dict[str, str]
    event_hooks: dict[str, list[ResponseHook]]
    transport: httpx.AsyncBaseTransport


class ResilientClient:
    """JSON API client: every call waits for the limiter, idempotent verbs retry.

    Responses are never cached: every reconciliation run must see live LMS data.
    ``requests_sent`` counts calls that reached the transport layer.
    """

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self.requests_sent = 0
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit is not None
            else None
        )
        self._client = httpx.AsyncClient(**_client_options(config))

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        log.debug(f"{self.config.name}: closing after {self.requests_sent} request(s)")
        await self._client.aclose()

    async def request(
        self, method: str, url: str, **options: Unpack[JsonRequest]
    ) -> httpx.Response:
        async with self._slot():
            started = time.perf_counter()
            response = await self._client.request(method, url, **options)
            self.requests_sent += 1
        log.debug(
            "%s %s %s -> %s (%.0f ms)",
            self.config.name,
            method,
            url,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    async def get(self, url: str, **options: Unpack[JsonRequest]) -> httpx.Response:
        return await self.request("GET", url, **options)

    async def post(self, url: str, **options: Unpack[JsonRequest]) -> httpx.Response:
        return await self.request("POST", url, **options)

    async def patch(self, url: str, **options: Unpack[JsonRequest]) -> httpx.Response:
        return await self.request("PATCH", url, **options)

    async def delete(self, url: str, **options: Unpack[JsonRequest]) -> httpx.Response:
        return await self.request("DELETE", url, **options)

    def _slot(self) -> AbstractAsyncContextManager[object]:
        return self._limiter if self._limiter is not None else nullcontext()


def _client_options(config: ResilienceConfig) -> AsyncClientOptions:
    options: AsyncClientOptions = {
        "timeout": config.timeout_seconds,
        "transport": RetryTransport(retry=config.retry.build()),
    }
    if config.base_url is not None:
        options["base_url"] = config.base_url
    if config.default_headers:
        options["headers"] = dict(config.default_headers)
    if config.response_hooks:
        options["event_hooks"] = {"response": list(config.response_hooks)}
    return options
