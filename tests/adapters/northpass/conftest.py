from __future__ import annotations

import httpx
import pytest

from partnersync.adapters.http_resilience import ResilientClient
from partnersync.adapters.northpass import NorthpassClient
from partnersync.config import NorthpassConfig, ResilienceConfig
from tests.support.northpass import BASE_URL, RoutingTransport


@pytest.fixture
def transport() -> RoutingTransport:
    return RoutingTransport()


@pytest.fixture
def northpass_client(transport: RoutingTransport) -> NorthpassClient:
    config = NorthpassConfig(
        api_key="test-key",
        resilience=ResilienceConfig(name="northpass", base_url=BASE_URL),
        page_size=2,
    )

    def client_factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
            base_url=BASE_URL,
            transport=httpx.MockTransport(transport),
        )
        return client

    return NorthpassClient(config=config, client_factory=client_factory)
