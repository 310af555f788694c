"""Shared pytest fixtures for the AEM client and tool tests."""

import json
from datetime import timedelta
from typing import Any, Callable

import httpx
import pytest

from aem_mcp.services.auth import AuthType, Credentials
from aem_mcp.services.cache import CacheConfig, EvictionPolicy
from aem_mcp.services.circuit_breaker import CircuitBreakerConfig
from aem_mcp.services.client import AEMClient, ClientConfig
from aem_mcp.services.retry import RetryConfig

BASE_URL = "http://aem.test:4502"


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordedSleep:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def json_response(body: Any, status: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(
        status,
        content=json.dumps(body).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def make_client(clock: FakeClock, sleep: RecordedSleep) -> Callable[..., AEMClient]:
    """Factory for an AEMClient wired to a MockTransport handler."""

    def factory(
        handler: Callable[[httpx.Request], Any],
        retry_attempts: int = 3,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        cache_ttl: float = 300.0,
        max_size: int = 1000,
        cache_enabled: bool = True,
        credentials: Credentials | None = None,
    ) -> AEMClient:
        config = ClientConfig(
            base_url=BASE_URL,
            timeout=5.0,
            credentials=credentials
            or Credentials(type=AuthType.BASIC, username="admin", password="admin"),
            retry=RetryConfig(
                retry_attempts=retry_attempts,
                retry_delay=timedelta(seconds=1),
                max_delay=timedelta(seconds=30),
                jitter=0.0,
            ),
            cache=CacheConfig(
                enabled=cache_enabled,
                default_ttl=timedelta(seconds=cache_ttl),
                max_size=max_size,
                eviction_policy=EvictionPolicy.LRU,
                sweep_interval=None,
            ),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=failure_threshold,
                cooldown_period=timedelta(seconds=cooldown),
            ),
        )
        return AEMClient(
            config,
            transport=httpx.MockTransport(handler),
            clock=clock,
            sleep=sleep,
        )

    return factory
