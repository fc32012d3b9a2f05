from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from msgraph_mcp.config import Config
from msgraph_mcp.container import Services, build_services
from msgraph_mcp.errors import AuthenticationError
from msgraph_mcp.graph.circuit_breaker import CircuitBreakerConfig
from msgraph_mcp.graph.client import GraphClient, GraphClientConfig
from msgraph_mcp.graph.rate_limiter import RateLimiterConfig

GRAPH = "https://graph.microsoft.com/v1.0"


class FakeClock:
    """Millisecond clock the tests advance by hand."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSleep:
    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds * 1000)


class StaticTokenProvider:
    def __init__(self, token: str = "test-token", *, fail: bool = False) -> None:
        self.token = token
        self.fail = fail
        self.calls = 0

    async def get_valid_access_token(self) -> str:
        self.calls += 1
        if self.fail:
            raise AuthenticationError("Not authenticated. Run 'msgraph-mcp auth login' first.")
        return self.token


def graph_response(status: int = 200, json: Any = None, **kwargs: Any) -> httpx.Response:
    if json is None and status == 200:
        json = {}
    return httpx.Response(status, json=json, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def make_client(clock: FakeClock, sleep: RecordingSleep):
    """Build a GraphClient whose transport is the given request handler."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        token_provider: Any = None,
        per_minute: int = 600,
        burst: int | None = None,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout_ms: int = 60000,
        max_retries: int = 3,
        base_retry_delay_ms: int = 1000,
        rng: Callable[[], float] = lambda: 0.0,
    ) -> GraphClient:
        config = GraphClientConfig(
            rate_limiter=RateLimiterConfig(max_requests_per_minute=per_minute, burst_allowance=burst),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=failure_threshold,
                success_threshold=success_threshold,
                timeout_ms=timeout_ms,
            ),
            max_retries=max_retries,
            base_retry_delay_ms=base_retry_delay_ms,
        )
        return GraphClient(
            token_provider or StaticTokenProvider(),
            config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=clock,
            sleep=sleep,
            rng=rng,
        )

    return factory


@pytest.fixture
def make_services(clock: FakeClock, sleep: RecordingSleep):
    """Full service graph over a mock transport, as the server builds it."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        token_provider: Any = None,
        **cfg_overrides: Any,
    ) -> Services:
        cfg = Config(**cfg_overrides)
        return build_services(
            cfg,
            token_provider=token_provider or StaticTokenProvider(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=clock,
            sleep=sleep,
            rng=lambda: 0.0,
        )

    return factory


class GraphRouter:
    """MockTransport handler keyed on (method, path); records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, response: Any) -> GraphRouter:
        self.routes[(method.upper(), "/v1.0" + path)] = response
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": {"code": "NotFound"}})
        if callable(route):
            return route(request)
        return graph_response(200, route)

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == "/v1.0" + path]


@pytest.fixture
def router() -> GraphRouter:
    return GraphRouter()
