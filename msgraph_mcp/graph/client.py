# client.py
# - Resilient Microsoft Graph REST client
# - Every call: rate limit check -> circuit breaker -> retry with backoff -> bearer token + HTTP
# - Only the Graph JSON request shapes are supported (collection GET, single GET, POST/PATCH/DELETE, If-Match)

import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from msgraph_mcp.context import current_request_id
from msgraph_mcp.errors import AuthenticationError, GraphAPIError
from msgraph_mcp.graph.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from msgraph_mcp.graph.rate_limiter import Clock, RateLimiter, RateLimiterConfig, monotonic_ms
from msgraph_mcp.infrastructure.token_provider import TokenProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0/"

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class GraphClientConfig:
    base_url: str = GRAPH_BASE_URL
    rate_limiter: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    max_retries: int = 3
    base_retry_delay_ms: int = 1000
    http_timeout: float = 30


def is_transient_error(exc: BaseException) -> bool:
    """Only upstream unavailability and network failures are worth retrying."""
    if isinstance(exc, AuthenticationError):
        return False
    if isinstance(exc, GraphAPIError):
        return "temporarily unavailable" in exc.message
    return isinstance(exc, httpx.TransportError)


class GraphClient:
    def __init__(
        self,
        token_provider: TokenProvider,
        config: Optional[GraphClientConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Clock = monotonic_ms,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or GraphClientConfig()
        base = self.config.base_url
        self.base_url = base if base.endswith("/") else base + "/"
        self.token_provider = token_provider
        self.rate_limiter = RateLimiter(self.config.rate_limiter, clock=clock)
        self.circuit_breaker = CircuitBreaker(self.config.circuit_breaker, clock=clock)
        self.max_retries = self.config.max_retries
        self.base_retry_delay_ms = self.config.base_retry_delay_ms
        self._sleep = sleep
        self._rng = rng
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.config.http_timeout)
        logger.info(
            "graph client initialized base_url=%s max_retries=%s base_retry_delay_ms=%s",
            self.base_url,
            self.max_retries,
            self.base_retry_delay_ms,
        )

    # -----------------------------
    # Verbs
    # -----------------------------
    async def get(
        self,
        endpoint: str,
        *,
        query_params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        return await self._send("GET", endpoint, query_params=query_params, headers=headers)

    async def post(self, endpoint: str, body: Dict[str, Any], *, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return await self._send("POST", endpoint, body=body, headers=headers)

    async def patch(self, endpoint: str, body: Dict[str, Any], *, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """PATCH; a 204 No Content answer comes back as {}"""
        return await self._send("PATCH", endpoint, body=body, headers=headers)

    async def delete(self, endpoint: str, *, headers: Optional[Dict[str, str]] = None) -> None:
        await self._send("DELETE", endpoint, headers=headers)

    # -----------------------------
    # Pipeline
    # -----------------------------
    def build_url(self, endpoint: str, query_params: Optional[Dict[str, str]] = None) -> httpx.URL:
        # a leading slash would resolve against the host root and drop /v1.0
        clean = endpoint[1:] if endpoint.startswith("/") else endpoint
        url = httpx.URL(self.base_url).join(clean)
        if query_params:
            url = url.copy_merge_params(query_params)
        return url

    async def _send(
        self,
        method: str,
        endpoint: str,
        *,
        query_params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        self.rate_limiter.check_limit()
        url = self.build_url(endpoint, query_params)

        async def attempt() -> Any:
            return await self._with_retry(lambda: self._request_once(method, url, endpoint, body, headers))

        return await self.circuit_breaker.execute(attempt)

    async def _with_retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return await fn()
            except Exception as exc:
                if not is_transient_error(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.error("max retries exceeded attempts=%s", attempt + 1)
                    if isinstance(exc, httpx.TransportError):
                        raise GraphAPIError("Network error while contacting Microsoft Graph") from exc
                    raise
                delay_ms = self.base_retry_delay_ms * (2 ** attempt)
                total_ms = math.floor(delay_ms + self._rng() * 0.3 * delay_ms)
                logger.info("retrying request attempt=%s delay_ms=%s", attempt + 1, total_ms)
                await self._sleep(total_ms / 1000)
        raise AssertionError("unreachable")

    async def _request_once(
        self,
        method: str,
        url: httpx.URL,
        endpoint: str,
        body: Optional[Dict[str, Any]],
        extra_headers: Optional[Dict[str, str]],
    ) -> Any:
        token = await self.token_provider.get_valid_access_token()
        headers = {"Authorization": f"Bearer {token}"}
        if method != "DELETE":
            headers["Content-Type"] = "application/json"
        if extra_headers:
            headers.update(extra_headers)

        logger.debug("graph request rid=%s method=%s endpoint=%s", current_request_id(), method, endpoint)
        response = await self._http.request(method, url, headers=headers, json=body)
        return self._handle_response(method, response)

    def _handle_response(self, method: str, response: httpx.Response) -> Any:
        status = response.status_code
        if response.is_success:
            if method == "DELETE":
                return None
            if status == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                raise GraphAPIError("Graph API returned an invalid response", status)

        try:
            err = response.json().get("error") or {}
            detail = err.get("code") if isinstance(err, dict) else None
        except (ValueError, AttributeError):
            detail = response.reason_phrase
        # never log the URL or body; ids and query strings may be personal data
        logger.error("graph request failed rid=%s status=%s detail=%s", current_request_id(), status, detail)

        if status == 401:
            raise AuthenticationError("Authentication token invalid or expired")
        if status == 429:
            logger.warning("graph throttled retry_after=%s", response.headers.get("Retry-After"))
            raise GraphAPIError("Rate limit exceeded. Please try again later.", status)
        if status in (503, 504):
            raise GraphAPIError("Microsoft Graph service temporarily unavailable", status)
        raise GraphAPIError(f"Graph API request failed with status {status}", status)

    # -----------------------------
    # Operational hooks
    # -----------------------------
    def get_circuit_state(self) -> CircuitState:
        return self.circuit_breaker.get_state()

    def get_available_tokens(self) -> float:
        return self.rate_limiter.get_available_tokens()

    def reset(self) -> None:
        self.rate_limiter.reset()
        self.circuit_breaker.reset()
        logger.debug("graph client reset")

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
