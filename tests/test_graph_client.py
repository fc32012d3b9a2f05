"""GraphClient: rate limit -> circuit breaker -> retry -> HTTP, over httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from msgraph_mcp.errors import AuthenticationError, GraphAPIError, RateLimitError
from msgraph_mcp.graph.circuit_breaker import CircuitState
from msgraph_mcp.graph.client import is_transient_error

from tests.conftest import StaticTokenProvider


class TestRequests:
    async def test_get_sends_bearer_token_and_query(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": [{"id": "a"}]})

        client = make_client(handler)
        data = await client.get("/me/todo/lists", query_params={"$top": "5", "$filter": "status eq 'completed'"})

        assert data == {"value": [{"id": "a"}]}
        req = seen[0]
        assert req.method == "GET"
        assert req.url.path == "/v1.0/me/todo/lists"
        assert req.url.params["$top"] == "5"
        assert req.url.params["$filter"] == "status eq 'completed'"
        assert req.headers["Authorization"] == "Bearer test-token"
        assert req.headers["Content-Type"] == "application/json"

    async def test_post_sends_json_body(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "new"})

        client = make_client(handler)
        assert await client.post("/me/todo/lists", {"displayName": "Groceries"}) == {"id": "new"}
        assert json.loads(seen[0].content) == {"displayName": "Groceries"}

    async def test_patch_204_returns_empty_dict_and_forwards_if_match(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        client = make_client(handler)
        assert await client.patch("/planner/tasks/t1", {"percentComplete": 100}, headers={"If-Match": 'W/"etag"'}) == {}
        assert seen[0].headers["If-Match"] == 'W/"etag"'

    async def test_delete_returns_none_and_omits_content_type(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        client = make_client(handler)
        assert await client.delete("/me/todo/lists/l1") is None
        assert "Content-Type" not in seen[0].headers

    async def test_leading_slash_keeps_version_prefix(self, make_client):
        client = make_client(lambda r: httpx.Response(200, json={}))
        assert str(client.build_url("/me/events/x")) == "https://graph.microsoft.com/v1.0/me/events/x"
        assert str(client.build_url("me/events/x")) == "https://graph.microsoft.com/v1.0/me/events/x"


class TestErrorMapping:
    async def test_401_is_authentication_error_without_retry(self, make_client, sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken"}})

        client = make_client(handler)
        with pytest.raises(AuthenticationError):
            await client.get("/me")
        assert len(calls) == 1
        assert sleep.calls == []

    async def test_429_is_graph_error_without_retry(self, make_client, sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, headers={"Retry-After": "3"})

        client = make_client(handler)
        with pytest.raises(GraphAPIError) as exc_info:
            await client.get("/me")
        assert exc_info.value.message == "Rate limit exceeded. Please try again later."
        assert exc_info.value.status == 429
        assert len(calls) == 1

    async def test_other_status_carries_code_only(self, make_client):
        def handler(request):
            return httpx.Response(404, json={"error": {"code": "ErrorItemNotFound", "message": "secret detail"}})

        client = make_client(handler)
        with pytest.raises(GraphAPIError) as exc_info:
            await client.get("/me/events/abc")
        assert exc_info.value.message == "Graph API request failed with status 404"
        assert "secret" not in exc_info.value.message

    async def test_token_provider_failure_propagates(self, make_client):
        client = make_client(lambda r: httpx.Response(200, json={}), token_provider=StaticTokenProvider(fail=True))
        with pytest.raises(AuthenticationError):
            await client.get("/me")


class TestRetry:
    async def test_503_retries_with_exponential_backoff_then_succeeds(self, make_client, sleep):
        responses = [httpx.Response(503), httpx.Response(504), httpx.Response(200, json={"ok": True})]

        client = make_client(lambda r: responses.pop(0), base_retry_delay_ms=100)
        assert await client.get("/me") == {"ok": True}
        assert sleep.calls == [0.1, 0.2]
        assert client.get_circuit_state() is CircuitState.CLOSED

    async def test_two_503s_then_success_end_to_end(self, make_client, sleep):
        calls = []
        responses = [httpx.Response(503), httpx.Response(503), httpx.Response(200, json={"value": ["ok"]})]

        def handler(request):
            calls.append(request)
            return responses.pop(0)

        client = make_client(handler)
        assert await client.get("/me/todo/lists") == {"value": ["ok"]}
        assert len(calls) == 3
        assert all(r.url.path == "/v1.0/me/todo/lists" for r in calls)
        assert client.circuit_breaker.get_failure_count() == 0
        assert client.get_circuit_state() is CircuitState.CLOSED

    async def test_always_503_makes_four_attempts_with_three_retries(self, make_client, sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler, max_retries=3, base_retry_delay_ms=1000)
        with pytest.raises(GraphAPIError, match="temporarily unavailable"):
            await client.get("/me")
        assert len(calls) == 4
        assert sleep.calls == [1.0, 2.0, 4.0]
        assert client.circuit_breaker.get_failure_count() == 1

    async def test_jitter_is_at_most_thirty_percent(self, make_client, sleep):
        responses = [httpx.Response(503), httpx.Response(200, json={})]
        client = make_client(lambda r: responses.pop(0), base_retry_delay_ms=1000, rng=lambda: 0.999)
        await client.get("/me")
        assert sleep.calls == [1.299]

    async def test_gives_up_after_max_retries(self, make_client, sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler, max_retries=2, base_retry_delay_ms=10)
        with pytest.raises(GraphAPIError) as exc_info:
            await client.get("/me")
        assert "temporarily unavailable" in exc_info.value.message
        assert len(calls) == 3
        assert sleep.calls == [0.01, 0.02]

    async def test_network_errors_are_retried_and_mapped(self, make_client, sleep):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=1, base_retry_delay_ms=10)
        with pytest.raises(GraphAPIError) as exc_info:
            await client.get("/me")
        assert exc_info.value.message == "Network error while contacting Microsoft Graph"
        assert len(calls) == 2

    def test_transient_classification(self):
        assert is_transient_error(GraphAPIError("Microsoft Graph service temporarily unavailable", 503))
        assert not is_transient_error(GraphAPIError("Graph API request failed with status 400", 400))
        assert not is_transient_error(AuthenticationError("nope"))
        assert is_transient_error(httpx.ReadTimeout("slow"))
        assert not is_transient_error(ValueError("x"))


class TestResilienceLayers:
    async def test_rate_limit_rejects_before_any_http(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler, per_minute=60, burst=1)
        await client.get("/me")
        with pytest.raises(RateLimitError):
            await client.get("/me")
        assert len(calls) == 1

    async def test_failures_open_the_circuit_then_recover(self, make_client, clock):
        state = {"status": 500}

        def handler(request):
            return httpx.Response(state["status"], json={} if state["status"] == 200 else None)

        client = make_client(handler, failure_threshold=2, success_threshold=1, timeout_ms=5_000)
        for _ in range(2):
            with pytest.raises(GraphAPIError):
                await client.get("/me")
        assert client.get_circuit_state() is CircuitState.OPEN

        with pytest.raises(GraphAPIError) as exc_info:
            await client.get("/me")
        assert "Circuit breaker is open" in exc_info.value.message

        clock.advance(5_000)
        state["status"] = 200
        assert client.get_circuit_state() is CircuitState.HALF_OPEN
        assert await client.get("/me") == {}
        assert client.get_circuit_state() is CircuitState.CLOSED

    async def test_retries_count_as_one_breaker_failure(self, make_client):
        client = make_client(lambda r: httpx.Response(503), failure_threshold=5, max_retries=3, base_retry_delay_ms=1)
        with pytest.raises(GraphAPIError):
            await client.get("/me")
        assert client.circuit_breaker.get_failure_count() == 1

    async def test_reset_restores_tokens_and_closes(self, make_client):
        client = make_client(lambda r: httpx.Response(500), per_minute=60, burst=2, failure_threshold=1)
        with pytest.raises(GraphAPIError):
            await client.get("/me")
        client.reset()
        assert client.get_circuit_state() is CircuitState.CLOSED
        assert client.get_available_tokens() == 2
