"""Circuit breaker state machine."""

from __future__ import annotations

import asyncio

import pytest

from msgraph_mcp.errors import GraphAPIError
from msgraph_mcp.graph.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


class Boom(Exception):
    pass


async def _ok():
    return "ok"


async def _fail():
    raise Boom("upstream down")


def _breaker(clock, failure_threshold=3, success_threshold=2, timeout_ms=10_000) -> CircuitBreaker:
    return CircuitBreaker(
        CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            success_threshold=success_threshold,
            timeout_ms=timeout_ms,
        ),
        clock=clock,
    )


async def _trip(cb: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(Boom):
            await cb.execute(_fail)


class TestClosed:
    async def test_passes_results_through(self, clock):
        cb = _breaker(clock)
        assert await cb.execute(_ok) == "ok"
        assert cb.get_state() is CircuitState.CLOSED

    async def test_success_resets_failure_count(self, clock):
        cb = _breaker(clock)
        await _trip(cb, 2)
        assert cb.get_failure_count() == 2
        await cb.execute(_ok)
        assert cb.get_failure_count() == 0

    async def test_opens_at_threshold_and_reraises_original(self, clock):
        cb = _breaker(clock, failure_threshold=3)
        await _trip(cb, 2)
        assert cb.get_state() is CircuitState.CLOSED
        await _trip(cb, 1)
        assert cb.get_state() is CircuitState.OPEN

    @pytest.mark.parametrize("concurrent,expected", [(4, CircuitState.CLOSED), (5, CircuitState.OPEN)])
    async def test_concurrent_failures_trip_exactly_at_threshold(self, clock, concurrent, expected):
        cb = _breaker(clock, failure_threshold=5)

        async def slow_fail():
            await asyncio.sleep(0)
            raise Boom("upstream down")

        results = await asyncio.gather(*(cb.execute(slow_fail) for _ in range(concurrent)), return_exceptions=True)
        assert all(isinstance(r, Boom) for r in results)
        assert cb.get_failure_count() == concurrent
        assert cb.get_state() is expected


class TestOpen:
    async def test_rejects_without_invoking(self, clock):
        cb = _breaker(clock, failure_threshold=1, timeout_ms=10_000)
        await _trip(cb, 1)
        calls = []

        async def fn():
            calls.append(1)
            return "ok"

        clock.advance(2_500)
        with pytest.raises(GraphAPIError) as exc_info:
            await cb.execute(fn)
        assert calls == []
        assert exc_info.value.message == (
            "Service temporarily unavailable. Circuit breaker is open. Retry in 8s."
        )

    async def test_get_state_reads_half_open_after_timeout_before_any_call(self, clock):
        cb = _breaker(clock, failure_threshold=1, timeout_ms=10_000)
        await _trip(cb, 1)
        clock.advance(10_000)
        assert cb.get_state() is CircuitState.HALF_OPEN
        # stored state only moves on the next execute()
        assert cb.state is CircuitState.OPEN


class TestHalfOpen:
    async def test_closes_after_success_threshold(self, clock):
        cb = _breaker(clock, failure_threshold=1, success_threshold=2, timeout_ms=1_000)
        await _trip(cb, 1)
        clock.advance(1_000)
        await cb.execute(_ok)
        assert cb.state is CircuitState.HALF_OPEN
        await cb.execute(_ok)
        assert cb.get_state() is CircuitState.CLOSED
        assert cb.get_failure_count() == 0

    async def test_any_failure_reopens_with_fresh_timeout(self, clock):
        cb = _breaker(clock, failure_threshold=1, success_threshold=3, timeout_ms=1_000)
        await _trip(cb, 1)
        clock.advance(1_000)
        await cb.execute(_ok)
        await _trip(cb, 1)
        assert cb.get_state() is CircuitState.OPEN
        clock.advance(999)
        assert cb.get_state() is CircuitState.OPEN
        clock.advance(1)
        assert cb.get_state() is CircuitState.HALF_OPEN


async def test_reset_forces_closed(clock):
    cb = _breaker(clock, failure_threshold=1)
    await _trip(cb, 1)
    cb.reset()
    assert cb.get_state() is CircuitState.CLOSED
    assert cb.get_failure_count() == 0
    assert await cb.execute(_ok) == "ok"


@pytest.mark.parametrize(
    "kwargs",
    [{"failure_threshold": 0}, {"success_threshold": 0}, {"timeout_ms": -1}],
)
def test_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        CircuitBreakerConfig(**kwargs)
