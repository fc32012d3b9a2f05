# circuit_breaker.py
# - Three-state failure guard (CLOSED -> OPEN -> HALF_OPEN -> CLOSED|OPEN)
# - State decisions happen under a lock with no await inside; fn runs outside it

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from msgraph_mcp.errors import GraphAPIError
from msgraph_mcp.graph.rate_limiter import Clock, monotonic_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_ms: int = 60000

    def __post_init__(self) -> None:
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValueError("thresholds must be >= 1")
        if self.timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")


class CircuitBreaker:
    def __init__(self, config: CircuitBreakerConfig, *, clock: Clock = monotonic_ms):
        self.config = config
        self._clock = clock
        self._lock = threading.Lock()
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.consecutive_successes = 0
        self.opened_until_ms = 0.0

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_until_ms = self._clock() + self.config.timeout_ms
        logger.warning(
            "circuit breaker opened failures=%s timeout_ms=%s",
            self.consecutive_failures,
            self.config.timeout_ms,
        )

    def _before_call(self) -> None:
        with self._lock:
            if self.state is not CircuitState.OPEN:
                return
            now = self._clock()
            if now < self.opened_until_ms:
                wait_s = math.ceil((self.opened_until_ms - now) / 1000)
                logger.warning("circuit breaker is open wait_s=%s", wait_s)
                raise GraphAPIError(
                    f"Service temporarily unavailable. Circuit breaker is open. Retry in {wait_s}s."
                )
            self.state = CircuitState.HALF_OPEN
            self.consecutive_successes = 0
            logger.info("circuit breaker half-open")

    def _on_success(self) -> None:
        with self._lock:
            if self.state is CircuitState.HALF_OPEN:
                self.consecutive_successes += 1
                if self.consecutive_successes >= self.config.success_threshold:
                    self.state = CircuitState.CLOSED
                    self.consecutive_failures = 0
                    self.consecutive_successes = 0
                    logger.info("circuit breaker closed")
            else:
                self.consecutive_failures = 0

    def _on_failure(self) -> None:
        with self._lock:
            self.consecutive_failures += 1
            if self.state is CircuitState.HALF_OPEN:
                self.consecutive_successes = 0
                self._open()
            elif self.consecutive_failures >= self.config.failure_threshold:
                self._open()

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn through the breaker; re-raises whatever fn raises."""
        self._before_call()
        try:
            result = await fn()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def get_state(self) -> CircuitState:
        """Logical state: an expired OPEN reads as HALF_OPEN until execute() transitions it."""
        with self._lock:
            if self.state is CircuitState.OPEN and self._clock() >= self.opened_until_ms:
                return CircuitState.HALF_OPEN
            return self.state

    def get_failure_count(self) -> int:
        return self.consecutive_failures

    def reset(self) -> None:
        with self._lock:
            self.state = CircuitState.CLOSED
            self.consecutive_failures = 0
            self.consecutive_successes = 0
            self.opened_until_ms = 0.0
        logger.debug("circuit breaker reset")
