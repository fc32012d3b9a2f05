# rate_limiter.py
# - Token bucket guarding outbound Graph calls
# - Non-blocking: an empty bucket raises RateLimitError instead of sleeping

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from msgraph_mcp.errors import RateLimitError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class RateLimiterConfig:
    max_requests_per_minute: int = 60
    burst_allowance: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be positive")
        if self.burst_allowance is not None and self.burst_allowance <= 0:
            raise ValueError("burst_allowance must be positive")


class RateLimiter:
    """Token bucket refilled lazily on every observation.

    capacity = burst_allowance (defaults to max_requests_per_minute),
    refill rate = max_requests_per_minute / 60000 tokens per ms.
    """

    def __init__(self, config: RateLimiterConfig, *, clock: Clock = monotonic_ms):
        self.capacity = float(config.burst_allowance or config.max_requests_per_minute)
        self.refill_rate_per_ms = config.max_requests_per_minute / 60000.0
        self._clock = clock
        self.tokens = self.capacity
        self.last_refill_ms = clock()
        self._lock = threading.Lock()
        logger.info(
            "rate limiter initialized max_per_minute=%s capacity=%s",
            config.max_requests_per_minute,
            self.capacity,
        )

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill_ms)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate_per_ms)
        self.last_refill_ms = now

    def check_limit(self) -> None:
        """Consume one token or raise RateLimitError with the wait in ms."""
        with self._lock:
            self._refill()
            if self.tokens < 1:
                wait_ms = math.ceil((1 - self.tokens) / self.refill_rate_per_ms)
                logger.warning("rate limit exceeded available=%.3f wait_ms=%s", self.tokens, wait_ms)
                raise RateLimitError(
                    f"Rate limit exceeded. Please wait {math.ceil(wait_ms / 1000)} seconds.",
                    wait_ms,
                )
            self.tokens -= 1

    def get_available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self.tokens

    def reset(self) -> None:
        with self._lock:
            self.tokens = self.capacity
            self.last_refill_ms = self._clock()
        logger.debug("rate limiter reset")
