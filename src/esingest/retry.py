"""
esingest Retry — Exponential Backoff
====================================

delay(attempt) = min(cap, base * 2 ** attempt)

    attempt:  0     1      2      3      4    ...
    delay:    50ms  100ms  200ms  400ms  800ms ... capped

Only TransportTransient errors are retried. Anything else propagates on
the first failure.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

from .exceptions import ConfigError, RetryExhausted, TransportTransient


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy.

    Args:
        max_retries: Retries after the first attempt (0 disables retrying)
        backoff_base_ms: Delay before the first retry
        backoff_cap_ms: Upper bound for any single delay
    """

    max_retries: int = 8
    backoff_base_ms: int = 50
    backoff_cap_ms: int = 5000

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.backoff_base_ms < 0:
            raise ConfigError("backoff_base_ms must be >= 0")
        if self.backoff_cap_ms < self.backoff_base_ms:
            raise ConfigError("backoff_cap_ms must be >= backoff_base_ms")

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_retries=0, backoff_base_ms=0, backoff_cap_ms=0)

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (0-based)."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        # Cap the exponent so huge attempt numbers don't build huge ints
        exponent = min(attempt, 62)
        return min(self.backoff_cap_ms, self.backoff_base_ms * (2 ** exponent)) / 1000.0

    def delays(self) -> Iterator[float]:
        """All delays this policy allows, in order."""
        for attempt in range(self.max_retries):
            yield self.next_delay(attempt)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        return isinstance(error, TransportTransient)

    def new_state(self) -> "BackoffState":
        return BackoffState(self)


class BackoffState:
    """
    Retry bookkeeping for one failed batch.

    Created when a batch first fails and discarded once it succeeds or
    runs out of retries.
    """

    def __init__(self, policy: RetryPolicy):
        self.policy = policy
        self.attempt = 0
        self.last_error: Optional[BaseException] = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_retries

    @property
    def next_delay(self) -> float:
        return self.policy.next_delay(self.attempt)

    def record_failure(self, error: BaseException) -> float:
        """
        Register a failed attempt and return how long to wait before the next.

        Raises:
            RetryExhausted: if no retries are left
        """
        self.last_error = error
        if self.exhausted:
            raise RetryExhausted(self.attempt + 1, error)
        delay = self.next_delay
        self.attempt += 1
        return delay
