"""Retry decisions and backoff delays."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 60000
DEFAULT_MAX_RETRIES = 3


class BackoffStrategy(str, Enum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"

    def __str__(self):
        return self.value


def exponential(retry_count: int, base_delay: int, max_delay: int) -> int:
    return min(base_delay * (2**retry_count), max_delay)


def linear(retry_count: int, base_delay: int, max_delay: int) -> int:
    return min(base_delay * (retry_count + 1), max_delay)


def fixed(retry_count: int, base_delay: int, max_delay: int) -> int:
    return base_delay


BACKOFF_FUNCTIONS = {
    BackoffStrategy.EXPONENTIAL: exponential,
    BackoffStrategy.LINEAR: linear,
    BackoffStrategy.FIXED: fixed,
}


@dataclass(frozen=True)
class RetryPolicy:
    """Whether and when a failed job is retried.

    ``retry_if`` is an extra predicate on the error; it is only consulted
    while ``retry_count < max_retries``, so the cap always wins.
    ``delay_fn`` replaces the backoff shape entirely when given.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retryable: bool = True
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    retry_if: Optional[Callable[[BaseException], bool]] = None
    delay_fn: Optional[Callable[[int], int]] = None

    def should_retry(self, error: BaseException, retry_count: int) -> bool:
        if not self.retryable:
            return False
        if retry_count >= self.max_retries:
            return False
        if self.retry_if is not None:
            return bool(self.retry_if(error))
        return True

    def delay_ms(self, retry_count: int) -> int:
        if self.delay_fn is not None:
            return int(self.delay_fn(retry_count))
        backoff_fn = BACKOFF_FUNCTIONS[BackoffStrategy(self.backoff)]
        return backoff_fn(retry_count, self.base_delay_ms, self.max_delay_ms)
