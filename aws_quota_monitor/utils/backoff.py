"""Backoff strategies for retrying throttled AWS calls."""

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Callable, Iterator

import structlog
from botocore.exceptions import ClientError


THROTTLING_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "SlowDown",
    "PriorRequestNotComplete",
})


class BackoffStrategy(Enum):
    """Available backoff strategies."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class BackoffConfig:
    """Configuration for backoff strategies."""

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    initial_delay: float = 1.0  # Initial delay in seconds
    max_delay: float = 30.0  # Maximum delay in seconds
    max_attempts: int = 5  # Total attempts including the first call

    exponential_base: float = 2.0
    linear_increment: float = 1.0

    # "full": random(0, delay), "equal": delay/2 + random(0, delay/2)
    jitter: bool = True
    jitter_type: str = "full"


class Backoff:
    """Iterator over the delays between attempts."""

    def __init__(self, config: BackoffConfig):
        self.config = config
        self._attempt_count = 0

    def __iter__(self) -> Iterator[float]:
        self._attempt_count = 0
        return self

    def __next__(self) -> float:
        # The first attempt needs no delay, so max_attempts - 1 delays
        if self._attempt_count >= self.config.max_attempts - 1:
            raise StopIteration("Maximum attempts reached")

        delay = self._calculate_delay(self._attempt_count)
        self._attempt_count += 1
        return delay

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt number."""
        if self.config.strategy == BackoffStrategy.FIXED:
            delay = self.config.initial_delay
        elif self.config.strategy == BackoffStrategy.LINEAR:
            delay = self.config.initial_delay + (attempt * self.config.linear_increment)
        else:
            delay = self.config.initial_delay * (self.config.exponential_base ** attempt)

        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            delay = self._apply_jitter(delay)

        return max(0.0, delay)

    def _apply_jitter(self, delay: float) -> float:
        if self.config.jitter_type == "equal":
            return delay / 2 + random.uniform(0, delay / 2)
        return random.uniform(0, delay)


class RetryWithBackoff:
    """Retry decorator with configurable backoff.

    Only exceptions accepted by ``retry_if`` are retried; anything else
    propagates immediately. When attempts run out the last exception is
    re-raised unchanged so callers see the collaborator's own error.
    """

    def __init__(self,
                 config: BackoffConfig,
                 retry_if: Callable[[Exception], bool],
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.retry_if = retry_if
        self.sleep = sleep
        self.logger = structlog.get_logger("retry_backoff")

    def __call__(self, func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            delays = iter(Backoff(self.config))
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    delay = self._next_delay(func, e, delays, attempt)
                    await asyncio.sleep(delay)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            delays = iter(Backoff(self.config))
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    delay = self._next_delay(func, e, delays, attempt)
                    self.sleep(delay)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    def _next_delay(self, func: Callable, exc: Exception, delays: Iterator[float], attempt: int) -> float:
        """Return the delay before the next attempt, or re-raise ``exc``."""
        if not self.retry_if(exc):
            raise exc

        delay = next(delays, None)
        if delay is None:
            self.logger.warning(
                f"{func.__name__} still failing, no more retries",
                function=func.__name__,
                exception=str(exc),
                total_attempts=attempt,
            )
            raise exc

        self.logger.info(
            f"{func.__name__} throttled, retrying in {delay:.2f}s",
            function=func.__name__,
            exception=str(exc),
            attempt=attempt,
            next_delay=delay,
        )
        return delay


def exponential_backoff(initial_delay: float = 1.0, max_delay: float = 30.0,
                        max_attempts: int = 5, base: float = 2.0) -> BackoffConfig:
    """Create exponential backoff configuration."""
    return BackoffConfig(
        strategy=BackoffStrategy.EXPONENTIAL,
        initial_delay=initial_delay,
        max_delay=max_delay,
        max_attempts=max_attempts,
        exponential_base=base,
        jitter=True,
    )


def is_throttling_error(exc: Exception) -> bool:
    """True for AWS errors that signal request throttling."""
    if not isinstance(exc, ClientError):
        return False
    code = exc.response.get("Error", {}).get("Code", "")
    return code in THROTTLING_ERROR_CODES


def retry_on_throttling(max_attempts: int = 5, initial_delay: float = 1.0,
                        sleep: Callable[[float], None] = time.sleep) -> RetryWithBackoff:
    """Decorator for retrying AWS calls that were throttled."""
    config = exponential_backoff(initial_delay, max_attempts=max_attempts)
    return RetryWithBackoff(config=config, retry_if=is_throttling_error, sleep=sleep)
