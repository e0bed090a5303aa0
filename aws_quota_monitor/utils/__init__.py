"""Retry helpers for AWS calls."""

from .backoff import (
    Backoff,
    BackoffConfig,
    BackoffStrategy,
    RetryWithBackoff,
    exponential_backoff,
    is_throttling_error,
    retry_on_throttling,
)

__all__ = [
    'Backoff', 'BackoffConfig', 'BackoffStrategy', 'RetryWithBackoff',
    'exponential_backoff', 'is_throttling_error', 'retry_on_throttling',
]
