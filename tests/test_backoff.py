"""Test backoff strategies and throttling retries."""

import pytest
from botocore.exceptions import ClientError

from aws_quota_monitor.utils.backoff import (
    Backoff,
    BackoffConfig,
    BackoffStrategy,
    RetryWithBackoff,
    is_throttling_error,
    retry_on_throttling,
)


def client_error(code: str, operation: str = "ListServiceQuotas") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def test_exponential_delays_are_capped():
    config = BackoffConfig(initial_delay=1.0, max_delay=5.0, max_attempts=6, jitter=False)

    assert list(Backoff(config)) == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_linear_and_fixed_delays():
    linear = BackoffConfig(strategy=BackoffStrategy.LINEAR, initial_delay=1.0,
                           linear_increment=0.5, max_attempts=4, jitter=False)
    fixed = BackoffConfig(strategy=BackoffStrategy.FIXED, initial_delay=2.0, max_attempts=3, jitter=False)

    assert list(Backoff(linear)) == [1.0, 1.5, 2.0]
    assert list(Backoff(fixed)) == [2.0, 2.0]


def test_jitter_stays_within_delay():
    config = BackoffConfig(initial_delay=4.0, max_attempts=20, strategy=BackoffStrategy.FIXED)

    for delay in Backoff(config):
        assert 0.0 <= delay <= 4.0


def test_throttling_detection():
    assert is_throttling_error(client_error("ThrottlingException"))
    assert is_throttling_error(client_error("RequestLimitExceeded"))
    assert not is_throttling_error(client_error("AccessDeniedException"))
    assert not is_throttling_error(RuntimeError("Throttling"))


def test_throttled_call_is_retried_until_success():
    sleeps = []
    calls = []

    @retry_on_throttling(max_attempts=3, sleep=sleeps.append)
    def list_things():
        calls.append(1)
        if len(calls) < 3:
            raise client_error("Throttling")
        return ["thing"]

    assert list_things() == ["thing"]
    assert len(calls) == 3
    assert len(sleeps) == 2


def test_exhausted_retries_raise_original_error():
    sleeps = []

    @retry_on_throttling(max_attempts=2, sleep=sleeps.append)
    def always_throttled():
        raise client_error("TooManyRequestsException")

    with pytest.raises(ClientError) as exc_info:
        always_throttled()

    assert exc_info.value.response["Error"]["Code"] == "TooManyRequestsException"
    assert len(sleeps) == 1


def test_non_throttling_errors_are_not_retried():
    calls = []

    @retry_on_throttling(max_attempts=5, sleep=lambda _: None)
    def denied():
        calls.append(1)
        raise client_error("AccessDeniedException")

    with pytest.raises(ClientError):
        denied()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_async_functions_are_retried():
    calls = []
    retry = RetryWithBackoff(
        BackoffConfig(initial_delay=0.0, max_attempts=3, jitter=False),
        retry_if=lambda e: isinstance(e, ConnectionError),
    )

    @retry
    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 2
