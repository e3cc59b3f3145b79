"""Tests for retry policies and backoff."""

import pytest

from jobengine.services.job_management.retry import (
    BackoffStrategy,
    RetryPolicy,
    exponential,
    fixed,
    linear,
)


class TestBackoff:
    @pytest.mark.parametrize(
        "retry_count,expected", [(0, 1000), (1, 2000), (2, 4000), (3, 8000), (4, 16000)]
    )
    def test_exponential(self, retry_count, expected):
        assert exponential(retry_count, 1000, 60000) == expected

    def test_exponential_capped(self):
        assert exponential(10, 1000, 60000) == 60000

    @pytest.mark.parametrize("retry_count,expected", [(0, 1000), (1, 2000), (2, 3000)])
    def test_linear(self, retry_count, expected):
        assert linear(retry_count, 1000, 60000) == expected

    def test_linear_capped(self):
        assert linear(100, 1000, 5000) == 5000

    def test_fixed(self):
        assert [fixed(n, 1500, 60000) for n in range(4)] == [1500] * 4


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.backoff == BackoffStrategy.EXPONENTIAL
        assert policy.delay_ms(0) == 1000
        assert policy.delay_ms(2) == 4000

    def test_should_retry_until_cap(self):
        policy = RetryPolicy(max_retries=2)
        error = RuntimeError("boom")
        assert policy.should_retry(error, 0)
        assert policy.should_retry(error, 1)
        assert not policy.should_retry(error, 2)
        assert not policy.should_retry(error, 3)

    def test_not_retryable(self):
        policy = RetryPolicy(retryable=False)
        assert not policy.should_retry(RuntimeError("boom"), 0)

    def test_retry_if_predicate(self):
        policy = RetryPolicy(retry_if=lambda e: isinstance(e, ConnectionError))
        assert policy.should_retry(ConnectionError("reset"), 0)
        assert not policy.should_retry(ValueError("bad input"), 0)

    def test_cap_wins_over_predicate(self):
        calls = []

        def always(error):
            calls.append(error)
            return True

        policy = RetryPolicy(max_retries=1, retry_if=always)
        assert not policy.should_retry(RuntimeError("boom"), 1)
        assert calls == []

    def test_linear_policy(self):
        policy = RetryPolicy(backoff=BackoffStrategy.LINEAR, base_delay_ms=500)
        assert [policy.delay_ms(n) for n in range(3)] == [500, 1000, 1500]

    def test_backoff_accepts_string(self):
        policy = RetryPolicy(backoff="fixed", base_delay_ms=250)
        assert policy.delay_ms(5) == 250

    def test_custom_delay_fn(self):
        policy = RetryPolicy(delay_fn=lambda n: n * 100)
        assert policy.delay_ms(3) == 300


class TestDocumentedDelayTables:
    def test_exponential_table(self):
        assert [exponential(n, 1000, 10000) for n in range(5)] == [
            1000,
            2000,
            4000,
            8000,
            10000,
        ]

    def test_linear_table(self):
        assert [linear(n, 1000, 5000) for n in range(7)] == [
            1000,
            2000,
            3000,
            4000,
            5000,
            5000,
            5000,
        ]

    def test_fixed_table(self):
        assert {fixed(n, 2000, 0) for n in range(10)} == {2000}

    def test_cap_with_permissive_predicate(self):
        policy = RetryPolicy(max_retries=3, retry_if=lambda error: True)
        error = RuntimeError("boom")
        assert [policy.should_retry(error, n) for n in range(6)] == [
            True,
            True,
            True,
            False,
            False,
            False,
        ]
