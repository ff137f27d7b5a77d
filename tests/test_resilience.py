"""Tests for the retry executor and the rate governor."""

from __future__ import annotations

import asyncio
import random

import pytest
import requests

from project_online_to_smartsheet.exceptions import (
    AuthExpiredError,
    HttpStatusError,
    MalformedRecordError,
    RetriesExhaustedError,
)
from project_online_to_smartsheet.resilience import (
    ErrorKind,
    RateGovernor,
    RetryExecutor,
    RetryPolicy,
    classify_error,
    parse_retry_after,
)


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _flaky(failures: list[BaseException], value: str = "ok"):
    calls = {"count": 0}

    async def operation() -> str:
        calls["count"] += 1
        if failures:
            raise failures.pop(0)
        return value

    return operation, calls


@pytest.mark.unit
class TestClassifyError:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_retryable_statuses_are_transient(self, status: int) -> None:
        assert classify_error(HttpStatusError(status, "x")) is ErrorKind.TRANSIENT

    def test_network_errors_are_transient(self) -> None:
        assert classify_error(requests.ConnectionError()) is ErrorKind.TRANSIENT
        assert classify_error(requests.Timeout()) is ErrorKind.TRANSIENT

    def test_unauthorized_is_auth_expired(self) -> None:
        assert classify_error(HttpStatusError(401, "x")) is ErrorKind.AUTH_EXPIRED
        assert classify_error(AuthExpiredError("x")) is ErrorKind.AUTH_EXPIRED

    def test_client_and_data_errors_are_fatal(self) -> None:
        assert classify_error(HttpStatusError(400, "x")) is ErrorKind.FATAL
        assert classify_error(HttpStatusError(404, "x")) is ErrorKind.FATAL
        assert classify_error(MalformedRecordError("x")) is ErrorKind.FATAL


@pytest.mark.unit
class TestRetryPolicy:
    def test_delay_grows_exponentially(self) -> None:
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, jitter=(0.0, 0.0))
        rng = random.Random(0)
        assert [policy.delay_for(n, rng) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_jitter_stays_in_range(self) -> None:
        policy = RetryPolicy(base_delay=1.0, jitter=(0.1, 0.5))
        rng = random.Random(42)
        for _ in range(50):
            assert 1.1 <= policy.delay_for(1, rng) <= 1.5

    def test_delay_is_capped(self) -> None:
        policy = RetryPolicy(base_delay=10.0, multiplier=10.0, jitter=(0.0, 0.0), max_delay=30.0)
        assert policy.delay_for(5, random.Random()) == 30.0

    @pytest.mark.parametrize("attempts", [0, -1])
    def test_rejects_non_positive_attempts(self, attempts: int) -> None:
        with pytest.raises(ValueError, match="max_attempts must be positive"):
            RetryPolicy(max_attempts=attempts)


@pytest.mark.unit
class TestParseRetryAfter:
    def test_seconds(self) -> None:
        assert parse_retry_after("7") == 7.0

    def test_missing_or_unparseable(self) -> None:
        assert parse_retry_after(None) is None
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


@pytest.mark.unit
class TestRetryExecutor:
    def _executor(self, clock: FakeClock, **kwargs) -> RetryExecutor:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=(0.0, 0.0))
        return RetryExecutor(policy=policy, sleep=clock.sleep, **kwargs)

    def test_success_first_try(self) -> None:
        clock = FakeClock()
        operation, calls = _flaky([])
        outcome = asyncio.run(self._executor(clock).execute(operation))
        assert outcome.ok
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        assert calls["count"] == 1
        assert clock.sleeps == []

    def test_transient_failures_are_retried_with_backoff(self) -> None:
        clock = FakeClock()
        operation, calls = _flaky([HttpStatusError(503, "busy"), requests.ConnectionError()])
        outcome = asyncio.run(self._executor(clock).execute(operation))
        assert outcome.unwrap() == "ok"
        assert outcome.attempts == 3
        assert calls["count"] == 3
        assert clock.sleeps == [1.0, 2.0]

    def test_retry_after_raises_delay(self) -> None:
        clock = FakeClock()
        operation, _ = _flaky([HttpStatusError(429, "slow down", retry_after=30.0)])
        outcome = asyncio.run(self._executor(clock).execute(operation))
        assert outcome.ok
        assert clock.sleeps == [30.0]

    def test_fatal_error_is_not_retried(self) -> None:
        clock = FakeClock()
        operation, calls = _flaky([HttpStatusError(400, "bad request")])
        outcome = asyncio.run(self._executor(clock).execute(operation))
        assert not outcome.ok
        assert outcome.kind is ErrorKind.FATAL
        assert calls["count"] == 1
        with pytest.raises(HttpStatusError, match="400"):
            outcome.unwrap()

    def test_auth_expired_is_surfaced_without_retry(self) -> None:
        clock = FakeClock()
        operation, calls = _flaky([HttpStatusError(401, "expired")])
        outcome = asyncio.run(self._executor(clock).execute(operation))
        assert outcome.kind is ErrorKind.AUTH_EXPIRED
        assert calls["count"] == 1

    def test_exhaustion_yields_retries_exhausted(self) -> None:
        clock = FakeClock()
        last = HttpStatusError(500, "third")
        operation, calls = _flaky([HttpStatusError(500, "first"), HttpStatusError(500, "second"), last])
        outcome = asyncio.run(self._executor(clock).execute(operation, description="GET /x"))
        assert outcome.kind is ErrorKind.EXHAUSTED
        assert calls["count"] == 3
        assert isinstance(outcome.error, RetriesExhaustedError)
        assert outcome.error.last_error is last
        assert outcome.error.attempts == 3
        with pytest.raises(RetriesExhaustedError, match="3 attempts"):
            outcome.unwrap()

    def test_every_attempt_passes_the_governor(self) -> None:
        clock = FakeClock()
        governor = RateGovernor(100, clock=clock, sleep=clock.sleep)
        operation, _ = _flaky([HttpStatusError(503, "busy")])
        asyncio.run(self._executor(clock, governor=governor).execute(operation))
        assert len(governor._calls) == 2

    def test_call_blocking_runs_in_thread(self) -> None:
        clock = FakeClock()
        outcome = asyncio.run(self._executor(clock).call_blocking(lambda: 21 * 2))
        assert outcome.unwrap() == 42


@pytest.mark.unit
class TestRateGovernor:
    def test_calls_under_ceiling_do_not_wait(self) -> None:
        clock = FakeClock()
        governor = RateGovernor(3, period=60.0, clock=clock, sleep=clock.sleep)

        async def run() -> None:
            for _ in range(3):
                await governor.acquire()

        asyncio.run(run())
        assert clock.sleeps == []

    def test_call_over_ceiling_waits_for_window(self) -> None:
        clock = FakeClock()
        governor = RateGovernor(2, period=60.0, clock=clock, sleep=clock.sleep)

        async def run() -> None:
            await governor.acquire()
            clock.now = 10.0
            await governor.acquire()
            await governor.acquire()

        asyncio.run(run())
        # The first call leaves the window 60s after it started
        assert clock.sleeps == [50.0]
        assert clock.now == 60.0

    def test_never_more_than_ceiling_in_any_window(self) -> None:
        clock = FakeClock()
        governor = RateGovernor(5, period=10.0, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        async def call() -> None:
            await governor.acquire()
            starts.append(clock.now)

        async def run() -> None:
            await asyncio.gather(*(call() for _ in range(17)))

        asyncio.run(run())
        assert len(starts) == 17
        for start in starts:
            assert sum(1 for s in starts if start <= s < start + 10.0) <= 5

    def test_rejects_non_positive_ceiling(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            RateGovernor(0)
