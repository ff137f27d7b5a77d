"""
Retry with exponential backoff and a request-rate governor shared by every outbound call.

The executor never raises for a failed operation. It returns a RetryOutcome
describing either the value or the error that stopped it, so callers decide
whether to unwrap or to react (for example re-authenticating on AUTH_EXPIRED).
"""

from __future__ import annotations

import asyncio
import collections
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

import requests

from .exceptions import (
    AuthExpiredError,
    HttpStatusError,
    RetriesExhaustedError,
    TransientError,
)

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

_TRANSIENT_STATUSES = frozenset({408, 429})


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    AUTH_EXPIRED = "auth_expired"
    FATAL = "fatal"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a transiently failing call."""

    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter: tuple[float, float] = (0.0, 0.5)
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be positive, got {self.max_attempts}"
            raise ValueError(msg)

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        backoff = min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)
        low, high = self.jitter
        return backoff + rng.uniform(low, high)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of running an operation through the executor."""

    value: T | None = None
    error: BaseException | None = None
    kind: ErrorKind | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def classify_error(error: BaseException) -> ErrorKind:
    """Decide whether a failure is worth retrying."""
    if isinstance(error, (requests.ConnectionError, requests.Timeout, TransientError)):
        return ErrorKind.TRANSIENT
    if isinstance(error, AuthExpiredError):
        return ErrorKind.AUTH_EXPIRED
    if isinstance(error, HttpStatusError):
        if error.status == 401:
            return ErrorKind.AUTH_EXPIRED
        if error.status in _TRANSIENT_STATUSES or error.status >= 500:
            return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class RateGovernor:
    """Sliding-window limiter: at most `max_calls` calls start within any `period` seconds.

    Callers over the ceiling are delayed, never rejected. Waiters are served in
    arrival order.
    """

    def __init__(
        self,
        max_calls: int = 300,
        period: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            msg = f"max_calls must be positive, got {max_calls}"
            raise ValueError(msg)
        self.max_calls: int = max_calls
        self.period: float = period
        self._clock: Callable[[], float] = clock
        self._sleep: Sleep = sleep
        self._calls: collections.deque[float] = collections.deque()
        self._lock: asyncio.Lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._calls and self._calls[0] <= now - self.period:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                wait = self._calls[0] + self.period - now
                logger.debug(f"Rate ceiling of {self.max_calls}/{self.period:.0f}s reached, waiting {wait:.2f}s")
                await self._sleep(wait)


class RetryExecutor:
    """Runs operations under a RetryPolicy, passing every attempt through the rate governor."""

    def __init__(
        self,
        governor: RateGovernor | None = None,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.governor: RateGovernor | None = governor
        self.policy: RetryPolicy = policy or RetryPolicy()
        self._sleep: Sleep = sleep
        self._rng: random.Random = rng or random.Random()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        description: str = "operation",
    ) -> RetryOutcome[T]:
        policy = policy or self.policy
        attempt = 0

        while True:
            attempt += 1
            if self.governor is not None:
                await self.governor.acquire()
            try:
                value = await operation()
            except Exception as e:  # noqa: BLE001 - handed back to the caller in the outcome
                kind = classify_error(e)
                if kind is not ErrorKind.TRANSIENT:
                    return RetryOutcome(error=e, kind=kind, attempts=attempt)
                if attempt >= policy.max_attempts:
                    logger.error(f"{description} failed after {policy.max_attempts} attempts: {e}")
                    return RetryOutcome(
                        error=RetriesExhaustedError(e, policy.max_attempts),
                        kind=ErrorKind.EXHAUSTED,
                        attempts=attempt,
                    )
                delay = policy.delay_for(attempt, self._rng)
                retry_after = getattr(e, "retry_after", None)
                if retry_after is not None:
                    delay = max(delay, retry_after)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}; retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
            else:
                return RetryOutcome(value=value, attempts=attempt)

    async def call_blocking(
        self,
        func: Callable[[], T],
        policy: RetryPolicy | None = None,
        *,
        description: str = "operation",
    ) -> RetryOutcome[T]:
        """Like execute, for a blocking callable run in a worker thread."""
        return await self.execute(lambda: asyncio.to_thread(func), policy, description=description)
