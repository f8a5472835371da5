"""Circuit breaker and retry-with-backoff around every outbound call."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from core.errors import CLIENT_SIDE_KINDS, ServiceError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

CIRCUIT_OPEN = "CIRCUIT_OPEN"

# Logical dependencies that get their own breaker
DEPENDENCIES = ("scheduler", "workflow", "function", "notification", "identity", "event_bus")


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def _counts_as_failure(exc: BaseException) -> bool:
    if isinstance(exc, ServiceError):
        return exc.kind not in CLIENT_SIDE_KINDS
    return True


class CircuitBreaker:
    """Stops calling a dependency for ``recovery_timeout`` seconds after
    ``failure_threshold`` consecutive failures.

    State is process-local and shared by every invocation in the process;
    races between concurrent callers only shift a transition slightly.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0
        self._trial_in_flight = False

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        if self.state == BreakerState.OPEN:
            if self._clock() - self.last_failure_time > self.recovery_timeout:
                self.state = BreakerState.HALF_OPEN
                logger.info("Circuit breaker half-open", extra={"breaker": self.name})
            else:
                return await self._reject(fallback)
        elif self.state == BreakerState.HALF_OPEN and self._trial_in_flight:
            return await self._reject(fallback)

        probing = self.state == BreakerState.HALF_OPEN
        if probing:
            self._trial_in_flight = True
        try:
            result = await operation()
        except Exception as exc:
            if not _counts_as_failure(exc):
                if probing:
                    # a client-side error still proves the dependency answers
                    self.reset()
                raise
            self._record_failure(probing)
            if fallback is not None and self.state == BreakerState.OPEN:
                logger.warning("Circuit breaker opened, executing fallback",
                               extra={"breaker": self.name})
                return await fallback()
            raise
        finally:
            if probing:
                self._trial_in_flight = False

        if probing:
            self.reset()
            logger.info("Circuit breaker closed", extra={"breaker": self.name})
        else:
            self.failure_count = 0
        return result

    def reset(self) -> None:
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0

    async def _reject(self, fallback: Callable[[], Awaitable[T]] | None) -> T:
        if fallback is not None:
            logger.warning("Circuit breaker open, executing fallback", extra={"breaker": self.name})
            return await fallback()
        raise ServiceError.unavailable(
            f"Circuit breaker '{self.name}' is open", code=CIRCUIT_OPEN
        )

    def _record_failure(self, probing: bool) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if probing or self.failure_count >= self.failure_threshold:
            self.state = BreakerState.OPEN
            logger.error(
                "Circuit breaker opened",
                extra={"breaker": self.name, "failure_count": self.failure_count,
                       "failure_threshold": self.failure_threshold},
            )


def _retryable(exc: Exception) -> bool:
    return isinstance(exc, ServiceError) and exc.retryable


class RetryPolicy:
    """Bounded exponential backoff: ``min(base * multiplier**(attempt-1), max) + jitter``."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0.0, self.jitter)
        return delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        should_retry: Callable[[Exception], bool] | None = None,
    ) -> T:
        should_retry = should_retry or _retryable
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    extra={"attempt": attempt, "max_attempts": self.max_attempts,
                           "delay_s": delay, "error": str(exc)},
                )
                await self._sleep(delay)
                attempt += 1


def _retry_unless_open(exc: Exception) -> bool:
    if isinstance(exc, ServiceError) and exc.code == CIRCUIT_OPEN:
        return False
    return _retryable(exc)


class ResilienceContext:
    """One breaker per dependency plus the shared retry policy.

    Built once at process start and handed to every component that makes
    external calls; tests build a fresh one per test.
    """

    def __init__(
        self,
        retry: RetryPolicy | None = None,
        breakers: dict[str, CircuitBreaker] | None = None,
    ):
        self.retry = retry or RetryPolicy()
        self.breakers = breakers or {name: CircuitBreaker(name) for name in DEPENDENCIES}

    @classmethod
    def from_settings(cls, settings: Settings) -> ResilienceContext:
        retry = RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_base_delay / 2,
        )
        breakers = {}
        for name in DEPENDENCIES:
            threshold = settings.breaker_failure_threshold
            recovery = settings.breaker_recovery_seconds
            if name in ("function", "notification"):
                # direct invokes and publishes trip sooner and recover sooner
                threshold = max(1, min(threshold, 3))
                recovery = recovery / 2
            breakers[name] = CircuitBreaker(name, threshold, recovery)
        return cls(retry=retry, breakers=breakers)

    def breaker(self, dependency: str) -> CircuitBreaker:
        try:
            return self.breakers[dependency]
        except KeyError:
            breaker = self.breakers[dependency] = CircuitBreaker(dependency)
            return breaker

    async def call(
        self,
        dependency: str,
        operation: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        breaker = self.breaker(dependency)
        return await self.retry.execute(
            lambda: breaker.execute(operation, fallback),
            should_retry=_retry_unless_open,
        )
