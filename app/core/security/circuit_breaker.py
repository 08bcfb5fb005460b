"""
Circuit breaker guarding calls to the identity provider.

After `failure_threshold` consecutive failures the breaker opens and calls
fail fast with CircuitBreakerOpenError. Once `timeout_seconds` have passed
the next call is let through (half-open); its outcome closes or re-opens
the breaker.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(RuntimeError):
    """Raised when the breaker is open and the call was not attempted."""


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        timeout_seconds: float = 60,
        expected_exception: type[Exception] = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._timeout_seconds = timeout_seconds
        self._expected_exception = expected_exception
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    def _maybe_half_open(self) -> None:
        if self._state != CircuitBreakerState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self._timeout_seconds:
            self._state = CircuitBreakerState.HALF_OPEN
            logger.info("Circuit breaker HALF_OPEN - attempting recovery")

    def _record_failure(self) -> None:
        self._failure_count += 1
        if (
            self._state == CircuitBreakerState.HALF_OPEN
            or self._failure_count >= self._failure_threshold
        ):
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()
            logger.error(
                "Circuit breaker OPEN after %d consecutive failures; retry in %.0fs",
                self._failure_count,
                self._timeout_seconds,
            )
        else:
            logger.warning(
                "Circuit breaker failure count: %d/%d",
                self._failure_count,
                self._failure_threshold,
            )

    def _record_success(self) -> None:
        if self._state == CircuitBreakerState.HALF_OPEN:
            logger.info("Circuit breaker CLOSED - service has recovered")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = None

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await func(*args, **kwargs) through the breaker.

        Raises:
            CircuitBreakerOpenError: If the breaker is open
            Exception: Whatever func raises
        """
        async with self._lock:
            self._maybe_half_open()
            if self._state == CircuitBreakerState.OPEN:
                raise CircuitBreakerOpenError("Circuit breaker is OPEN - service unavailable")

        awaitable = func(*args, **kwargs)
        if not inspect.isawaitable(awaitable):
            raise TypeError("call() expects a callable returning an awaitable")

        try:
            result = await awaitable
        except self._expected_exception:
            async with self._lock:
                self._record_failure()
            raise

        async with self._lock:
            self._record_success()
        return result

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_open(self) -> bool:
        self._maybe_half_open()
        return self._state == CircuitBreakerState.OPEN

    def reset(self) -> None:
        """Reset the circuit breaker to CLOSED state (useful for testing)."""
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = None
