"""
Circuit breaker for upstream provider calls.

States:
  CLOSED    requests pass through
  OPEN      too many consecutive upstream failures, calls fail fast
  HALF_OPEN after the cooldown a single trial call is let through
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Coroutine, TypeVar

from shared.errors import UpstreamUnavailable
from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(UpstreamUnavailable):
    """Raised instead of calling the provider while the circuit is open."""

    def __init__(self, name: str, retry_after: float) -> None:
        super().__init__(name, f"circuit open, retry after {retry_after:.0f}s", retry_after=retry_after)


class CircuitBreaker:
    """
    Async circuit breaker.

    Only UpstreamUnavailable counts as a failure: a malformed payload proves
    the provider is reachable.

    Args:
        name: Identifier for logging.
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout_s: Seconds to wait in OPEN state before probing.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.recovery_timeout_s:
                return CircuitState.HALF_OPEN
        return self._state

    async def call(
        self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any
    ) -> T:
        async with self._lock:
            current = self.state
            if current == CircuitState.OPEN:
                retry_after = self.recovery_timeout_s - (self._clock() - self._opened_at)
                raise CircuitBreakerOpen(self.name, max(retry_after, 1.0))
            if current == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitBreakerOpen(self.name, 5.0)
                self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except UpstreamUnavailable as exc:
            await self._on_failure(exc)
            raise
        except BaseException:
            async with self._lock:
                self._trial_in_flight = False
            raise
        await self._on_success()
        return result

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                logger.info("circuit_breaker_closed", name=self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._trial_in_flight = False

    async def _on_failure(self, exc: Exception) -> None:
        async with self._lock:
            self._failure_count += 1
            was_trial = self._trial_in_flight
            self._trial_in_flight = False
            if was_trial or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN or was_trial:
                    logger.warning(
                        "circuit_breaker_opened",
                        name=self.name,
                        failures=self._failure_count,
                        error=str(exc),
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
